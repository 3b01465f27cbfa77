"""
CLI context manager for SF Tree Migrate.

This module provides the context object that is passed to all CLI commands,
containing configuration, org clients, and state management.
"""

from dataclasses import dataclass, field
from pathlib import Path

from sf_migration.client.exceptions import ConfigurationError
from sf_migration.client.salesforce_client import SalesforceClient
from sf_migration.config import MigrationConfig, OrgConfig, load_config_from_yaml
from sf_migration.migration.state import MigrationState
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    Holds configuration, clients, and state shared across CLI commands.
    Everything is created lazily, so commands only pay for what they use.

    Attributes:
        config_path: Path to the settings file (environment only if None)
        log_level: Console logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _source_client: SalesforceClient | None = field(default=None, init=False, repr=False)
    _target_client: SalesforceClient | None = field(default=None, init=False, repr=False)
    _migration_state: MigrationState | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load tool settings."""
        if self._config is None:
            if self.config_path is None:
                logger.debug("config_from_environment")
                self._config = MigrationConfig()
            else:
                logger.debug("config_loading", config_path=str(self.config_path))
                self._config = load_config_from_yaml(self.config_path)
        return self._config

    def use_orgs(self, source_alias: str | None = None, target_alias: str | None = None) -> None:
        """Point source and/or target at sf CLI aliases given on the command line.

        An alias given here wins over any instance URL and token from the
        settings file.
        """
        if source_alias:
            self.config.source = OrgConfig(alias=source_alias, api_version=self.config.source.api_version)
        if target_alias:
            self.config.target = OrgConfig(alias=target_alias, api_version=self.config.target.api_version)

    def _create_client(self, org: OrgConfig, role: str) -> SalesforceClient:
        if not org.is_configured:
            raise ConfigurationError(
                f"No {role} org configured. Pass --{role}-org or set {role}.alias in the settings."
            )
        logger.debug("org_client_creating", role=role, alias=org.alias, instance_url=org.instance_url)
        return SalesforceClient.from_org_config(
            org,
            batch_size=self.config.performance.batch_size,
            rate_limit=self.config.performance.rate_limit,
            logging_config=self.config.logging,
        )

    @property
    def source_client(self) -> SalesforceClient:
        """Get or create the source org client."""
        if self._source_client is None:
            self._source_client = self._create_client(self.config.source, "source")
        return self._source_client

    @property
    def target_client(self) -> SalesforceClient:
        """Get or create the target org client."""
        if self._target_client is None:
            self._target_client = self._create_client(self.config.target, "target")
        return self._target_client

    @property
    def migration_state(self) -> MigrationState | None:
        """Get or create the run-state store; None when state is disabled."""
        if not self.config.state.enabled:
            return None
        if self._migration_state is None:
            self._migration_state = MigrationState(config=self.config.state)
        return self._migration_state

    async def close(self) -> None:
        """Close org clients and the state store."""
        for client in (self._source_client, self._target_client):
            if client is not None:
                await client.close()
        self._source_client = None
        self._target_client = None

        if self._migration_state is not None:
            self._migration_state.close()
            self._migration_state = None
        logger.debug("context_closed")
