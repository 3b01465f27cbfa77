"""Configuration management for SF Tree Migrate using Pydantic.

This module provides type-safe models for the two configuration inputs of a
run: the tool settings (orgs, paths, logging, state) and the migration
document describing the record tree to copy and its dependencies.
"""

import json
import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sf_migration.client.exceptions import ConfigurationError

ID_FIELD = "Id"


class TreeConfig(BaseModel):
    """One object type of the record tree plus its nested child types.

    Instances are immutable: traversal keeps the ids it discovers in a
    separate TraversalState so a config can be analyzed and then migrated.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    api_name: str = Field(..., alias="apiName", min_length=1)
    record_ids: tuple[str, ...] | None = Field(default=None, alias="recordIds")
    parent_record_ids: tuple[str, ...] | None = Field(default=None, alias="parentRecordIds")
    reference_field: str | None = Field(default=None, alias="referenceField")
    external_id_field: str | tuple[str, ...] | None = Field(default=None, alias="externalIdField")
    excluded_fields: tuple[str, ...] = Field(default=(), alias="excludedFields")
    required_references: tuple[str, ...] = Field(default=(), alias="requiredReferences")
    children: tuple["TreeConfig", ...] = Field(default=())

    @model_validator(mode="after")
    def validate_children_reference_field(self) -> "TreeConfig":
        """Every child node must point back to its parent."""
        for child in self.children:
            if not child.reference_field:
                raise ValueError(
                    f"Child config '{child.api_name}' of '{self.api_name}' "
                    "must define referenceField"
                )
        return self

    @property
    def external_id_fields(self) -> list[str]:
        """Business-key field names as a list (possibly empty)."""
        if not self.external_id_field:
            return []
        if isinstance(self.external_id_field, str):
            return [self.external_id_field]
        return list(self.external_id_field)

    @property
    def upsert_key(self) -> str | None:
        """Field used for match-or-create writes, or None for plain inserts."""
        fields = self.external_id_fields
        return fields[0] if fields else None

    def walk(self) -> Iterator["TreeConfig"]:
        """Yield this node and every descendant, pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def object_types(self) -> list[str]:
        """All object types in the tree, in first-seen pre-order."""
        return list(dict.fromkeys(node.api_name for node in self.walk()))

    def to_document(self) -> dict[str, Any]:
        """Serialize back to the camelCase JSON document shape."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)


class KeyMapping(BaseModel):
    """Business-key matching rule for types that exist on both orgs.

    Records of ``api_name`` are never inserted; source and target rows are
    read with the same query and paired when ``(filter value, key value)``
    is equal on both sides.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_name: str = Field(default="RecordType", alias="apiName")
    key_field: str = Field(default="DeveloperName", alias="keyField")
    filter_field: str | None = Field(default="SobjectType", alias="filterField")
    filter_values: tuple[str, ...] | None = Field(
        default=None,
        alias="filterValues",
        description="Values for filter_field; defaults to every object type being migrated",
    )


DEFAULT_KEY_MAPPINGS = (KeyMapping(),)


class ExportConfig(BaseModel):
    """The migration document: what tree to copy and how to treat its dependencies."""

    model_config = ConfigDict(populate_by_name=True)

    tree_config: TreeConfig = Field(..., alias="treeConfig")
    dependency_config: list[TreeConfig] = Field(default_factory=list, alias="dependencyConfig")
    discover_dependencies: bool = Field(default=False, alias="discoverDependencies")
    key_mappings: list[KeyMapping] = Field(
        default_factory=lambda: list(DEFAULT_KEY_MAPPINGS), alias="keyMappings"
    )
    skip_sobject_dependencies: list[str] = Field(
        default_factory=list, alias="skipSobjectDependencies"
    )

    @field_validator("tree_config")
    @classmethod
    def validate_root(cls, v: TreeConfig) -> TreeConfig:
        """The root reads by its own ids, never by a parent."""
        if v.reference_field:
            raise ValueError("Root treeConfig must not define referenceField")
        return v

    @field_validator("dependency_config")
    @classmethod
    def validate_dependencies(cls, v: list[TreeConfig]) -> list[TreeConfig]:
        """Dependencies are flat: one level, no parent reference."""
        for config in v:
            if config.reference_field or config.children:
                raise ValueError(
                    f"Dependency config '{config.api_name}' must be flat "
                    "(no referenceField, no children)"
                )
        return v

    @property
    def key_matched_types(self) -> set[str]:
        """Object types resolved by business-key matching, never inserted."""
        return {mapping.api_name for mapping in self.key_mappings}


class OrgConfig(BaseModel):
    """Connection settings for one Salesforce org (source or target)."""

    alias: str | None = Field(default=None, description="sf CLI org alias or username")
    instance_url: str | None = Field(default=None, description="Org instance URL")
    access_token: str | None = Field(default=None, description="OAuth access token")
    api_version: str = Field(default="62.0", description="REST API version")
    timeout: int = Field(default=120, ge=1, le=1200, description="Request timeout in seconds")

    @field_validator("instance_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate and normalize instance URL."""
        if v is None:
            return v
        if not v.startswith("https://"):
            raise ValueError("Instance URL must start with https://")
        return v.rstrip("/")

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        """Accept '62.0' or 'v62.0'."""
        v = v.lstrip("v")
        try:
            float(v)
        except ValueError as e:
            raise ValueError(f"Invalid API version: {v}") from e
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.alias or (self.instance_url and self.access_token))


class PathConfig(BaseModel):
    """Configuration for file paths."""

    output_dir: str | None = Field(
        default=None, description="Directory for per-object record dumps (disabled if unset)"
    )
    report_dir: str = Field(default="reports", description="Directory for run reports")


class PerformanceConfig(BaseModel):
    """Transport tuning."""

    batch_size: int = Field(
        default=200, ge=1, le=200, description="Records per sObject Collections call (max 200)"
    )
    rate_limit: int = Field(default=20, ge=1, le=100, description="Requests per second limit")


class StateConfig(BaseModel):
    """Run state persistence configuration."""

    enabled: bool = Field(default=True, description="Persist id mappings and rollback ledger")
    db_path: str = Field(default="./migration_state.db", description="SQLite path or database URL")


class LoggingConfig(BaseModel):
    """HTTP payload logging. Levels and the log file are set on the command line."""

    log_payloads: bool = Field(
        default=False,
        description="Log request/response payloads at DEBUG level (tokens are redacted)",
    )
    max_payload_size: int = Field(default=10000, ge=100, le=1000000)


class MigrationConfig(BaseSettings):
    """Tool settings for a migration run."""

    model_config = SettingsConfigDict(
        env_prefix="SF_MIGRATE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: OrgConfig = Field(default_factory=OrgConfig, description="Source org")
    target: OrgConfig = Field(default_factory=OrgConfig, description="Target org")
    paths: PathConfig = Field(default_factory=PathConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    dry_run: bool = Field(default=False, description="Read and rewrite records, write nothing")
    patch_all_types: bool = Field(
        default=False,
        description="Run the reference patch pass for every migrated type, "
        "not only types declaring requiredReferences",
    )


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load tool settings from a YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        ConfigurationError: If the file is missing, empty or invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ConfigurationError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    try:
        return MigrationConfig(**config_data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def load_export_config(path: str | Path) -> ExportConfig:
    """Load the migration document (JSON, or YAML by extension).

    Raises:
        ConfigurationError: If the document is missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Export configuration not found: {path}")

    with open(path) as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if not data:
        raise ConfigurationError(f"Empty export configuration: {path}")

    try:
        return ExportConfig.model_validate(data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid export configuration in {path}: {e}") from e


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ``${VAR_NAME}`` values from the environment."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        var_name = data[2:-1]
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' not found. "
                f"Please set it in your environment or .env file."
            )
        return env_value
    return data
