"""
Migration state management.

This module provides the MigrationState class for persisting the outcome of
a migration run: the run itself, every source-to-target id mapping, and the
rollback ledger of records created on the target.
"""

import threading
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from sf_migration.client.exceptions import StateError
from sf_migration.config import StateConfig
from sf_migration.migration.database import (
    create_database_engine,
    database_url_for,
    session_scope,
)
from sf_migration.migration.models import IDMapping, LedgerRecord, MigrationRun
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)


class MigrationState:
    """
    Persists run state for one migration.

    Methods are thread-safe and every call runs in its own short session, so
    whatever was recorded before a crash is still on disk afterwards.

    Usage:
        with MigrationState(config) as state:
            state.start_run(source="dev", target="qa")
            state.record_mapping("Account", "001A", "001B")
            state.finish_run("completed", written=1)
    """

    def __init__(self, config: StateConfig, migration_id: str | None = None):
        """
        Initialize the state store.

        Args:
            config: State configuration
            migration_id: Identifier for this run (generates a UUID if None)

        Raises:
            ConfigurationError: If the database cannot be initialized
        """
        self.config = config
        self.migration_id = migration_id or str(uuid.uuid4())
        self.database_url = database_url_for(config.db_path)
        self._lock = threading.RLock()

        self.engine = create_database_engine(self.database_url)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(
            "migration_state_initialized",
            migration_id=self.migration_id,
            database_path=config.db_path,
        )

    def __enter__(self) -> "MigrationState":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Dispose of the database engine."""
        self.engine.dispose()

    def start_run(
        self,
        source: str | None = None,
        target: str | None = None,
        dry_run: bool = False,
    ) -> None:
        """Create the run row in ``in_progress`` status."""
        with self._lock, session_scope(self._sessions) as session:
            session.add(
                MigrationRun(
                    migration_id=self.migration_id,
                    source_org=source,
                    target_org=target,
                    dry_run=dry_run,
                    status="in_progress",
                )
            )
        logger.debug("migration_run_started", migration_id=self.migration_id)

    def finish_run(self, status: str, written: int = 0) -> None:
        """
        Mark the run completed or failed.

        Args:
            status: Final status, ``completed`` or ``failed``
            written: Total number of records written

        Raises:
            StateError: If the run was never started
        """
        with self._lock, session_scope(self._sessions) as session:
            run = session.get(MigrationRun, self.migration_id)
            if run is None:
                raise StateError(f"Migration run {self.migration_id} was never started")
            run.status = status
            run.records_written = written
            run.completed_at = datetime.now(UTC)
        logger.debug("migration_run_finished", migration_id=self.migration_id, status=status)

    def record_mapping(
        self,
        object_type: str,
        source_id: str,
        target_id: str,
        origin: str = "write",
    ) -> None:
        """Persist one source-to-target id mapping."""
        with self._lock, session_scope(self._sessions) as session:
            session.add(
                IDMapping(
                    migration_id=self.migration_id,
                    object_type=object_type,
                    source_id=source_id,
                    target_id=target_id,
                    origin=origin,
                )
            )

    def record_ledger_entry(
        self, sequence: int, object_type: str, target_ids: Sequence[str]
    ) -> None:
        """Persist one rollback ledger entry."""
        with self._lock, session_scope(self._sessions) as session:
            session.add(
                LedgerRecord(
                    migration_id=self.migration_id,
                    sequence=sequence,
                    object_type=object_type,
                    target_ids=list(target_ids),
                )
            )

    def mark_rolled_back(self) -> None:
        """Flag every ledger entry of this run, and the run itself, as rolled back."""
        with self._lock, session_scope(self._sessions) as session:
            session.execute(
                update(LedgerRecord)
                .where(LedgerRecord.migration_id == self.migration_id)
                .values(rolled_back=True)
            )
            run = session.get(MigrationRun, self.migration_id)
            if run is not None:
                run.rolled_back = True
        logger.info("migration_run_rolled_back", migration_id=self.migration_id)

    def get_mappings(self, migration_id: str | None = None) -> dict[str, str]:
        """
        Return the id mappings of a run.

        Args:
            migration_id: Run to read (defaults to this run)

        Returns:
            Dictionary of source id to target id
        """
        run_id = migration_id or self.migration_id
        with self._lock, session_scope(self._sessions) as session:
            rows = session.execute(
                select(IDMapping.source_id, IDMapping.target_id).where(
                    IDMapping.migration_id == run_id
                )
            ).all()
        return {source_id: target_id for source_id, target_id in rows}

    def get_ledger(self, migration_id: str | None = None) -> list[dict[str, Any]]:
        """Return the ledger entries of a run in write order."""
        run_id = migration_id or self.migration_id
        with self._lock, session_scope(self._sessions) as session:
            rows = session.scalars(
                select(LedgerRecord)
                .where(LedgerRecord.migration_id == run_id)
                .order_by(LedgerRecord.sequence)
            ).all()
            return [
                {
                    "sequence": row.sequence,
                    "object_type": row.object_type,
                    "target_ids": list(row.target_ids),
                    "rolled_back": row.rolled_back,
                }
                for row in rows
            ]

    def get_run(self, migration_id: str | None = None) -> dict[str, Any] | None:
        """Return a summary of a run, or None if it does not exist."""
        run_id = migration_id or self.migration_id
        with self._lock, session_scope(self._sessions) as session:
            run = session.get(MigrationRun, run_id)
            if run is None:
                return None
            return {
                "migration_id": run.migration_id,
                "source_org": run.source_org,
                "target_org": run.target_org,
                "status": run.status,
                "dry_run": run.dry_run,
                "records_written": run.records_written,
                "rolled_back": run.rolled_back,
                "started_at": run.started_at,
                "completed_at": run.completed_at,
            }
