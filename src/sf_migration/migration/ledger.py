"""Rollback ledger of records created on the target during a run."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sf_migration.client.database import Database, summarize_results
from sf_migration.utils.logging import get_logger

if TYPE_CHECKING:
    from sf_migration.migration.state import MigrationState

logger = get_logger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """Target ids created by one write call."""

    object_type: str
    target_ids: tuple[str, ...]


class RollbackLedger:
    """Ordered record of every batch this run inserted.

    Entries are appended after each write call and replayed newest first
    when the run fails. A rollback never raises because one object type
    could not be fully cleaned up.
    """

    def __init__(self, state: "MigrationState | None" = None):
        self.state = state
        self._entries: list[LedgerEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    def push(self, object_type: str, target_ids: Sequence[str]) -> None:
        if not target_ids:
            return
        entry = LedgerEntry(object_type, tuple(target_ids))
        self._entries.append(entry)
        if self.state is not None:
            self.state.record_ledger_entry(len(self._entries), object_type, entry.target_ids)

    async def rollback(self, database: Database) -> list[LedgerEntry]:
        """Delete every recorded batch from ``database``, newest first, then clear.

        Returns:
            The entries that were replayed, in replay order
        """
        replayed = list(reversed(self._entries))
        logger.warning("rollback_started", batches=len(replayed))

        for entry in replayed:
            try:
                results = await database.delete(entry.object_type, entry.target_ids)
            except Exception as e:
                logger.error(
                    "rollback_delete_failed",
                    object_type=entry.object_type,
                    ids=list(entry.target_ids),
                    error=str(e),
                )
                continue

            summary = summarize_results(results)
            if summary.has_errors:
                logger.error(
                    "rollback_delete_partial",
                    object_type=entry.object_type,
                    deleted=summary.success_count,
                    failed=summary.error_count,
                    errors=[f"{e.message} ({e.code})" for e in summary.errors],
                )
            else:
                logger.info(
                    "rollback_deleted", object_type=entry.object_type, count=summary.success_count
                )

        if self.state is not None:
            self.state.mark_rolled_back()
        self._entries.clear()
        logger.warning("rollback_completed", batches=len(replayed))
        return replayed
