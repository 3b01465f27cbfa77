"""Database capability consumed by the migration engine.

The engine never talks to Salesforce directly: it goes through this
protocol, so the REST client can be swapped for an in-memory fake in tests.
Write calls accept caller-supplied correlation keys that are echoed back on
each WriteResult, which removes the need to rely on result ordering.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from sf_migration.client.exceptions import MigrationError
from sf_migration.schema.models import SObjectDescribe

Record = dict[str, Any]


@dataclass(frozen=True)
class WriteError:
    """One row-level error reported by the platform."""

    code: str
    message: str
    fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class WriteResult:
    """Outcome of writing one record.

    Attributes:
        success: Whether the row was accepted
        id: Target record id (set on success)
        created: For upserts, whether a new record was created
        errors: Row-level errors when success is False
        key: Correlation key supplied by the caller for this row
    """

    success: bool
    id: str | None = None
    created: bool | None = None
    errors: tuple[WriteError, ...] = ()
    key: str | None = None

    @property
    def is_new_record(self) -> bool:
        """True if this write created a record (and so must be rolled back on failure)."""
        if not self.success or not self.id:
            return False
        return self.created is not False

    @classmethod
    def from_api(cls, data: dict[str, Any], key: str | None = None) -> "WriteResult":
        """Build from an sObject Collections result row."""
        errors = tuple(
            WriteError(
                code=str(err.get("statusCode") or err.get("errorCode") or "UNKNOWN"),
                message=str(err.get("message", "")),
                fields=tuple(err.get("fields") or ()),
            )
            for err in data.get("errors") or ()
        )
        return cls(
            success=bool(data.get("success")),
            id=data.get("id"),
            created=data.get("created"),
            errors=errors,
            key=key,
        )


@dataclass
class WriteSummary:
    """Unified summary of one write call."""

    success_count: int = 0
    success_ids: list[str] = field(default_factory=list)
    error_count: int = 0
    errors: list[WriteError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0


@runtime_checkable
class Database(Protocol):
    """Query, write and describe operations against one org."""

    async def query(self, soql: str) -> list[Record]: ...

    async def insert(
        self, object_type: str, records: Sequence[Record], keys: Sequence[str] | None = None
    ) -> list[WriteResult]: ...

    async def update(
        self, object_type: str, records: Sequence[Record], keys: Sequence[str] | None = None
    ) -> list[WriteResult]: ...

    async def upsert(
        self,
        object_type: str,
        records: Sequence[Record],
        external_id_field: str,
        keys: Sequence[str] | None = None,
        all_or_none: bool = False,
    ) -> list[WriteResult]: ...

    async def delete(self, object_type: str, ids: Sequence[str]) -> list[WriteResult]: ...

    async def describe(self, object_type: str) -> SObjectDescribe: ...

    async def describe_global(self) -> list[dict[str, Any]]: ...


def summarize_results(results: Sequence[WriteResult]) -> WriteSummary:
    """Fold row results into a WriteSummary."""
    summary = WriteSummary()
    for result in results:
        if result.success:
            summary.success_count += 1
            if result.id:
                summary.success_ids.append(result.id)
        else:
            summary.error_count += 1
            summary.errors.extend(result.errors)
    return summary


def log_write_summary(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    object_type: str,
    summary: WriteSummary,
) -> None:
    """Log a write summary: successes at info, row errors at warning."""
    if summary.success_count:
        logger.info(
            "records_written",
            operation=operation,
            object_type=object_type,
            count=summary.success_count,
            ids=summary.success_ids,
        )
    if summary.error_count:
        logger.warning(
            "records_rejected",
            operation=operation,
            object_type=object_type,
            count=summary.error_count,
            errors=[f"{e.message} ({e.code})" for e in summary.errors],
        )


def pair_results(
    keys: Sequence[str], results: Sequence[WriteResult]
) -> list[tuple[str, WriteResult]]:
    """Pair each correlation key with its write result.

    Results carrying a key are matched by key; results without one fall
    back to positional alignment, which requires equal lengths.

    Raises:
        MigrationError: If results cannot be paired unambiguously
    """
    if results and all(result.key is not None for result in results):
        by_key = {result.key: result for result in results}
        return [(key, by_key[key]) for key in keys if key in by_key]

    if len(keys) != len(results):
        raise MigrationError(
            f"Cannot pair {len(results)} write results with {len(keys)} source records"
        )
    return list(zip(keys, results, strict=True))
