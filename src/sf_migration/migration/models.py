"""
SQLAlchemy models for migration run state.

This module defines the database schema for persisting the identity
mappings and the rollback ledger of each migration run.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MigrationRun(Base):
    """
    One row per migration run.

    Tracks the orgs involved, the overall status and timing of the run.
    """

    __tablename__ = "migration_runs"

    migration_id: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="Run identifier (UUID)"
    )
    source_org: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Source org alias or instance URL"
    )
    target_org: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Target org alias or instance URL"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="in_progress",
        index=True,
        comment="Run status: in_progress, completed, failed",
    )
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    records_written: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rolled_back: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Whether the ledger was replayed"
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    id_mappings: Mapped[list["IDMapping"]] = relationship(
        "IDMapping", back_populates="run", cascade="all, delete-orphan"
    )
    ledger_entries: Mapped[list["LedgerRecord"]] = relationship(
        "LedgerRecord", back_populates="run", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'failed')",
            name="ck_migration_runs_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<MigrationRun(migration_id='{self.migration_id}', status='{self.status}')>"


class IDMapping(Base):
    """
    Maps a source record id to a target record id within one run.

    ``origin`` records which producer registered the mapping: a write,
    business-key matching, or a required-reference read-back.
    """

    __tablename__ = "id_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    migration_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("migration_runs.migration_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    object_type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    origin: Mapped[str] = mapped_column(String(255), nullable=False, default="write")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    run: Mapped["MigrationRun"] = relationship("MigrationRun", back_populates="id_mappings")

    __table_args__ = (
        UniqueConstraint("migration_id", "source_id", name="uq_run_source_id"),
        Index("idx_run_object_type", "migration_id", "object_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<IDMapping(object_type='{self.object_type}', "
            f"source_id='{self.source_id}', target_id='{self.target_id}')>"
        )


class LedgerRecord(Base):
    """
    One rollback ledger entry: the target ids created by one write call.
    """

    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    migration_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("migration_runs.migration_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    object_type: Mapped[str] = mapped_column(String(255), nullable=False)
    target_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    rolled_back: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    run: Mapped["MigrationRun"] = relationship("MigrationRun", back_populates="ledger_entries")

    __table_args__ = (UniqueConstraint("migration_id", "sequence", name="uq_run_sequence"),)

    def __repr__(self) -> str:
        return (
            f"<LedgerRecord(sequence={self.sequence}, object_type='{self.object_type}', "
            f"ids={len(self.target_ids)})>"
        )
