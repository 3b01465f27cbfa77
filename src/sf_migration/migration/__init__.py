"""
Migration module for Salesforce record trees.

This module provides run-state persistence; the migration services live in
their own submodules (query_builder, identity, analyzer, ledger,
orchestrator).
"""

from sf_migration.migration.database import create_database_engine, session_scope
from sf_migration.migration.models import Base, IDMapping, LedgerRecord, MigrationRun
from sf_migration.migration.state import MigrationState

__all__ = [
    "Base",
    "IDMapping",
    "LedgerRecord",
    "MigrationRun",
    "MigrationState",
    "create_database_engine",
    "session_scope",
]
