"""Migration orchestrator.

Drives one run end to end, strictly sequentially:

1. key mapping   - pair business-keyed records (record types) across orgs
2. dependencies  - flat upsert/insert of referenced-but-unowned records,
                   each followed by an update pass
3. main tree     - pre-order, depth-first; children are read through the
                   ids of the rows just written for their parent
4. patch         - update pass over dependency types and types declaring
                   requiredReferences, closing references that could not
                   be resolved at insert time

Any failure rolls back every record this run created, newest batch first,
and re-raises.
"""

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sf_migration.client.database import (
    Database,
    Record,
    WriteResult,
    log_write_summary,
    summarize_results,
)
from sf_migration.client.exceptions import DatabaseWriteError
from sf_migration.config import ID_FIELD, ExportConfig, MigrationConfig, TreeConfig
from sf_migration.migration.analyzer import DependencyAnalyzer, merge_dependency_configs
from sf_migration.migration.identity import IdentityMapper
from sf_migration.migration.ledger import RollbackLedger
from sf_migration.migration.query_builder import QueryBuilder, TraversalState
from sf_migration.reporting.artifacts import write_record_dump
from sf_migration.schema.cache import SchemaCache
from sf_migration.schema.models import keep_for_insert, keep_for_update
from sf_migration.utils.logging import get_logger, log_error

if TYPE_CHECKING:
    from sf_migration.migration.state import MigrationState

logger = get_logger(__name__)


@dataclass
class MigrationSummary:
    """Outcome of a migration run."""

    status: str = "in_progress"
    migration_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    dry_run: bool = False
    key_mappings: int = 0
    dependency_types: list[str] = field(default_factory=list)
    written: Counter = field(default_factory=Counter)
    patched: Counter = field(default_factory=Counter)
    rolled_back_batches: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "migration_id": self.migration_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "dry_run": self.dry_run,
            "key_mappings": self.key_mappings,
            "dependency_types": self.dependency_types,
            "written": dict(self.written),
            "patched": dict(self.patched),
            "rolled_back_batches": self.rolled_back_batches,
            "errors": self.errors,
        }


class MigrationOrchestrator:
    """Migrates a record tree and its dependencies from source to target.

    All run-scoped services (schema cache, identity mapper, ledger) are built
    here, so every orchestrator starts from fresh state.
    """

    def __init__(
        self,
        export_config: ExportConfig,
        source: Database,
        target: Database,
        config: MigrationConfig | None = None,
        state: "MigrationState | None" = None,
    ):
        """Initialize the orchestrator.

        Args:
            export_config: Tree, dependencies and key mappings to migrate
            source: Source org database
            target: Target org database
            config: Tool settings (dry run, patch policy, output paths)
            state: Optional persistent run state
        """
        self.export_config = export_config
        self.source = source
        self.target = target
        self.config = config or MigrationConfig()
        self.state = state

        self.schema = SchemaCache(source)
        self.query_builder = QueryBuilder(self.schema)
        self.identity = IdentityMapper(source, target, self.schema, self.query_builder, state)
        self.ledger = RollbackLedger(state)
        self.analyzer = DependencyAnalyzer(
            source,
            self.schema,
            skip_types=export_config.skip_sobject_dependencies,
            key_matched_types=export_config.key_matched_types,
        )

        self.summary = MigrationSummary(dry_run=self.config.dry_run)
        self._retained: dict[str, list[Record]] = {}
        self._source_records: dict[str, list[Record]] = {}
        self._patch_types: list[str] = []
        self._dry_run_sequence = 0

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    async def migrate(self) -> MigrationSummary:
        """Run all phases; roll back and re-raise on the first failure."""
        self.summary.started_at = datetime.now(UTC)
        if self.state is not None:
            self.summary.migration_id = self.state.migration_id
            self.state.start_run(
                source=self.config.source.alias or self.config.source.instance_url,
                target=self.config.target.alias or self.config.target.instance_url,
                dry_run=self.dry_run,
            )

        logger.info(
            "migration_started",
            root=self.export_config.tree_config.api_name,
            dry_run=self.dry_run,
        )

        try:
            dependency_configs = await self.resolve_dependency_configs()
            self.summary.dependency_types = [c.api_name for c in dependency_configs]

            await self._map_business_keys(dependency_configs)
            await self._migrate_dependencies(dependency_configs)

            tree_config = self.export_config.tree_config
            await self._migrate_tree(tree_config, TraversalState.for_root(tree_config))

            await self._patch_references()

        except Exception as e:
            log_error(logger, e, context="migration")
            self.summary.errors.append(str(e))
            await self.rollback()
            self._finish("failed")
            raise

        self._finish("completed")
        logger.info(
            "migration_completed",
            written=dict(self.summary.written),
            patched=dict(self.summary.patched),
        )
        return self.summary

    async def rollback(self) -> None:
        """Delete everything this run created on the target."""
        if not len(self.ledger):
            return
        replayed = await self.ledger.rollback(self.target)
        self.summary.rolled_back_batches = len(replayed)

    async def resolve_dependency_configs(self) -> list[TreeConfig]:
        """Declared dependency configs, extended with discovered ones when enabled.

        A discovered type that is also declared adds its ids to the
        declared config instead of producing a second config.
        """
        declared = self.export_config.dependency_config
        if not self.export_config.discover_dependencies:
            return list(declared)

        analysis = await self.analyzer.analyze(self.export_config.tree_config)
        return merge_dependency_configs(declared, analysis.dependency_configs)

    async def _map_business_keys(self, dependency_configs: Sequence[TreeConfig]) -> None:
        if not self.export_config.key_mappings:
            return
        logger.info("key_mapping_phase_started")
        self.summary.key_mappings = await self.identity.add_key_mappings(
            self.export_config.tree_config,
            dependency_configs,
            self.export_config.key_mappings,
        )

    async def _migrate_dependencies(self, dependency_configs: Sequence[TreeConfig]) -> None:
        if not dependency_configs:
            return
        logger.info("dependency_phase_started", types=[c.api_name for c in dependency_configs])

        for config in dependency_configs:
            soql = await self.query_builder.build_for_config(config)
            if soql is None:
                continue
            records = [
                record
                for record in await self.source.query(soql)
                if record[ID_FIELD] not in self.identity
            ]
            if not records:
                logger.warning("no_records_found", object_type=config.api_name, phase="dependencies")
                continue

            retained = await self._write_node(config, records)
            await self._update_pass(config.api_name, retained)
            # References to later dependencies or to the tree close in the patch phase.
            if config.api_name not in self._patch_types:
                self._patch_types.append(config.api_name)

    async def _migrate_tree(self, config: TreeConfig, state: TraversalState) -> None:
        soql = await self.query_builder.build_for_config(config, state)
        if soql is None:
            logger.debug("tree_node_skipped", object_type=config.api_name)
            return

        records = await self.source.query(soql)
        if not records:
            logger.warning("no_records_found", object_type=config.api_name, phase="tree")
            return

        await self._write_node(config, records)

        record_ids = [record[ID_FIELD] for record in records]
        for child in config.children:
            await self._migrate_tree(child, TraversalState.for_child(record_ids))

    async def _write_node(self, config: TreeConfig, records: list[Record]) -> list[Record]:
        """Write one node's records, register their ids, and retain them for patching."""
        results = await self._write(config, records)

        reconcile_config = config
        if self.dry_run and config.required_references:
            reconcile_config = config.model_copy(update={"required_references": ()})
        await self.identity.add_references_from_results(records, results, reconcile_config)

        self._source_records.setdefault(config.api_name, []).extend(records)

        retained = [
            {k: v for k, v in record.items() if k not in config.required_references}
            for record in records
        ]
        self._retained.setdefault(config.api_name, []).extend(retained)
        if config.required_references and config.api_name not in self._patch_types:
            self._patch_types.append(config.api_name)
        return retained

    async def _write(self, config: TreeConfig, records: list[Record]) -> list[WriteResult]:
        keys = [record[ID_FIELD] for record in records]
        payload = await self.identity.assign_references(records, config.api_name, keep_for_insert)

        upsert_key = config.upsert_key
        operation = "upsert" if upsert_key else "insert"

        if self.dry_run:
            results = [self._dry_run_result(config.api_name, key) for key in keys]
        elif upsert_key:
            results = await self.target.upsert(config.api_name, payload, upsert_key, keys=keys)
        else:
            results = await self.target.insert(config.api_name, payload, keys=keys)

        if not self.dry_run:
            self.ledger.push(config.api_name, [r.id for r in results if r.is_new_record])

        summary = summarize_results(results)
        log_write_summary(logger, operation, config.api_name, summary)
        if summary.has_errors:
            raise DatabaseWriteError(operation, config.api_name, summary)

        self.summary.written[config.api_name] += summary.success_count
        return results

    async def _update_pass(self, object_type: str, records: list[Record]) -> int:
        """Re-assign references with the updatable predicate and update the target."""
        payload = [
            record
            for record in await self.identity.assign_references(
                records, object_type, keep_for_update
            )
            if ID_FIELD in record and len(record) > 1
        ]
        if not payload:
            return 0

        if self.dry_run:
            self.summary.patched[object_type] += len(payload)
            return len(payload)

        results = await self.target.update(
            object_type, payload, keys=[record[ID_FIELD] for record in payload]
        )
        summary = summarize_results(results)
        log_write_summary(logger, "update", object_type, summary)
        if summary.has_errors:
            raise DatabaseWriteError("update", object_type, summary)

        self.summary.patched[object_type] += summary.success_count
        return summary.success_count

    async def _patch_references(self) -> None:
        object_types = list(self._retained) if self.config.patch_all_types else self._patch_types
        if not object_types:
            return
        logger.info("patch_phase_started", types=object_types)
        for object_type in object_types:
            await self._update_pass(object_type, self._retained[object_type])

    def _dry_run_result(self, object_type: str, key: str) -> WriteResult:
        self._dry_run_sequence += 1
        return WriteResult(
            success=True,
            id=f"DRYRUN-{object_type}-{self._dry_run_sequence}",
            created=True,
            key=key,
        )

    def _finish(self, status: str) -> None:
        self.summary.status = status
        self.summary.finished_at = datetime.now(UTC)
        self.write_artifacts()
        if self.state is not None:
            self.state.finish_run(status, written=sum(self.summary.written.values()))

    def write_artifacts(self) -> None:
        """Dump the source records read for each object type, when an output dir is set."""
        output_dir = self.config.paths.output_dir
        if not output_dir:
            return
        for object_type, records in self._source_records.items():
            write_record_dump(output_dir, object_type, records)
