"""Discovery of records the tree references but does not own.

The analyzer reads the configured tree from the source org, then inspects
every populated reference field of every loaded record. Referenced records
that are outside the tree become dependencies: one flat TreeConfig per
referenced object type, to be migrated before the tree itself.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sf_migration.client.database import Database, Record
from sf_migration.config import ID_FIELD, TreeConfig
from sf_migration.migration.query_builder import QueryBuilder, TraversalState
from sf_migration.schema.cache import SchemaCache
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DependencyAnalysis:
    """Result of a dependency scan.

    Attributes:
        references: ``(source type, field) -> target type -> source record ids``
        dependency_configs: One synthesized flat TreeConfig per target type
        tree_record_ids: Every record id read while walking the tree
    """

    references: dict[tuple[str, str], dict[str, set[str]]] = field(default_factory=dict)
    dependency_configs: list[TreeConfig] = field(default_factory=list)
    tree_record_ids: set[str] = field(default_factory=set)

    def to_report(self) -> dict[str, Any]:
        """JSON-serializable view used by the analyze command."""
        return {
            "references": {
                f"{source_type}.{field_name}": {
                    target_type: sorted(ids) for target_type, ids in targets.items()
                }
                for (source_type, field_name), targets in self.references.items()
            },
            "dependencyConfig": [config.to_document() for config in self.dependency_configs],
        }


class DependencyAnalyzer:
    """Read-only scan of the source tree for external references.

    The analyzer never touches the target org and never mutates the
    configuration, so it can be run any number of times.
    """

    def __init__(
        self,
        source: Database,
        schema: SchemaCache,
        skip_types: Iterable[str] = (),
        key_matched_types: Iterable[str] = (),
    ):
        """Initialize the analyzer.

        Args:
            source: Source org database
            schema: Source org schema cache
            skip_types: Object types never treated as dependencies
            key_matched_types: Types resolved by business-key matching (e.g. RecordType)
        """
        self.source = source
        self.schema = schema
        self.query_builder = QueryBuilder(schema)
        self.skip_types = set(skip_types)
        self.key_matched_types = set(key_matched_types)

    async def analyze(self, tree_config: TreeConfig) -> DependencyAnalysis:
        """Scan the tree and fold its external references into dependency configs."""
        loaded: list[tuple[TreeConfig, list[Record]]] = []
        await self._load_tree(tree_config, TraversalState.for_root(tree_config), loaded)

        analysis = DependencyAnalysis()
        for _, records in loaded:
            analysis.tree_record_ids.update(record[ID_FIELD] for record in records)

        for config, records in loaded:
            await self._collect_references(config, records, analysis)

        analysis.dependency_configs = await self._build_dependency_configs(analysis.references)
        logger.info(
            "dependency_analysis_completed",
            tree_records=len(analysis.tree_record_ids),
            reference_fields=len(analysis.references),
            dependency_types=[c.api_name for c in analysis.dependency_configs],
        )
        return analysis

    async def _load_tree(
        self,
        config: TreeConfig,
        state: TraversalState,
        loaded: list[tuple[TreeConfig, list[Record]]],
    ) -> None:
        soql = await self.query_builder.build_for_config(config, state)
        if soql is None:
            return
        records = await self.source.query(soql)
        loaded.append((config, records))
        logger.debug("tree_node_loaded", object_type=config.api_name, count=len(records))

        record_ids = [record[ID_FIELD] for record in records]
        for child in config.children:
            await self._load_tree(child, TraversalState.for_child(record_ids), loaded)

    async def _collect_references(
        self,
        config: TreeConfig,
        records: list[Record],
        analysis: DependencyAnalysis,
    ) -> None:
        describe = await self.schema.describe(config.api_name)
        reference_fields = [
            f
            for f in describe.fields
            if f.is_reference and f.is_migratable and f.name not in config.excluded_fields
        ]

        for record in records:
            for ref_field in reference_fields:
                value = record.get(ref_field.name)
                if not value or value in analysis.tree_record_ids:
                    continue
                if not ref_field.reference_to:
                    continue

                if ref_field.is_polymorphic:
                    target_type = await self.schema.resolve_type_of_id(value)
                else:
                    target_type = ref_field.reference_to[0]

                if target_type is None:
                    logger.debug(
                        "reference_type_unresolved",
                        object_type=config.api_name,
                        field=ref_field.name,
                        value=value,
                    )
                    continue
                if target_type in self.skip_types or target_type in self.key_matched_types:
                    continue

                targets = analysis.references.setdefault((config.api_name, ref_field.name), {})
                targets.setdefault(target_type, set()).add(value)

    async def _build_dependency_configs(
        self, references: dict[tuple[str, str], dict[str, set[str]]]
    ) -> list[TreeConfig]:
        ids_by_type: dict[str, set[str]] = defaultdict(set)
        for targets in references.values():
            for target_type, ids in targets.items():
                ids_by_type[target_type].update(ids)

        configs = []
        for target_type, ids in ids_by_type.items():
            describe = await self.schema.describe(target_type)
            external_ids = describe.external_id_field_names
            configs.append(
                TreeConfig(
                    api_name=target_type,
                    record_ids=tuple(sorted(ids)),
                    external_id_field=tuple(external_ids) if external_ids else None,
                )
            )
        return configs


def merge_dependency_configs(
    declared: Iterable[TreeConfig], discovered: Iterable[TreeConfig]
) -> list[TreeConfig]:
    """Extend declared dependency configs with discovered ones.

    A discovered type that is also declared adds its ids to the declared
    config instead of producing a second config for the same type.
    """
    merged = {config.api_name: config for config in declared}
    for config in discovered:
        existing = merged.get(config.api_name)
        if existing is None:
            merged[config.api_name] = config
            continue
        ids = {*(existing.record_ids or ()), *(config.record_ids or ())}
        merged[config.api_name] = existing.model_copy(update={"record_ids": tuple(sorted(ids))})
    return list(merged.values())
