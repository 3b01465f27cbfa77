"""On-disk artifacts of a run.

Record dumps (one JSON file per object type), the import plan listing those
files in load order, sObject-tree formatted exports, and the JSON run report.
"""

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sf_migration.client.database import Database, Record
from sf_migration.config import ID_FIELD, ExportConfig, TreeConfig
from sf_migration.migration.identity import ENVELOPE_FIELD
from sf_migration.migration.query_builder import QueryBuilder, TraversalState
from sf_migration.schema.cache import SchemaCache
from sf_migration.schema.models import keep_for_insert
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)

IMPORT_PLAN_FILE = "_import-plan.json"

# Record type ids are carried through unchanged; they are matched by
# business key on import, not by reference id.
PRESERVED_REFERENCE_FIELDS = ("RecordTypeId",)


def _write_json(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=4, default=str))
    return path


def write_record_dump(output_dir: str | Path, object_type: str, records: Sequence[Record]) -> Path:
    """Write ``records`` to ``<output_dir>/<object_type>.json``.

    Returns:
        Path of the written file
    """
    path = _write_json(Path(output_dir) / f"{object_type}.json", {"records": list(records)})
    logger.debug("record_dump_written", object_type=object_type, count=len(records), path=str(path))
    return path


def build_import_plan(
    tree_config: TreeConfig,
    dependency_configs: Sequence[TreeConfig] = (),
) -> list[dict[str, Any]]:
    """Order the files of a run so that every parent loads before its children.

    Dependencies and the tree root share level 1; each tree level below the
    root follows in depth order.

    Args:
        tree_config: Root of the record tree
        dependency_configs: Flat dependency configs

    Returns:
        Plan entries of the form ``{"sobject": ..., "files": [...]}``
    """
    levels: list[list[TreeConfig]] = [list(dependency_configs)]

    def collect(config: TreeConfig, depth: int) -> None:
        while len(levels) <= depth:
            levels.append([])
        levels[depth].append(config)
        for child in config.children:
            collect(child, depth + 1)

    collect(tree_config, 0)

    plan = []
    seen = set()
    for level in levels:
        for config in level:
            if config.api_name in seen:
                continue
            seen.add(config.api_name)
            plan.append({"sobject": config.api_name, "files": [f"{config.api_name}.json"]})
    return plan


def write_import_plan(output_dir: str | Path, plan: list[dict[str, Any]]) -> Path:
    """Write an import plan to ``<output_dir>/_import-plan.json``."""
    path = _write_json(Path(output_dir) / IMPORT_PLAN_FILE, plan)
    logger.info("import_plan_written", entries=len(plan), path=str(path))
    return path


def write_run_report(report_dir: str | Path, summary: dict[str, Any]) -> Path:
    """Write the JSON report of a migration run.

    Args:
        report_dir: Directory for reports
        summary: Run summary (see MigrationSummary.to_dict)

    Returns:
        Path of the written report
    """
    generated_at = datetime.now(UTC)
    report = {
        "report_version": "1.0",
        "generated_at": generated_at.isoformat(),
        "migration_id": summary.get("migration_id"),
        "summary": summary,
        "statistics": {
            "total_written": sum(summary.get("written", {}).values()),
            "total_patched": sum(summary.get("patched", {}).values()),
            "object_types": sorted(summary.get("written", {})),
        },
        "errors": summary.get("errors", []),
    }
    name = f"migration-{summary.get('migration_id') or generated_at.strftime('%Y%m%d%H%M%S')}.json"
    path = _write_json(Path(report_dir) / name, report)
    logger.info("run_report_saved", path=str(path))
    return path


class TreeExporter:
    """Exports a record tree as sObject-tree files plus an import plan.

    Each record gets ``attributes.type`` and a ``referenceId`` of the form
    ``<Type>Ref<n>``. Reference fields pointing at an exported record are
    rewritten to ``@<referenceId>``; any other reference is dropped. Nothing
    is written to an org.
    """

    def __init__(self, source: Database, schema: SchemaCache | None = None):
        self.source = source
        self.schema = schema or SchemaCache(source)
        self.query_builder = QueryBuilder(self.schema)
        self._reference_ids: dict[str, str] = {}
        self._counters: dict[str, int] = {}

    async def export(
        self,
        export_config: ExportConfig,
        output_dir: str | Path,
        dependency_configs: Sequence[TreeConfig] | None = None,
    ) -> list[dict[str, Any]]:
        """Read dependencies and the tree from the source and write them to ``output_dir``.

        Args:
            export_config: What to export
            output_dir: Destination directory
            dependency_configs: Dependency configs to use instead of the declared ones

        Returns:
            The import plan that was written
        """
        if dependency_configs is None:
            dependency_configs = export_config.dependency_config

        records_by_type: dict[str, list[Record]] = {}

        for config in dependency_configs:
            soql = await self.query_builder.build_for_config(config)
            if soql is None:
                continue
            await self._export_records(config, await self.source.query(soql), records_by_type)

        tree_config = export_config.tree_config
        await self._export_tree(tree_config, TraversalState.for_root(tree_config), records_by_type)

        for object_type, records in records_by_type.items():
            write_record_dump(output_dir, object_type, records)

        plan = [
            entry
            for entry in build_import_plan(tree_config, dependency_configs)
            if entry["sobject"] in records_by_type
        ]
        write_import_plan(output_dir, plan)
        logger.info(
            "tree_export_completed",
            counts={object_type: len(records) for object_type, records in records_by_type.items()},
        )
        return plan

    async def _export_tree(
        self,
        config: TreeConfig,
        state: TraversalState,
        records_by_type: dict[str, list[Record]],
    ) -> None:
        soql = await self.query_builder.build_for_config(config, state)
        if soql is None:
            return
        records = await self.source.query(soql)
        if not records:
            logger.warning("no_records_found", object_type=config.api_name, phase="export")
            return

        await self._export_records(config, records, records_by_type)

        record_ids = [record[ID_FIELD] for record in records]
        for child in config.children:
            await self._export_tree(child, TraversalState.for_child(record_ids), records_by_type)

    async def _export_records(
        self,
        config: TreeConfig,
        records: list[Record],
        records_by_type: dict[str, list[Record]],
    ) -> None:
        formatted = await self.format_records(config.api_name, records)
        records_by_type.setdefault(config.api_name, []).extend(formatted)

    async def format_records(self, object_type: str, records: Sequence[Record]) -> list[Record]:
        """Convert source records to sObject-tree records.

        Reference ids are assigned before references are rewritten, so
        records may point at siblings of the same batch.
        """
        describe = await self.schema.describe(object_type)
        field_map = describe.field_map

        reference_ids = []
        for record in records:
            self._counters[object_type] = self._counters.get(object_type, 0) + 1
            reference_id = f"{object_type}Ref{self._counters[object_type]}"
            self._reference_ids[record[ID_FIELD]] = reference_id
            reference_ids.append(reference_id)

        formatted = []
        for record, reference_id in zip(records, reference_ids, strict=True):
            body: Record = {}
            for name, value in record.items():
                if name in (ENVELOPE_FIELD, ID_FIELD) or value is None:
                    continue
                describe_field = field_map.get(name)
                if describe_field is not None and not keep_for_insert(describe_field):
                    continue
                if (
                    describe_field is not None
                    and describe_field.is_reference
                    and name not in PRESERVED_REFERENCE_FIELDS
                ):
                    reference_id_of_target = self._reference_ids.get(value)
                    if reference_id_of_target is None:
                        continue
                    value = f"@{reference_id_of_target}"
                body[name] = value
            formatted.append({"attributes": {"type": object_type, "referenceId": reference_id}, **body})
        return formatted
