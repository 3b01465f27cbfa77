"""Source-to-target identity mapping and reference rewriting.

The IdentityMapper owns the single ``source id -> target id`` table of a
run. It is fed by three producers: write results as each node is written,
business-key matching of types that exist on both orgs (record types), and
read-backs of ``requiredReferences`` fields after insert. Record payloads
are rewritten through it before every write.
"""

import copy
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any

from sf_migration.client.database import Database, Record, WriteResult, pair_results
from sf_migration.config import ID_FIELD, KeyMapping, TreeConfig
from sf_migration.migration.query_builder import QueryBuilder
from sf_migration.schema.cache import SchemaCache
from sf_migration.schema.models import FieldPredicate
from sf_migration.utils.logging import get_logger

if TYPE_CHECKING:
    from sf_migration.migration.state import MigrationState

logger = get_logger(__name__)

ENVELOPE_FIELD = "attributes"


class IdentityMapper:
    """Maps source record ids to target record ids for one migration run.

    A source id is registered at most once. Looking up an unregistered id
    returns None, and reference fields holding such ids are dropped from
    outgoing payloads rather than written with a foreign org's id.
    """

    def __init__(
        self,
        source: Database,
        target: Database,
        schema: SchemaCache,
        query_builder: QueryBuilder | None = None,
        state: "MigrationState | None" = None,
    ):
        """Initialize the identity mapper.

        Args:
            source: Source org database
            target: Target org database
            schema: Source org schema cache (decides which fields are references)
            query_builder: Query builder for reconciliation reads
            state: Optional run state that persists every registration
        """
        self.source = source
        self.target = target
        self.schema = schema
        self.query_builder = query_builder or QueryBuilder(schema)
        self.state = state
        self._mapping: dict[str, str] = {}

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._mapping.items())

    def resolve(self, source_id: Any) -> str | None:
        if not isinstance(source_id, str):
            return None
        return self._mapping.get(source_id)

    def register(
        self,
        source_id: Any,
        target_id: Any,
        object_type: str,
        origin: str = "write",
    ) -> bool:
        """Register ``source_id -> target_id`` unless the source id is already mapped.

        Returns:
            True if a new mapping was added
        """
        if not source_id or not target_id:
            return False

        existing = self._mapping.get(source_id)
        if existing is not None:
            if existing != target_id:
                logger.warning(
                    "identity_mapping_conflict",
                    object_type=object_type,
                    source_id=source_id,
                    mapped_target_id=existing,
                    rejected_target_id=target_id,
                )
            return False

        self._mapping[source_id] = target_id
        if self.state is not None:
            self.state.record_mapping(object_type, source_id, target_id, origin)
        return True

    async def assign_references(
        self,
        records: Sequence[Record],
        object_type: str,
        keep_field: FieldPredicate,
    ) -> list[Record]:
        """Prepare source records for a write against the target org.

        Returns deep copies where the transport envelope and null fields are
        removed, reference and id fields are rewritten to mapped target ids
        (or removed when unmapped), and fields failing ``keep_field`` are
        removed.
        """
        describe = await self.schema.describe(object_type)
        reference_fields = describe.reference_field_names
        field_map = describe.field_map

        prepared = []
        dropped: dict[str, int] = {}
        for record in copy.deepcopy(list(records)):
            record.pop(ENVELOPE_FIELD, None)
            for name in list(record):
                value = record[name]
                if value is None:
                    del record[name]
                elif name in reference_fields:
                    target_id = self.resolve(value)
                    if target_id is None:
                        del record[name]
                        dropped[name] = dropped.get(name, 0) + 1
                    else:
                        record[name] = target_id

            for name in list(record):
                field = field_map.get(name)
                if field is not None and not keep_field(field):
                    del record[name]
            prepared.append(record)

        if dropped:
            logger.debug("unresolved_references_dropped", object_type=object_type, fields=dropped)
        return prepared

    async def add_references_from_results(
        self,
        source_records: Sequence[Record],
        results: Sequence[WriteResult],
        config: TreeConfig,
    ) -> list[str]:
        """Register the ids assigned by a write and read back required references.

        Args:
            source_records: Records as read from the source org, in write order
            results: Write results, correlated by source id
            config: Tree node that was written

        Returns:
            Target ids of the successfully written records
        """
        source_ids = [record[ID_FIELD] for record in source_records]
        source_to_target: dict[str, str] = {}
        for source_id, result in pair_results(source_ids, results):
            if result.success and result.id:
                source_to_target[source_id] = result.id
                self.register(source_id, result.id, config.api_name)

        if not config.required_references or not source_to_target:
            return list(source_to_target.values())

        soql = self.query_builder.build_by_ids(
            [ID_FIELD, *config.required_references],
            config.api_name,
            source_to_target.values(),
        )
        target_records = {record[ID_FIELD]: record for record in await self.target.query(soql)}

        registered = 0
        for source_record in source_records:
            target_record = target_records.get(source_to_target.get(source_record[ID_FIELD], ""))
            if target_record is None:
                continue
            for field_name in config.required_references:
                if self.register(
                    source_record.get(field_name),
                    target_record.get(field_name),
                    config.api_name,
                    origin=f"required_reference:{field_name}",
                ):
                    registered += 1

        logger.info(
            "required_references_reconciled",
            object_type=config.api_name,
            fields=list(config.required_references),
            mappings=registered,
        )
        return list(source_to_target.values())

    async def add_key_mappings(
        self,
        tree_config: TreeConfig,
        dependency_configs: Sequence[TreeConfig],
        key_mappings: Sequence[KeyMapping],
    ) -> int:
        """Map records that exist on both orgs by business key.

        For each KeyMapping the same query runs against source and target;
        rows with equal ``(filter value, key value)`` are paired. With no
        explicit filter values, the filter covers every object type in the
        tree and the dependencies.

        Returns:
            Number of mappings registered
        """
        object_types = list(
            dict.fromkeys(
                [*tree_config.object_types(), *(c.api_name for c in dependency_configs)]
            )
        )

        total = 0
        for mapping in key_mappings:
            fields = [ID_FIELD, mapping.key_field]
            if mapping.filter_field:
                values = mapping.filter_values or tuple(object_types)
                if not values:
                    continue
                fields.append(mapping.filter_field)
                soql = self.query_builder.build_by_field_values(
                    fields, mapping.api_name, mapping.filter_field, values
                )
            else:
                soql = self.query_builder.build_all(fields, mapping.api_name)

            source_rows = await self.source.query(soql)
            target_rows = await self.target.query(soql)

            def business_key(row: Record, mapping: KeyMapping = mapping) -> tuple[Any, Any]:
                scope = row.get(mapping.filter_field) if mapping.filter_field else None
                return scope, row.get(mapping.key_field)

            target_by_key = {business_key(row): row[ID_FIELD] for row in target_rows}

            mapped = 0
            unmatched = []
            for row in source_rows:
                target_id = target_by_key.get(business_key(row))
                if target_id is None:
                    unmatched.append(row.get(mapping.key_field))
                    continue
                if self.register(row[ID_FIELD], target_id, mapping.api_name, origin="key_match"):
                    mapped += 1

            if unmatched:
                logger.warning(
                    "business_keys_unmatched",
                    object_type=mapping.api_name,
                    key_field=mapping.key_field,
                    values=unmatched,
                )
            logger.info(
                "business_keys_mapped",
                object_type=mapping.api_name,
                key_field=mapping.key_field,
                mapped=mapped,
            )
            total += mapped
        return total
