"""SOQL construction for tree nodes and reconciliation reads."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sf_migration.client.exceptions import ConfigurationError
from sf_migration.config import ID_FIELD, TreeConfig
from sf_migration.schema.cache import SchemaCache


@dataclass(frozen=True)
class TraversalState:
    """Ids known for one tree node during a traversal.

    ``record_ids`` filters a node by its own ids (roots and flat
    dependencies); ``parent_record_ids`` filters a child through its
    ``referenceField``.
    """

    record_ids: tuple[str, ...] | None = None
    parent_record_ids: tuple[str, ...] | None = None

    @classmethod
    def for_root(cls, config: TreeConfig) -> "TraversalState":
        return cls(record_ids=config.record_ids, parent_record_ids=config.parent_record_ids)

    @classmethod
    def for_child(cls, parent_ids: Iterable[str]) -> "TraversalState":
        return cls(parent_record_ids=tuple(parent_ids))


def quote(value: object) -> str:
    """Render a SOQL string literal."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _in_list(values: Iterable[object]) -> str:
    return ",".join(quote(value) for value in values)


class QueryBuilder:
    """Builds read queries.

    ``build_for_config`` needs a SchemaCache to resolve the field list; the
    id- and value-filtered builders work without one.
    """

    def __init__(self, schema: SchemaCache | None = None):
        self.schema = schema

    async def build_for_config(
        self, config: TreeConfig, state: TraversalState | None = None
    ) -> str | None:
        """Build the read query for one tree node.

        Returns None when the node's operative id list is empty or absent,
        meaning there is nothing to migrate at this level.

        Raises:
            ConfigurationError: If no SchemaCache was supplied
        """
        if self.schema is None:
            raise ConfigurationError("build_for_config requires a SchemaCache")

        state = state or TraversalState.for_root(config)
        ids = state.parent_record_ids if config.reference_field else state.record_ids
        if not ids:
            return None

        fields = await self.fields_for_config(config)
        filter_field = config.reference_field or ID_FIELD

        soql = f"SELECT {','.join(fields)} FROM {config.api_name} WHERE {filter_field} IN ({_in_list(ids)})"

        external_id_fields = config.external_id_fields
        if external_id_fields:
            condition = " OR ".join(f"{name} != NULL" for name in external_id_fields)
            soql += f" AND ({condition})"
        return soql

    async def fields_for_config(self, config: TreeConfig) -> list[str]:
        """Id field, creatable+updatable non-excluded fields, then required references."""
        if self.schema is None:
            raise ConfigurationError("fields_for_config requires a SchemaCache")

        describe = await self.schema.describe(config.api_name)
        excluded = set(config.excluded_fields)
        fields = [
            f.name
            for f in describe.fields
            if f.is_id or (f.is_migratable and f.name not in excluded)
        ]
        if describe.id_field not in fields:
            fields.insert(0, describe.id_field)
        return list(dict.fromkeys([*fields, *config.required_references]))

    def build_all(self, fields: Sequence[str], object_type: str) -> str:
        return f"SELECT {','.join(dict.fromkeys(fields))} FROM {object_type}"

    def build_by_ids(
        self, fields: Sequence[str], object_type: str, record_ids: Iterable[str]
    ) -> str:
        return self.build_by_field_values(fields, object_type, ID_FIELD, record_ids)

    def build_by_field_values(
        self,
        fields: Sequence[str],
        object_type: str,
        field_name: str,
        values: Iterable[object],
    ) -> str:
        return (
            f"SELECT {','.join(dict.fromkeys(fields))} FROM {object_type} "
            f"WHERE {field_name} IN ({_in_list(values)})"
        )
