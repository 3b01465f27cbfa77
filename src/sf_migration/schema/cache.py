"""Memoized sObject metadata lookups.

Describe calls are network round-trips, so every result is kept for the
lifetime of the cache. One cache is built per org per run and shared by the
query builder, identity mapper and dependency analyzer.
"""

from sf_migration.client.database import Database
from sf_migration.schema.models import SObjectDescribe
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)

KEY_PREFIX_LENGTH = 3


class SchemaCache:
    """Per-type field metadata and id-prefix type resolution for one org."""

    def __init__(self, database: Database):
        self.database = database
        self._describes: dict[str, SObjectDescribe] = {}
        self._prefix_to_type: dict[str, str] | None = None
        self._id_to_type: dict[str, str | None] = {}

    async def describe(self, object_type: str) -> SObjectDescribe:
        """Return field metadata for ``object_type``, fetching it once."""
        describe = self._describes.get(object_type)
        if describe is None:
            describe = await self.database.describe(object_type)
            self._describes[object_type] = describe
            logger.debug(
                "sobject_described",
                object_type=object_type,
                field_count=len(describe.fields),
            )
        return describe

    async def resolve_type_of_id(self, record_id: str) -> str | None:
        """Map a record id to its object type via the org's key prefixes.

        Used for polymorphic reference fields. The global describe is loaded
        once; unknown prefixes resolve to None.
        """
        if record_id in self._id_to_type:
            return self._id_to_type[record_id]

        if self._prefix_to_type is None:
            sobjects = await self.database.describe_global()
            self._prefix_to_type = {
                entry["keyPrefix"]: entry["name"] for entry in sobjects if entry.get("keyPrefix")
            }
            logger.debug("global_describe_loaded", prefix_count=len(self._prefix_to_type))

        object_type = self._prefix_to_type.get(record_id[:KEY_PREFIX_LENGTH])
        self._id_to_type[record_id] = object_type
        return object_type
