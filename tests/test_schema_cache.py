"""Tests for describe memoization and id-prefix resolution."""

import asyncio

from conftest import FakeDatabase

from sf_migration.schema.cache import SchemaCache
from sf_migration.schema.models import SObjectDescribe, keep_for_insert, keep_for_update


class TestSchemaCache:
    """Metadata lookups hit the org once."""

    def test_describe_is_memoized(self, source: FakeDatabase) -> None:
        cache = SchemaCache(source)

        async def run() -> None:
            first = await cache.describe("Account")
            second = await cache.describe("Account")
            assert first is second

        asyncio.run(run())
        assert source.describe_calls == ["Account"]

    def test_resolve_type_of_id_loads_global_describe_once(self, source: FakeDatabase) -> None:
        cache = SchemaCache(source)

        async def run() -> list:
            return [
                await cache.resolve_type_of_id("001S00000000001"),
                await cache.resolve_type_of_id("006S00000000002"),
                await cache.resolve_type_of_id("001S00000000001"),
            ]

        assert asyncio.run(run()) == ["Account", "Opportunity", "Account"]
        assert source.describe_global_calls == 1

    def test_unknown_prefix_resolves_to_none(self, source: FakeDatabase) -> None:
        assert asyncio.run(SchemaCache(source).resolve_type_of_id("zzz000000000001")) is None


class TestDescribeModels:
    """Describe parsing and field predicates."""

    def test_from_api_reads_camel_case_keys(self) -> None:
        describe = SObjectDescribe.from_api(
            {
                "name": "Account",
                "keyPrefix": "001",
                "label": "Account",
                "fields": [
                    {"name": "Id", "type": "id", "createable": False, "updateable": False},
                    {
                        "name": "ParentId",
                        "type": "reference",
                        "createable": True,
                        "updateable": True,
                        "referenceTo": ["Account"],
                    },
                    {
                        "name": "Code__c",
                        "type": "string",
                        "createable": True,
                        "updateable": True,
                        "externalId": True,
                        "unique": True,
                    },
                ],
            }
        )
        assert describe.key_prefix == "001"
        assert describe.id_field == "Id"
        assert describe.reference_field_names == {"Id", "ParentId"}
        assert describe.external_id_field_names == ["Code__c"]

    def test_keep_for_update_always_keeps_the_id(self, source: FakeDatabase) -> None:
        describe = asyncio.run(source.describe("Account"))
        assert keep_for_update(describe.field("Id"))
        assert not keep_for_insert(describe.field("Id"))
        assert not keep_for_update(describe.field("CreatedDate"))
