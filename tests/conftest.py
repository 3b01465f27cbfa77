"""Shared fixtures: an in-memory org implementing the Database protocol."""

import copy
import re
from collections.abc import Sequence
from typing import Any

import pytest

from sf_migration.client.database import Record, WriteError, WriteResult
from sf_migration.client.exceptions import NotFoundError, ServerError
from sf_migration.schema.models import FieldDescribe, SObjectDescribe

# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------


def fld(
    name: str,
    type: str = "string",
    createable: bool = True,
    updateable: bool = True,
    reference_to: Sequence[str] = (),
    external_id: bool = False,
    unique: bool = False,
) -> FieldDescribe:
    """Build a FieldDescribe with migratable defaults."""
    return FieldDescribe(
        name=name,
        type=type,
        createable=createable,
        updateable=updateable,
        reference_to=tuple(reference_to),
        external_id=external_id,
        unique=unique,
    )


def id_field() -> FieldDescribe:
    return fld("Id", type="id", createable=False, updateable=False)


def ref(name: str, *targets: str, createable: bool = True, updateable: bool = True) -> FieldDescribe:
    return fld(
        name,
        type="reference",
        reference_to=targets,
        createable=createable,
        updateable=updateable,
    )


def sobject(name: str, key_prefix: str, *fields: FieldDescribe) -> SObjectDescribe:
    return SObjectDescribe(name=name, key_prefix=key_prefix, fields=(id_field(), *fields))


def standard_schema() -> dict[str, SObjectDescribe]:
    """A small org schema shared by most tests."""
    return {
        "Account": sobject(
            "Account",
            "001",
            fld("Name"),
            ref("OwnerId", "User"),
            ref("ParentId", "Account"),
            ref("RecordTypeId", "RecordType"),
            fld("External_Id__c", external_id=True, unique=True),
            fld("CreatedDate", type="datetime", createable=False, updateable=False),
        ),
        "Contact": sobject(
            "Contact",
            "003",
            fld("LastName"),
            ref("AccountId", "Account"),
            ref("ReportsToId", "Contact"),
            ref("OwnerId", "User"),
        ),
        "Case": sobject(
            "Case",
            "500",
            fld("Subject"),
            ref("AccountId", "Account"),
            ref("ContactId", "Contact"),
            ref("RecordTypeId", "RecordType"),
        ),
        "Task": sobject(
            "Task",
            "00T",
            fld("Subject"),
            ref("WhatId", "Account", "Opportunity"),
        ),
        "Opportunity": sobject(
            "Opportunity",
            "006",
            fld("Name"),
            ref("AccountId", "Account"),
            fld("Legacy_Key__c", external_id=True, unique=True),
        ),
        "User": sobject(
            "User",
            "005",
            fld("Username"),
            ref("ManagerId", "User"),
        ),
        "RecordType": sobject(
            "RecordType",
            "012",
            fld("DeveloperName"),
            fld("SobjectType", type="picklist"),
        ),
    }


# ---------------------------------------------------------------------------
# In-memory org
# ---------------------------------------------------------------------------

_SOQL = re.compile(
    r"^SELECT (?P<fields>.+?) FROM (?P<type>\w+)"
    r"(?: WHERE (?P<field>\w+) IN \((?P<values>.*?)\))?"
    r"(?: AND \((?P<not_null>.+)\))?$"
)
_LITERAL = re.compile(r"'((?:[^'\\]|\\.)*)'")


class FakeDatabase:
    """In-memory org.

    Understands the SOQL shapes the QueryBuilder produces, assigns ids from
    each type's key prefix plus an org tag, and records every call for
    assertions.
    """

    def __init__(
        self,
        tag: str,
        schema: dict[str, SObjectDescribe] | None = None,
        records: dict[str, list[Record]] | None = None,
    ):
        self.tag = tag
        self.schema = schema if schema is not None else standard_schema()
        self.tables: dict[str, dict[str, Record]] = {}
        self.queries: list[str] = []
        self.writes: list[tuple[str, str, list[Record]]] = []
        self.deletes: list[tuple[str, list[str]]] = []
        self.describe_calls: list[str] = []
        self.describe_global_calls = 0
        self.reject: dict[tuple[str, str], str] = {}
        self.reject_keys: set[str] = set()
        self.fail_delete: set[str] = set()
        self.closed = False
        self._sequence = 0
        for object_type, rows in (records or {}).items():
            for row in rows:
                self.tables.setdefault(object_type, {})[row["Id"]] = dict(row)

    # -- helpers -----------------------------------------------------------

    def new_id(self, object_type: str) -> str:
        self._sequence += 1
        prefix = self.schema[object_type].key_prefix if object_type in self.schema else "xxx"
        return f"{prefix}{self.tag}{self._sequence:011d}"

    def rows(self, object_type: str) -> list[Record]:
        return list(self.tables.get(object_type, {}).values())

    def written(self, operation: str, object_type: str) -> list[Record]:
        return [
            record
            for op, written_type, records in self.writes
            if op == operation and written_type == object_type
            for record in records
        ]

    def _rejection(self, operation: str, object_type: str, key: str | None) -> WriteResult | None:
        message = self.reject.get((operation, object_type))
        if message is None and key in self.reject_keys:
            message = f"rejected {key}"
        if message is None:
            return None
        return WriteResult(
            success=False,
            errors=(WriteError("FIELD_CUSTOM_VALIDATION_EXCEPTION", message),),
            key=key,
        )

    def _insert_one(self, object_type: str, record: Record, key: str | None) -> WriteResult:
        assert "Id" not in record, "insert payload must not carry an Id"
        new_id = self.new_id(object_type)
        self.tables.setdefault(object_type, {})[new_id] = {**record, "Id": new_id}
        return WriteResult(success=True, id=new_id, created=True, key=key)

    # -- Database protocol -------------------------------------------------

    async def query(self, soql: str) -> list[Record]:
        self.queries.append(soql)
        match = _SOQL.match(soql)
        assert match, f"unsupported SOQL: {soql}"

        object_type = match["type"]
        fields = match["fields"].split(",")
        rows = self.rows(object_type)

        if match["field"]:
            values = set(_LITERAL.findall(match["values"]))
            rows = [row for row in rows if row.get(match["field"]) in values]
        if match["not_null"]:
            names = [part.split(" != ")[0] for part in match["not_null"].split(" OR ")]
            rows = [row for row in rows if any(row.get(name) is not None for name in names)]

        return [
            {
                "attributes": {"type": object_type},
                **{name: copy.deepcopy(row.get(name)) for name in fields},
            }
            for row in rows
        ]

    async def insert(
        self, object_type: str, records: Sequence[Record], keys: Sequence[str] | None = None
    ) -> list[WriteResult]:
        records = [copy.deepcopy(r) for r in records]
        self.writes.append(("insert", object_type, records))
        keys = list(keys) if keys is not None else [None] * len(records)
        return [
            self._rejection("insert", object_type, key) or self._insert_one(object_type, record, key)
            for record, key in zip(records, keys, strict=True)
        ]

    async def update(
        self, object_type: str, records: Sequence[Record], keys: Sequence[str] | None = None
    ) -> list[WriteResult]:
        records = [copy.deepcopy(r) for r in records]
        self.writes.append(("update", object_type, records))
        keys = list(keys) if keys is not None else [r.get("Id") for r in records]
        results = []
        for record, key in zip(records, keys, strict=True):
            rejection = self._rejection("update", object_type, key)
            if rejection is not None:
                results.append(rejection)
                continue
            row = self.tables.get(object_type, {}).get(record.get("Id"))
            if row is None:
                results.append(
                    WriteResult(
                        success=False,
                        errors=(WriteError("ENTITY_IS_DELETED", "entity is deleted"),),
                        key=key,
                    )
                )
                continue
            row.update(record)
            results.append(WriteResult(success=True, id=row["Id"], created=False, key=key))
        return results

    async def upsert(
        self,
        object_type: str,
        records: Sequence[Record],
        external_id_field: str,
        keys: Sequence[str] | None = None,
        all_or_none: bool = False,
    ) -> list[WriteResult]:
        records = [copy.deepcopy(r) for r in records]
        self.writes.append(("upsert", object_type, records))
        keys = list(keys) if keys is not None else [None] * len(records)
        results = []
        for record, key in zip(records, keys, strict=True):
            rejection = self._rejection("upsert", object_type, key)
            if rejection is not None:
                results.append(rejection)
                continue
            value = record.get(external_id_field)
            existing = next(
                (
                    row
                    for row in self.rows(object_type)
                    if value is not None and row.get(external_id_field) == value
                ),
                None,
            )
            if existing is None:
                results.append(self._insert_one(object_type, record, key))
            else:
                existing.update(record)
                results.append(WriteResult(success=True, id=existing["Id"], created=False, key=key))
        return results

    async def delete(self, object_type: str, ids: Sequence[str]) -> list[WriteResult]:
        self.deletes.append((object_type, list(ids)))
        if object_type in self.fail_delete:
            raise ServerError("Server error: delete failed", status_code=500)
        table = self.tables.get(object_type, {})
        results = []
        for record_id in ids:
            if table.pop(record_id, None) is None:
                results.append(
                    WriteResult(
                        success=False,
                        errors=(WriteError("ENTITY_IS_DELETED", "entity is deleted"),),
                        key=record_id,
                    )
                )
            else:
                results.append(WriteResult(success=True, id=record_id, key=record_id))
        return results

    async def describe(self, object_type: str) -> SObjectDescribe:
        self.describe_calls.append(object_type)
        if object_type not in self.schema:
            raise NotFoundError(f"Resource not found: {object_type}", status_code=404)
        return self.schema[object_type]

    async def describe_global(self) -> list[dict[str, Any]]:
        self.describe_global_calls += 1
        return [
            {"name": name, "keyPrefix": describe.key_prefix}
            for name, describe in self.schema.items()
        ]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def source() -> FakeDatabase:
    return FakeDatabase("S")


@pytest.fixture
def target() -> FakeDatabase:
    return FakeDatabase("T")
