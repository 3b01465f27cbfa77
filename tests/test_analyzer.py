"""Tests for dependency discovery."""

import asyncio

from conftest import FakeDatabase

from sf_migration.config import TreeConfig
from sf_migration.migration.analyzer import DependencyAnalyzer, merge_dependency_configs
from sf_migration.schema.cache import SchemaCache


def account_tree() -> TreeConfig:
    return TreeConfig(
        api_name="Account",
        record_ids=("001S1",),
        children=(
            TreeConfig(api_name="Contact", reference_field="AccountId"),
            TreeConfig(api_name="Task", reference_field="WhatId"),
        ),
    )


def make_source() -> FakeDatabase:
    return FakeDatabase(
        "S",
        records={
            "Account": [
                {"Id": "001S1", "Name": "Acme", "OwnerId": "005S1", "RecordTypeId": "012S1"},
                {"Id": "001S9", "Name": "Elsewhere"},
            ],
            "Contact": [
                # ReportsToId points at a sibling in the tree
                {"Id": "003S1", "LastName": "Doe", "AccountId": "001S1", "OwnerId": "005S2"},
                {"Id": "003S2", "LastName": "Roe", "AccountId": "001S1", "ReportsToId": "003S1"},
            ],
            "Task": [
                {"Id": "00TS1", "Subject": "Call", "WhatId": "001S1"},
            ],
            "Opportunity": [
                {"Id": "006S1", "Name": "Deal", "AccountId": "001S9"},
            ],
            "User": [
                {"Id": "005S1", "Username": "owner@x"},
                {"Id": "005S2", "Username": "other@x"},
            ],
        },
    )


def analyze(source: FakeDatabase, tree: TreeConfig, **kwargs):
    analyzer = DependencyAnalyzer(source, SchemaCache(source), **kwargs)
    return asyncio.run(analyzer.analyze(tree))


class TestDependencyAnalyzer:
    """References leaving the tree become flat dependency configs."""

    def test_external_references_become_dependencies(self) -> None:
        analysis = analyze(make_source(), account_tree(), key_matched_types=("RecordType",))

        assert analysis.tree_record_ids == {"001S1", "003S1", "003S2", "00TS1"}
        assert analysis.references == {
            ("Account", "OwnerId"): {"User": {"005S1"}},
            ("Contact", "OwnerId"): {"User": {"005S2"}},
        }
        assert len(analysis.dependency_configs) == 1
        users = analysis.dependency_configs[0]
        assert users.api_name == "User"
        assert users.record_ids == ("005S1", "005S2")
        assert users.reference_field is None
        assert users.children == ()

    def test_in_tree_references_are_never_dependencies(self) -> None:
        analysis = analyze(make_source(), account_tree(), key_matched_types=("RecordType",))
        referenced = {
            record_id
            for targets in analysis.references.values()
            for ids in targets.values()
            for record_id in ids
        }
        assert not referenced & analysis.tree_record_ids

    def test_skip_types_are_ignored(self) -> None:
        analysis = analyze(
            make_source(),
            account_tree(),
            skip_types=("User",),
            key_matched_types=("RecordType",),
        )
        assert analysis.dependency_configs == []

    def test_record_types_are_dependencies_unless_key_matched(self) -> None:
        analysis = analyze(make_source(), account_tree(), skip_types=("User",))
        assert [c.api_name for c in analysis.dependency_configs] == ["RecordType"]

    def test_polymorphic_reference_resolved_by_prefix(self) -> None:
        source = make_source()
        source.tables["Task"]["00TS1"]["WhatId"] = "006S1"
        tree = TreeConfig(api_name="Task", record_ids=("00TS1",))

        analysis = analyze(source, tree)

        assert analysis.references == {("Task", "WhatId"): {"Opportunity": {"006S1"}}}
        opportunity = analysis.dependency_configs[0]
        assert opportunity.external_id_field == ("Legacy_Key__c",)
        assert source.describe_global_calls == 1

    def test_report_is_json_shaped(self) -> None:
        analysis = analyze(make_source(), account_tree(), key_matched_types=("RecordType",))
        report = analysis.to_report()
        assert report["references"]["Account.OwnerId"] == {"User": ["005S1"]}
        assert report["dependencyConfig"] == [{"apiName": "User", "recordIds": ("005S1", "005S2")}]

    def test_analysis_is_repeatable(self) -> None:
        source = make_source()
        tree = account_tree()
        first = analyze(source, tree, key_matched_types=("RecordType",))
        second = analyze(source, tree, key_matched_types=("RecordType",))
        assert first.dependency_configs == second.dependency_configs


def test_merge_unions_ids_of_declared_types() -> None:
    declared = [TreeConfig(api_name="User", record_ids=("005A",), external_id_field="Username")]
    discovered = [
        TreeConfig(api_name="User", record_ids=("005B", "005A")),
        TreeConfig(api_name="Product2", record_ids=("01tA",)),
    ]
    merged = merge_dependency_configs(declared, discovered)

    assert [c.api_name for c in merged] == ["User", "Product2"]
    assert merged[0].record_ids == ("005A", "005B")
    assert merged[0].external_id_field == "Username"
