"""Tests for record dumps, import plans, tree export and run reports."""

import asyncio
import json
from pathlib import Path

from conftest import FakeDatabase

from sf_migration.config import ExportConfig, TreeConfig
from sf_migration.reporting.artifacts import (
    IMPORT_PLAN_FILE,
    TreeExporter,
    build_import_plan,
    write_import_plan,
    write_record_dump,
    write_run_report,
)


def tree() -> TreeConfig:
    return TreeConfig(
        api_name="Account",
        record_ids=("001S1",),
        children=(
            TreeConfig(
                api_name="Contact",
                reference_field="AccountId",
                children=(TreeConfig(api_name="Case", reference_field="ContactId"),),
            ),
            TreeConfig(api_name="Opportunity", reference_field="AccountId"),
        ),
    )


class TestImportPlan:
    """Load order of exported files."""

    def test_dependencies_then_tree_levels(self) -> None:
        plan = build_import_plan(tree(), [TreeConfig(api_name="User", record_ids=("005S1",))])
        assert [entry["sobject"] for entry in plan] == [
            "User",
            "Account",
            "Contact",
            "Opportunity",
            "Case",
        ]
        assert plan[0] == {"sobject": "User", "files": ["User.json"]}

    def test_write_import_plan(self, tmp_path: Path) -> None:
        path = write_import_plan(tmp_path / "out", [{"sobject": "Account", "files": ["Account.json"]}])
        assert path.name == IMPORT_PLAN_FILE
        assert json.loads(path.read_text())[0]["sobject"] == "Account"


def test_write_record_dump(tmp_path: Path) -> None:
    path = write_record_dump(tmp_path, "Account", [{"Id": "001S1", "Name": "Acme"}])
    assert path == tmp_path / "Account.json"
    assert json.loads(path.read_text()) == {"records": [{"Id": "001S1", "Name": "Acme"}]}


def test_write_run_report(tmp_path: Path) -> None:
    path = write_run_report(
        tmp_path,
        {"migration_id": "run-1", "status": "completed", "written": {"Account": 2}, "patched": {}},
    )
    report = json.loads(path.read_text())
    assert path.name == "migration-run-1.json"
    assert report["statistics"]["total_written"] == 2
    assert report["summary"]["status"] == "completed"


class TestTreeExporter:
    """sObject-tree formatted export."""

    def make_source(self) -> FakeDatabase:
        return FakeDatabase(
            "S",
            records={
                "Account": [
                    {"Id": "001S1", "Name": "Acme", "OwnerId": "005S1", "RecordTypeId": "012S1"},
                ],
                "Contact": [
                    {"Id": "003S1", "LastName": "Doe", "AccountId": "001S1"},
                    {"Id": "003S2", "LastName": "Roe", "AccountId": "001S1", "ReportsToId": "003S1"},
                ],
            },
        )

    def test_export_writes_reference_ids_and_plan(self, tmp_path: Path) -> None:
        document = ExportConfig(
            tree_config=TreeConfig(
                api_name="Account",
                record_ids=("001S1",),
                children=(TreeConfig(api_name="Contact", reference_field="AccountId"),),
            )
        )
        source = self.make_source()

        plan = asyncio.run(TreeExporter(source).export(document, tmp_path))

        assert [entry["sobject"] for entry in plan] == ["Account", "Contact"]
        accounts = json.loads((tmp_path / "Account.json").read_text())["records"]
        assert accounts == [
            {
                "attributes": {"type": "Account", "referenceId": "AccountRef1"},
                "Name": "Acme",
                "RecordTypeId": "012S1",
            }
        ]

        contacts = json.loads((tmp_path / "Contact.json").read_text())["records"]
        assert [c["attributes"]["referenceId"] for c in contacts] == ["ContactRef1", "ContactRef2"]
        assert all(c["AccountId"] == "@AccountRef1" for c in contacts)
        assert contacts[1]["ReportsToId"] == "@ContactRef1"
        assert all("Id" not in c for c in contacts)
        assert source.writes == []
        assert (tmp_path / IMPORT_PLAN_FILE).exists()
