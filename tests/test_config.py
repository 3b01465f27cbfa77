"""Tests for settings and migration document loading."""

import json
from pathlib import Path

import pytest

from sf_migration.client.exceptions import ConfigurationError
from sf_migration.config import (
    ExportConfig,
    OrgConfig,
    TreeConfig,
    load_config_from_yaml,
    load_export_config,
)

DOCUMENT = {
    "treeConfig": {
        "apiName": "Account",
        "recordIds": ["001S1"],
        "externalIdField": ["External_Id__c", "Name"],
        "requiredReferences": ["OwnerId"],
        "children": [{"apiName": "Contact", "referenceField": "AccountId"}],
    },
    "dependencyConfig": [{"apiName": "User", "recordIds": ["005S1"]}],
    "skipSobjectDependencies": ["Group"],
}


class TestTreeConfig:
    """Migration document model."""

    def test_camel_case_document(self, tmp_path: Path) -> None:
        path = tmp_path / "export.json"
        path.write_text(json.dumps(DOCUMENT))

        document = load_export_config(path)

        root = document.tree_config
        assert root.record_ids == ("001S1",)
        assert root.external_id_fields == ["External_Id__c", "Name"]
        assert root.upsert_key == "External_Id__c"
        assert root.object_types() == ["Account", "Contact"]
        assert document.dependency_config[0].api_name == "User"
        assert document.key_matched_types == {"RecordType"}
        assert document.skip_sobject_dependencies == ["Group"]

    def test_yaml_document(self, tmp_path: Path) -> None:
        path = tmp_path / "export.yaml"
        path.write_text("treeConfig:\n  apiName: Account\n  recordIds: ['001S1']\nkeyMappings: []\n")
        document = load_export_config(path)
        assert document.tree_config.record_ids == ("001S1",)
        assert document.key_matched_types == set()

    def test_single_external_id_field(self) -> None:
        config = TreeConfig(api_name="Account", external_id_field="External_Id__c")
        assert config.external_id_fields == ["External_Id__c"]

    def test_child_without_reference_field_is_rejected(self, tmp_path: Path) -> None:
        document = {"treeConfig": {"apiName": "Account", "children": [{"apiName": "Contact"}]}}
        path = tmp_path / "export.json"
        path.write_text(json.dumps(document))
        with pytest.raises(ConfigurationError, match="referenceField"):
            load_export_config(path)

    def test_nested_dependency_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="flat"):
            ExportConfig.model_validate(
                {
                    "treeConfig": {"apiName": "Account"},
                    "dependencyConfig": [{"apiName": "User", "referenceField": "ManagerId"}],
                }
            )

    def test_config_is_immutable(self) -> None:
        config = TreeConfig(api_name="Account")
        with pytest.raises(ValueError):
            config.record_ids = ("001S1",)

    def test_unknown_keys_are_rejected(self) -> None:
        with pytest.raises(ValueError):
            TreeConfig.model_validate({"apiName": "Account", "recordId": ["001"]})

    def test_to_document_round_trips(self) -> None:
        config = ExportConfig.model_validate(DOCUMENT).tree_config
        assert TreeConfig.model_validate(config.to_document()) == config

    def test_missing_document(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_export_config(tmp_path / "nope.json")


class TestSettings:
    """Tool settings from YAML and environment."""

    def test_yaml_with_env_expansion(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("QA_TOKEN", "secret")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "source:\n  alias: dev\n"
            "target:\n  instance_url: https://qa.my.salesforce.com/\n"
            "  access_token: ${QA_TOKEN}\n  api_version: v61.0\n"
            "performance:\n  batch_size: 50\n"
        )

        config = load_config_from_yaml(path)

        assert config.source.alias == "dev"
        assert config.target.instance_url == "https://qa.my.salesforce.com"
        assert config.target.access_token == "secret"
        assert config.target.api_version == "61.0"
        assert config.performance.batch_size == 50

    def test_missing_env_var(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("NOPE_TOKEN", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text("target:\n  access_token: ${NOPE_TOKEN}\n")
        with pytest.raises(ConfigurationError, match="NOPE_TOKEN"):
            load_config_from_yaml(path)

    def test_batch_size_is_capped(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("performance:\n  batch_size: 500\n")
        with pytest.raises(ConfigurationError):
            load_config_from_yaml(path)

    def test_org_is_configured(self) -> None:
        assert OrgConfig(alias="dev").is_configured
        assert not OrgConfig(instance_url="https://x.my.salesforce.com").is_configured
        with pytest.raises(ValueError):
            OrgConfig(instance_url="http://insecure")
