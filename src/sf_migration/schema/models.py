"""Pydantic models for sObject describe metadata."""

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sf_migration.config import ID_FIELD


class FieldDescribe(BaseModel):
    """Metadata for one field, as returned by the describe call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str
    type: str = "string"
    createable: bool = False
    updateable: bool = False
    reference_to: tuple[str, ...] = Field(default=(), alias="referenceTo")
    external_id: bool = Field(default=False, alias="externalId")
    unique: bool = False
    nillable: bool = True

    @property
    def is_id(self) -> bool:
        return self.type == "id" or self.name == ID_FIELD

    @property
    def is_reference(self) -> bool:
        return self.type == "reference"

    @property
    def is_polymorphic(self) -> bool:
        return len(self.reference_to) > 1

    @property
    def is_migratable(self) -> bool:
        """Both creatable and updatable: read from source and written to target."""
        return self.createable and self.updateable


class SObjectDescribe(BaseModel):
    """Describe result for one sObject type."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str
    key_prefix: str | None = Field(default=None, alias="keyPrefix")
    fields: tuple[FieldDescribe, ...] = ()

    @property
    def field_map(self) -> dict[str, FieldDescribe]:
        return {f.name: f for f in self.fields}

    def field(self, name: str) -> FieldDescribe | None:
        return self.field_map.get(name)

    @property
    def id_field(self) -> str:
        for f in self.fields:
            if f.type == "id":
                return f.name
        return ID_FIELD

    @property
    def reference_field_names(self) -> set[str]:
        """Fields whose value is another record's id, plus the id field itself."""
        return {f.name for f in self.fields if f.is_reference or f.is_id}

    @property
    def external_id_field_names(self) -> list[str]:
        """Business-key fields: flagged externalId and unique."""
        return [f.name for f in self.fields if f.external_id and f.unique]

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SObjectDescribe":
        return cls.model_validate(data)


FieldPredicate = Callable[[FieldDescribe], bool]


def keep_for_insert(field: FieldDescribe) -> bool:
    """Fields accepted on create."""
    return field.createable


def keep_for_update(field: FieldDescribe) -> bool:
    """Fields accepted on update; the id field is always kept to address the row."""
    return field.updateable or field.is_id
