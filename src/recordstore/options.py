"""Per-collection options for DataStore instances."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class CreateIdOption(str, Enum):
    """Policy governing how ``create`` / ``create_with_id`` allocate identifiers."""

    AUTO_GENERATED_ID = "auto_generated_id"
    MANUAL_REJECT_ID_CONFLICTS = "manual_reject_id_conflicts"
    MANUAL_ALLOW_ID_CONFLICTS = "manual_allow_id_conflicts"


class ValueShape(str, Enum):
    """Declared shape of a record's value field.

    OBJECT and ARRAY are structured shapes; the remaining members are scalar
    kinds. The set is closed: validators must handle every member.
    """

    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


def _normalize_token(value: str) -> str:
    return value.strip().lower().replace("-", "").replace("_", "").replace(" ", "")


def _coerce_enum(enum_cls: type[Enum], value: Any) -> Any:
    if isinstance(value, enum_cls) or not isinstance(value, str):
        return value
    token = _normalize_token(value)
    for member in enum_cls:
        if token in (_normalize_token(member.value), _normalize_token(member.name)):
            return member
    return value


class DataStoreOptions(BaseModel):
    """Immutable configuration owned by a single DataStore instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    create_id_option: CreateIdOption = CreateIdOption.AUTO_GENERATED_ID
    require_transaction: bool = False
    create_if_not_exists: bool = False
    read_only_fields: frozenset[str] = frozenset()
    allow_null_or_undefined: bool = False
    value_shape: ValueShape = ValueShape.OBJECT

    @field_validator("create_id_option", mode="before")
    @classmethod
    def _parse_create_id_option(cls, value: Any) -> Any:
        return _coerce_enum(CreateIdOption, value)

    @field_validator("value_shape", mode="before")
    @classmethod
    def _parse_value_shape(cls, value: Any) -> Any:
        return _coerce_enum(ValueShape, value)

    @field_validator("read_only_fields", mode="before")
    @classmethod
    def _parse_read_only_fields(cls, value: Any) -> Any:
        if isinstance(value, str):
            return frozenset(f.strip() for f in value.split(",") if f.strip())
        if value is None:
            return frozenset()
        return value

    @field_validator("read_only_fields")
    @classmethod
    def _reject_id_field(cls, value: frozenset[str]) -> frozenset[str]:
        if "id" in value:
            raise ValueError("'id' is always immutable and cannot be listed as a read-only field")
        return value
