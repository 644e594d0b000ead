"""Structural validation shared by both backends, and the record mapper."""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Iterable

from recordstore.codecs import ValueCodec
from recordstore.errors import (
    DatabaseConsistencyError,
    InvalidDataError,
    InvalidParametersError,
    RecordStoreError,
)
from recordstore.options import DataStoreOptions, ValueShape

RESERVED_ID_KEY = "id"
SCALAR_VALUE_KEY = "value"


def validate_id(record_id: Any) -> str:
    """Return ``record_id`` if it is a usable record id, else raise InvalidParametersError."""
    if not isinstance(record_id, str) or not record_id.strip():
        raise InvalidParametersError(
            f"Invalid ID {record_id!r} of type {type(record_id).__name__}. "
            "It must be a non-empty string"
        )
    if "/" in record_id:
        raise InvalidParametersError(f"Invalid ID {record_id!r}: '/' is not allowed in ids")
    return record_id


def _shape_matches(value: Any, shape: ValueShape) -> bool:
    if shape is ValueShape.OBJECT:
        return isinstance(value, dict)
    if shape is ValueShape.ARRAY:
        return isinstance(value, list)
    if shape is ValueShape.STRING:
        return isinstance(value, str)
    if shape is ValueShape.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if shape is ValueShape.BOOLEAN:
        return isinstance(value, bool)
    if shape is ValueShape.DATE:
        return isinstance(value, date)
    raise InvalidDataError(f"Unknown value shape {shape!r}")


def validate_value(
    value: Any,
    options: DataStoreOptions,
    *,
    error_cls: type[RecordStoreError] = InvalidDataError,
) -> None:
    """Check ``value`` against the null policy, the declared shape and the reserved id key."""
    if value is None:
        if not options.allow_null_or_undefined:
            raise error_cls(
                "Data cannot be null when allow_null_or_undefined is not set."
            )
        return

    shape = options.value_shape
    if not _shape_matches(value, shape):
        raise error_cls(
            f"Data {value!r} must be of shape '{shape.value}', "
            f"but received {type(value).__name__}."
        )

    if shape is ValueShape.OBJECT and RESERVED_ID_KEY in value:
        raise error_cls(
            f"Invalid data. The value field {value!r} contains an '{RESERVED_ID_KEY}' "
            "property, which is not expected."
        )


def enforce_read_only_fields(
    current: dict[str, Any],
    incoming: Any,
    fields: Iterable[str],
) -> None:
    """Reject incoming values that change a read-only field of an existing record."""
    if not isinstance(current, dict) or not current or not isinstance(incoming, dict):
        return
    for name in sorted(fields):
        if name not in incoming:
            continue
        current_value = current.get(name)
        new_value = incoming[name]
        if current_value != new_value:
            raise InvalidDataError(
                f"Field '{name}' is read-only and the new value {new_value!r} "
                f"must match the current value {current_value!r}"
            )


def encode_json(value: Any) -> str:
    """Serialise a store value; unserialisable payloads are invalid data."""
    try:
        return json.dumps(value, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidDataError(f"Value is not JSON-serialisable: {e}") from e


class RecordMapper:
    """Runs validation and the codec in the right order for each direction.

    Writes validate first and then encode, so caller mistakes surface as
    InvalidDataError. Reads decode first and then validate, so corrupt stored
    data surfaces as DatabaseConsistencyError.
    """

    def __init__(self, options: DataStoreOptions, codec: ValueCodec) -> None:
        self.options = options
        self.codec = codec

    def to_store(self, value: Any) -> Any:
        validate_value(value, self.options)
        try:
            return self.codec.to_store(value)
        except RecordStoreError:
            raise
        except (TypeError, ValueError) as e:
            raise InvalidDataError(f"Failed to encode value {value!r}: {e}") from e

    def from_store(self, record_id: str, stored: Any) -> dict[str, Any]:
        try:
            value = self.codec.from_store(stored)
        except (RecordStoreError, TypeError, ValueError) as e:
            raise DatabaseConsistencyError(
                f"Stored value for id '{record_id}' cannot be decoded: {e}"
            ) from e
        validate_value(value, self.options, error_cls=DatabaseConsistencyError)
        return self.to_record(record_id, value)

    def to_record(self, record_id: str, value: Any) -> dict[str, Any]:
        if self.options.value_shape is ValueShape.OBJECT:
            return {RESERVED_ID_KEY: record_id, **(value or {})}
        return {RESERVED_ID_KEY: record_id, SCALAR_VALUE_KEY: value}
