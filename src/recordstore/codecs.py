"""Value codecs: convert value fields between application and store form.

Codecs are pure, stateless strategy objects injected into a DataStore. They
never see the record id; the store attaches and strips it.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Protocol, runtime_checkable

from recordstore.errors import InvalidDataError

TIMESTAMP_KEY = "__timestamp__"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@runtime_checkable
class ValueCodec(Protocol):
    """Collection-specific transform between application and store values."""

    def to_store(self, value: Any) -> Any: ...

    def from_store(self, value: Any) -> Any: ...


class IdentityCodec:
    """Stores values unchanged."""

    def to_store(self, value: Any) -> Any:
        return value

    def from_store(self, value: Any) -> Any:
        return value


def datetime_to_micros(value: datetime | date) -> int:
    """Microseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds


def micros_to_datetime(micros: int) -> datetime:
    seconds, remainder = divmod(int(micros), 1_000_000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=remainder)


def is_timestamp(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and len(value) == 1
        and TIMESTAMP_KEY in value
        and isinstance(value[TIMESTAMP_KEY], int)
        and not isinstance(value[TIMESTAMP_KEY], bool)
    )


class DateCodec:
    """Converts ``datetime`` values to tagged timestamps and back, recursively.

    Store form is ``{"__timestamp__": <int microseconds since epoch>}`` so the
    value stays JSON-serialisable and orders by its integer payload.
    """

    def to_store(self, value: Any) -> Any:
        if isinstance(value, (datetime, date)):
            return {TIMESTAMP_KEY: datetime_to_micros(value)}
        if isinstance(value, dict):
            return {k: self.to_store(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.to_store(v) for v in value]
        return value

    def from_store(self, value: Any) -> Any:
        if is_timestamp(value):
            return micros_to_datetime(value[TIMESTAMP_KEY])
        if isinstance(value, dict):
            return {k: self.from_store(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.from_store(v) for v in value]
        return value


class KeyedListCodec:
    """Array of tagged objects ⇄ map keyed by each item's id.

    ``[{"id": "a", "n": 1}]`` is stored as ``{"a": {"n": 1}}``.
    """

    def __init__(self, id_field: str = "id") -> None:
        self.id_field = id_field

    def to_store(self, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            raise InvalidDataError(f"Expected a list of objects, got {type(value).__name__}")
        stored: dict[str, Any] = {}
        for item in value:
            if not isinstance(item, dict):
                raise InvalidDataError(f"List items must be objects, got {type(item).__name__}")
            item_id = item.get(self.id_field)
            if not isinstance(item_id, str) or not item_id.strip():
                raise InvalidDataError(
                    f"List item {item!r} must carry a non-empty string '{self.id_field}'"
                )
            if item_id in stored:
                raise InvalidDataError(f"Duplicate list item id '{item_id}'")
            stored[item_id] = {k: v for k, v in item.items() if k != self.id_field}
        return stored

    def from_store(self, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise InvalidDataError(f"Expected a keyed map, got {type(value).__name__}")
        items: list[Any] = []
        for item_id, fields in value.items():
            if not isinstance(fields, dict):
                raise InvalidDataError(f"Keyed item '{item_id}' must be an object")
            items.append({self.id_field: item_id, **fields})
        return items


class ChainCodec:
    """Applies codecs in order on write and in reverse order on read."""

    def __init__(self, *codecs: ValueCodec) -> None:
        self.codecs = codecs

    def to_store(self, value: Any) -> Any:
        for codec in self.codecs:
            value = codec.to_store(value)
        return value

    def from_store(self, value: Any) -> Any:
        for codec in reversed(self.codecs):
            value = codec.from_store(value)
        return value
