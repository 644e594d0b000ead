"""Query request parsing: filters, sort, range and page cursors.

The HTTP layer hands these over as opaque JSON strings; Python callers may
pass the decoded structures directly. Every malformed input is reported as
InvalidParametersError.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, TypeAdapter, ValidationError

from recordstore.errors import InvalidParametersError

# Longest first, so a key is matched against its most specific suffix.
FILTER_OPERATORS: tuple[str, ...] = tuple(
    sorted(
        ("_eq", "_neq", "_eq_any", "_neq_any", "_inc_any", "_q", "_lt", "_lte", "_gt", "_gte"),
        key=len,
        reverse=True,
    )
)
DEFAULT_OPERATOR = "_eq"

_FIELD_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


def validate_field_path(path: str) -> str:
    """Validate a dotted field path (identifier segments)."""
    if not isinstance(path, str) or not _FIELD_PATH_RE.match(path):
        raise InvalidParametersError(
            f"Invalid field path {path!r}: segments must match [A-Za-z_][A-Za-z0-9_]*"
        )
    return path


@dataclass(frozen=True)
class FieldFilter:
    """One ``field<op> -> value`` predicate."""

    field: str
    op: str
    value: Any

    @property
    def key(self) -> str:
        return f"{self.field}{self.op}"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    field: str = Field(min_length=1)
    direction: SortDirection = Field(default=SortDirection.ASC, alias="order")

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESC

    @property
    def by_key(self) -> bool:
        return self.field == "id"


class Cursor(BaseModel):
    """Position and id of a record on a previously returned page."""

    model_config = ConfigDict(frozen=True)

    position: NonNegativeInt
    id: str = Field(min_length=1)


class PageInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    first_visible: Cursor | None = Field(default=None, alias="firstVisible")
    last_visible: Cursor | None = Field(default=None, alias="lastVisible")


_RANGE_ADAPTER = TypeAdapter(tuple[int, int])


def _decode(raw: Any, what: str) -> Any:
    if isinstance(raw, (str, bytes)):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidParametersError(f"Invalid {what} parameter {raw!r}: {e}") from e
    return raw


def parse_filter(raw: Any) -> list[FieldFilter]:
    """Parse ``{"field<op>": value}``; null values are ignored."""
    data = _decode(raw, "filter")
    if data is None:
        return []
    if not isinstance(data, dict):
        raise InvalidParametersError(f"Invalid filter parameter {raw!r}: must be a JSON object")

    filters: list[FieldFilter] = []
    for key, value in data.items():
        if value is None:
            continue
        op = DEFAULT_OPERATOR
        field_name = key
        for candidate in FILTER_OPERATORS:
            if key.endswith(candidate) and len(key) > len(candidate):
                op = candidate
                field_name = key[: -len(candidate)]
                break
        validate_field_path(field_name)
        filters.append(FieldFilter(field_name, op, value))
    return filters


def parse_sort(raw: Any) -> SortSpec | None:
    """Parse ``{"field", "direction"|"order"}`` or ``["field", "ASC"]``."""
    data = _decode(raw, "sort")
    if data is None or isinstance(data, SortSpec):
        return data
    if isinstance(data, (list, tuple)):
        if len(data) != 2:
            raise InvalidParametersError(
                f"Invalid sort parameter {raw!r}. Must be [field, order] or {{field, order}}"
            )
        data = {"field": data[0], "order": data[1]}
    if isinstance(data, dict):
        data = dict(data)
        order = data.get("direction", data.get("order"))
        data.pop("direction", None)
        if isinstance(order, str):
            data["order"] = order.lower()
        elif order is not None:
            data["order"] = order
    try:
        spec = SortSpec.model_validate(data)
    except ValidationError as e:
        raise InvalidParametersError(
            f"Invalid sort parameter {raw!r}. The field must be non-empty and the order "
            f"either 'ASC' or 'DESC': {e.errors(include_url=False)}"
        ) from e
    if not spec.by_key:
        validate_field_path(spec.field)
    return spec


def parse_range(raw: Any) -> tuple[int | None, int | None]:
    """Parse an inclusive ``[start, end]`` range."""
    data = _decode(raw, "range")
    if data is None:
        return None, None
    try:
        start, end = _RANGE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise InvalidParametersError(
            f"Invalid range parameter {raw!r}. Must be [rangeStart, rangeEnd]"
        ) from e
    if start < 0 or end < 0 or start > end:
        raise InvalidParametersError(
            f"Invalid range parameter {raw!r}. Both bounds must be non-negative and "
            "rangeStart must not be greater than rangeEnd"
        )
    return start, end


def parse_page_info(raw: Any) -> PageInfo:
    data = _decode(raw, "pageInfo")
    if data is None:
        return PageInfo()
    if isinstance(data, PageInfo):
        return data
    try:
        return PageInfo.model_validate(data)
    except ValidationError as e:
        raise InvalidParametersError(f"Invalid pageInfo parameter {raw!r}") from e


@dataclass(frozen=True)
class RangeQuery:
    filters: list[FieldFilter] = field(default_factory=list)
    sort: SortSpec | None = None
    range_start: int | None = None
    range_end: int | None = None
    page_info: PageInfo = field(default_factory=PageInfo)

    @classmethod
    def parse(
        cls,
        filter: Any = None,
        sort: Any = None,
        range: Any = None,
        page_info: Any = None,
    ) -> RangeQuery:
        start, end = parse_range(range)
        return cls(
            filters=parse_filter(filter),
            sort=parse_sort(sort),
            range_start=start,
            range_end=end,
            page_info=parse_page_info(page_info),
        )

    @property
    def descending(self) -> bool:
        return self.sort is not None and self.sort.descending

    @property
    def sort_field(self) -> str | None:
        """Sort field path, or None for key order."""
        if self.sort is None or self.sort.by_key:
            return None
        return self.sort.field


@dataclass
class QueryResult:
    total_count: int
    range_start: int
    range_end: int
    data: list[dict[str, Any]]

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalCount": self.total_count,
            "rangeStart": self.range_start,
            "rangeEnd": self.range_end,
            "data": self.data,
        }
