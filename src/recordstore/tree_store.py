"""DataStore adapter for hierarchical tree backends (S3, in-memory).

Tree backends have no server-side filtering, counting or descending order,
so queries materialise the collection's children and page through them in
memory. Each record is one node; single-node writes are atomic via the
client's compare-and-swap.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from recordstore.codecs import (
    TIMESTAMP_KEY,
    ChainCodec,
    DateCodec,
    KeyedListCodec,
    ValueCodec,
    datetime_to_micros,
    is_timestamp,
)
from recordstore.datastore import BaseDataStore, Callback, Record, wrap_failures
from recordstore.errors import (
    DatabaseConsistencyError,
    InvalidDataError,
    InvalidParametersError,
    RecordCreateFailedError,
    RecordDeleteFailedError,
    RecordNotFoundError,
    RecordReadFailedError,
    RecordUpdateFailedError,
)
from recordstore.options import DataStoreOptions, ValueShape
from recordstore.pagination import paginate, slice_plan
from recordstore.query import FieldFilter, QueryResult, RangeQuery
from recordstore.tree import ABORT, PreconditionFailed, TreeClient, normalize_path
from recordstore.validation import SCALAR_VALUE_KEY, enforce_read_only_fields, validate_id

logger = logging.getLogger(__name__)

SUPPORTED_OPERATORS = ("_eq", "_lt", "_lte", "_gt", "_gte")

# null < false < true < numbers < strings < objects
_RANK_NULL, _RANK_FALSE, _RANK_TRUE, _RANK_NUMBER, _RANK_STRING, _RANK_OBJECT = range(6)


def order_value(value: Any) -> tuple[int, Any]:
    """Position of a JSON value in the tree ordering; timestamps sort as numbers."""
    if value is None:
        return _RANK_NULL, 0
    if is_timestamp(value):
        return _RANK_NUMBER, value[TIMESTAMP_KEY]
    if isinstance(value, bool):
        return (_RANK_TRUE if value else _RANK_FALSE), 0
    if isinstance(value, (int, float)):
        return _RANK_NUMBER, value
    if isinstance(value, str):
        return _RANK_STRING, value
    return _RANK_OBJECT, 0


def _json_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


def _check_filter_operand(flt: FieldFilter) -> Any:
    value = flt.value
    if isinstance(value, (datetime, date)):
        return datetime_to_micros(value)
    if flt.op == "_eq":
        if isinstance(value, (str, int, float, bool)):
            return value
        expected = "a string, number or boolean"
    else:
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return value
        expected = "a string or number"
    raise InvalidParametersError(
        f"Invalid filter value {value!r} for '{flt.key}': must be {expected}"
    )


class TreeDataStore(BaseDataStore):
    """Collection stored as the direct children of one tree path."""

    backend = "tree"

    def __init__(
        self,
        client: TreeClient,
        collection: str,
        options: DataStoreOptions | None = None,
        codec: ValueCodec | None = None,
        *,
        max_id_attempts: int = 100,
    ) -> None:
        super().__init__(collection, options, codec, max_id_attempts=max_id_attempts)
        self.client = client
        self._root = normalize_path(collection)

    @classmethod
    def default_codec(cls, options: DataStoreOptions) -> ValueCodec:
        if options.value_shape is ValueShape.ARRAY:
            return ChainCodec(KeyedListCodec(), DateCodec())
        return DateCodec()

    def _path(self, record_id: str) -> str:
        return f"{self._root}/{record_id}"

    def _encode(self, value: Any) -> Any:
        return self.mapper.to_store(value)

    def _merged(self, record_id: str, current: Any, stored: Any) -> Any:
        if isinstance(current, dict) and isinstance(stored, dict):
            return {**current, **stored}
        if _json_kind(current) != _json_kind(stored):
            raise DatabaseConsistencyError(
                f"Stored value of record '{record_id}' is a {_json_kind(current)} but the "
                f"update is a {_json_kind(stored)}"
            )
        return stored

    # --- CRUD ---

    def create(self, value: Any) -> Record:
        self.ids.require_auto()
        stored = self._encode(value)
        if stored is None:
            raise InvalidDataError("Failed to create record. A tree node cannot hold null")
        with wrap_failures(RecordCreateFailedError, "Failed to create record"):
            record_id = self.client.push_key()
            self.client.put_if(self._path(record_id), stored, absent=True)
        self._log_created(record_id)
        return self.mapper.to_record(record_id, value)

    def create_with_id(
        self, record_id: str, value: Any, callback: Callback | None = None
    ) -> Record:
        """Claim ``record_id`` (or a suffixed variant) with a create-only write.

        ``callback`` runs once the claim succeeded; if it fails the claimed
        node is removed again, unless someone modified it in the meantime.
        """
        self.ids.require_manual()
        validate_id(record_id)
        stored = self._encode(value)
        if stored is None:
            raise InvalidDataError("Failed to create record. A tree node cannot hold null")
        action = f"Failed to create record '{record_id}'"
        versions: dict[str, str] = {}

        def claim(candidate: str) -> bool:
            try:
                versions[candidate] = self.client.put_if(self._path(candidate), stored, absent=True)
            except PreconditionFailed:
                return False
            return True

        with wrap_failures(RecordCreateFailedError, action):
            final_id = self.ids.allocate(record_id, claim)
            try:
                self._run_callback(callback, final_id, value, RecordCreateFailedError, action)
            except RecordCreateFailedError:
                self._release_claim(final_id, versions[final_id])
                raise
        self._log_created(final_id)
        return self.mapper.to_record(final_id, value)

    def _release_claim(self, record_id: str, version: str) -> None:
        try:
            self.client.delete(self._path(record_id), version=version)
        except PreconditionFailed:
            logger.warning(
                "Record '%s' changed after it was claimed; leaving it in place", record_id
            )

    def read(self, record_id: str) -> Record:
        validate_id(record_id)
        with wrap_failures(RecordReadFailedError, f"Failed to read record '{record_id}'"):
            current, _version = self.client.get(self._path(record_id))
        if current is None:
            raise RecordNotFoundError(record_id)
        return self.mapper.from_store(record_id, current)

    def update(self, record_id: str, value: Any) -> Record:
        """Merge ``value`` into the record without a transaction."""
        self._require_plain_update()
        validate_id(record_id)
        stored = self._encode(value)
        path = self._path(record_id)
        with wrap_failures(RecordUpdateFailedError, f"Failed to update record '{record_id}'"):
            current, _version = self.client.get(path)
            if current is None:
                if not self.options.create_if_not_exists:
                    raise RecordNotFoundError(record_id)
                if stored is not None:
                    self.client.set(path, stored)
                return {}
            previous = self.mapper.from_store(record_id, current)
            enforce_read_only_fields(current, stored, self.options.read_only_fields)
            if stored is None:
                return previous
            if isinstance(current, dict) and isinstance(stored, dict):
                self.client.update(path, stored)
            else:
                self.client.set(path, self._merged(record_id, current, stored))
            return previous

    def transactional_update(
        self, record_id: str, value: Any, callback: Callback | None = None
    ) -> Record:
        """Read-check-merge as one compare-and-swap transaction on the record node."""
        self._require_transactional_update()
        validate_id(record_id)
        stored = self._encode(value)
        path = self._path(record_id)
        action = f"Failed to update record '{record_id}'"
        snapshots: dict[str, Record] = {}

        def apply(current: Any) -> Any:
            if current is None:
                if not self.options.create_if_not_exists:
                    raise RecordNotFoundError(record_id)
                snapshots["previous"] = {}
                return ABORT if stored is None else stored
            snapshots["previous"] = self.mapper.from_store(record_id, current)
            enforce_read_only_fields(current, stored, self.options.read_only_fields)
            if stored is None:
                return ABORT
            return self._merged(record_id, current, stored)

        with wrap_failures(RecordUpdateFailedError, action):
            result = self.client.transaction(path, apply)
            try:
                self._run_callback(callback, record_id, value, RecordUpdateFailedError, action)
            except RecordUpdateFailedError:
                if result.committed:
                    self._restore(path, result.value, result.previous)
                raise
        return snapshots["previous"]

    def _restore(self, path: str, committed: Any, previous: Any) -> None:
        restored = self.client.transaction(
            path, lambda current: previous if current == committed else ABORT
        )
        if not restored.committed:
            logger.warning("Not restoring '%s': it changed after the failed update", path)

    def delete(self, record_id: str) -> Record:
        validate_id(record_id)
        path = self._path(record_id)
        with wrap_failures(RecordDeleteFailedError, f"Failed to delete record '{record_id}'"):
            current, version = self.client.get(path)
            if current is None:
                raise RecordNotFoundError(record_id)
            previous = self.mapper.from_store(record_id, current)
            self.client.delete(path, version=version)
        logger.debug("Deleted record '%s' from '%s'", record_id, self._root)
        return previous

    # --- Query ---

    def _field_value(self, stored: Any, field_path: str) -> Any:
        if self.options.value_shape is not ValueShape.OBJECT:
            return stored if field_path == SCALAR_VALUE_KEY else None
        current = stored
        for segment in field_path.split("."):
            if not isinstance(current, dict) or is_timestamp(current):
                return None
            current = current.get(segment)
        return current

    def _check_query(self, request: RangeQuery) -> tuple[FieldFilter | None, str | None]:
        if len(request.filters) > 1:
            raise InvalidParametersError(
                "Tree collections accept at most one filter, got "
                f"{[f.key for f in request.filters]}"
            )
        flt = request.filters[0] if request.filters else None
        sort_field = request.sort_field
        if flt is None:
            return None, sort_field
        if flt.op not in SUPPORTED_OPERATORS:
            raise InvalidParametersError(
                f"Unsupported filter operator '{flt.op}' in '{flt.key}'. "
                f"Tree collections support {', '.join(SUPPORTED_OPERATORS)}"
            )
        if request.sort is not None and request.sort.field != flt.field:
            raise InvalidParametersError(
                f"Sort field '{request.sort.field}' must match the filter field '{flt.field}'"
            )
        return flt, flt.field

    def _run_query(self, request: RangeQuery) -> QueryResult:
        flt, order_field = self._check_query(request)
        bound = order_value(_check_filter_operand(flt)) if flt is not None else None

        items: list[tuple[tuple[int, Any], str, Any]] = []
        for key, stored in self.client.list_children(self._root).items():
            rank = order_value(self._field_value(stored, order_field)) if order_field else (0, 0)
            if flt is not None and not _matches(rank, flt.op, bound):
                continue
            items.append((rank, key, stored))

        items.sort(key=lambda item: (item[0], item[1]))
        if request.descending:
            items.reverse()
        positions = {key: i for i, (_rank, key, _stored) in enumerate(items)}

        page = paginate(
            len(items), request.range_start, request.range_end, request.page_info, positions.get
        )
        if page.plan is None:
            return QueryResult(len(items), page.range_start, page.range_end, [])
        data = [
            self.mapper.from_store(key, stored)
            for _rank, key, stored in slice_plan(items, page.plan)
        ]
        return QueryResult(len(items), page.range_start, page.range_end, data)


def _matches(rank: tuple[int, Any], op: str, bound: tuple[int, Any] | None) -> bool:
    assert bound is not None
    if op == "_eq":
        return rank == bound
    if op == "_lt":
        return rank < bound
    if op == "_lte":
        return rank <= bound
    if op == "_gt":
        return rank > bound
    return rank >= bound
