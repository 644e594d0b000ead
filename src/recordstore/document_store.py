"""DataStore adapter for the SQLite document backend."""

from __future__ import annotations

import json
import logging
from typing import Any

from recordstore.codecs import DateCodec, ValueCodec
from recordstore.datastore import BaseDataStore, Callback, Record, wrap_failures
from recordstore.errors import (
    DatabaseConsistencyError,
    InvalidParametersError,
    RecordCreateFailedError,
    RecordDeleteFailedError,
    RecordNotFoundError,
    RecordReadFailedError,
    RecordUpdateFailedError,
)
from recordstore.ids import generate_auto_id
from recordstore.options import DataStoreOptions, ValueShape
from recordstore.pagination import paginate, reconcile
from recordstore.query import QueryResult, RangeQuery
from recordstore.storage_sqlite import SQLiteDocumentClient
from recordstore.validation import encode_json, enforce_read_only_fields, validate_id

logger = logging.getLogger(__name__)

_AUTO_ID_ATTEMPTS = 5


class DocumentDataStore(BaseDataStore):
    """Collection of JSON object documents in one SQLite database."""

    backend = "document"

    def __init__(
        self,
        client: SQLiteDocumentClient,
        collection: str,
        options: DataStoreOptions | None = None,
        codec: ValueCodec | None = None,
        *,
        max_id_attempts: int = 100,
    ) -> None:
        super().__init__(collection, options, codec, max_id_attempts=max_id_attempts)
        if self.options.value_shape is not ValueShape.OBJECT:
            raise InvalidParametersError(
                f"Document collections store objects only, not '{self.options.value_shape.value}'"
            )
        self.client = client

    @classmethod
    def default_codec(cls, options: DataStoreOptions) -> ValueCodec:
        return DateCodec()

    # --- Mapping helpers ---

    def _encode(self, value: Any) -> dict[str, Any]:
        stored = self.mapper.to_store(value)
        return {} if stored is None else stored

    def _load(self, record_id: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise DatabaseConsistencyError(
                f"Document '{record_id}' in '{self.collection}' is not valid JSON: {e}"
            ) from e

    def _decode(self, record_id: str, raw: str) -> Record:
        return self.mapper.from_store(record_id, self._load(record_id, raw))

    # --- CRUD ---

    def create(self, value: Any) -> Record:
        self.ids.require_auto()
        fields_json = encode_json(self._encode(value))
        with wrap_failures(RecordCreateFailedError, "Failed to create record"):
            for _attempt in range(_AUTO_ID_ATTEMPTS):
                record_id = generate_auto_id()
                if self.client.insert_if_absent(self.collection, record_id, fields_json):
                    break
            else:
                raise RecordCreateFailedError(
                    f"Failed to create record. No free id after {_AUTO_ID_ATTEMPTS} attempts"
                )
        self._log_created(record_id)
        return self.mapper.to_record(record_id, value)

    def create_with_id(
        self, record_id: str, value: Any, callback: Callback | None = None
    ) -> Record:
        """Create under ``record_id`` (or a suffixed variant when conflicts are allowed).

        The id claim and ``callback`` share one transaction: a failing
        callback leaves no record behind.
        """
        self.ids.require_manual()
        validate_id(record_id)
        fields_json = encode_json(self._encode(value))
        action = f"Failed to create record '{record_id}'"
        with wrap_failures(RecordCreateFailedError, action):
            with self.client.transaction():
                final_id = self.ids.allocate(
                    record_id,
                    lambda candidate: self.client.insert_if_absent(
                        self.collection, candidate, fields_json
                    ),
                )
                self._run_callback(callback, final_id, value, RecordCreateFailedError, action)
        self._log_created(final_id)
        return self.mapper.to_record(final_id, value)

    def read(self, record_id: str) -> Record:
        validate_id(record_id)
        with wrap_failures(RecordReadFailedError, f"Failed to read record '{record_id}'"):
            raw = self.client.get(self.collection, record_id)
        if raw is None:
            raise RecordNotFoundError(record_id)
        return self._decode(record_id, raw)

    def _apply_update(self, record_id: str, stored: dict[str, Any]) -> Record:
        raw = self.client.get(self.collection, record_id)
        if raw is None:
            if not self.options.create_if_not_exists:
                raise RecordNotFoundError(record_id)
            self.client.insert_if_absent(self.collection, record_id, encode_json(stored))
            logger.debug("Upserted missing record '%s' in '%s'", record_id, self.collection)
            return {}

        current = self._load(record_id, raw)
        previous = self.mapper.from_store(record_id, current)
        enforce_read_only_fields(current, stored, self.options.read_only_fields)
        self.client.merge(
            self.collection,
            record_id,
            {key: encode_json(field_value) for key, field_value in stored.items()},
        )
        return previous

    def update(self, record_id: str, value: Any) -> Record:
        """Shallow-merge ``value`` into the record; returns the previous record."""
        self._require_plain_update()
        validate_id(record_id)
        stored = self._encode(value)
        with wrap_failures(RecordUpdateFailedError, f"Failed to update record '{record_id}'"):
            with self.client.transaction():
                return self._apply_update(record_id, stored)

    def transactional_update(
        self, record_id: str, value: Any, callback: Callback | None = None
    ) -> Record:
        self._require_transactional_update()
        validate_id(record_id)
        stored = self._encode(value)
        action = f"Failed to update record '{record_id}'"
        with wrap_failures(RecordUpdateFailedError, action):
            with self.client.transaction():
                previous = self._apply_update(record_id, stored)
                self._run_callback(callback, record_id, value, RecordUpdateFailedError, action)
        return previous

    def delete(self, record_id: str) -> Record:
        validate_id(record_id)
        with wrap_failures(RecordDeleteFailedError, f"Failed to delete record '{record_id}'"):
            with self.client.transaction():
                raw = self.client.get(self.collection, record_id)
                if raw is None:
                    raise RecordNotFoundError(record_id)
                previous = self._decode(record_id, raw)
                self.client.delete(self.collection, record_id)
        logger.debug("Deleted record '%s' from '%s'", record_id, self.collection)
        return previous

    # --- Query ---

    def _run_query(self, request: RangeQuery) -> QueryResult:
        filters = request.filters
        sort_field = request.sort_field

        def resolve(doc_id: str) -> int | None:
            return self.client.find_position(
                self.collection,
                filters,
                sort_field=sort_field,
                descending=request.descending,
                doc_id=doc_id,
            )

        with self.client.snapshot():
            total = self.client.count_documents(self.collection, filters)
            page = paginate(
                total, request.range_start, request.range_end, request.page_info, resolve
            )
            if page.plan is None:
                return QueryResult(total, page.range_start, page.range_end, [])
            scan = page.plan
            rows = self.client.query_documents(
                self.collection,
                filters,
                sort_field=sort_field,
                descending=request.descending != scan.reverse,
                offset=scan.offset,
                limit=scan.limit,
                anchor_id=scan.anchor.id if scan.anchor else None,
            )

        data = [self._decode(doc_id, raw) for doc_id, raw in reconcile(rows, scan)]
        return QueryResult(total, page.range_start, page.range_end, data)
