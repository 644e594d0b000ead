"""SQLite document storage: one JSON document per (collection, doc_id) row."""

from __future__ import annotations

import logging
import random
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Iterator, Sequence

from recordstore.codecs import TIMESTAMP_KEY, datetime_to_micros, is_timestamp
from recordstore.errors import InvalidParametersError, StorageBackendError
from recordstore.query import FieldFilter
from recordstore.validation import encode_json

logger = logging.getLogger(__name__)


def _json_path(field_path: str) -> str:
    return f"$.{field_path}"


def _value_expr(field_path: str) -> str:
    """SQL value of a field; timestamps compare by their integer payload."""
    path = _json_path(field_path)
    return (
        f"COALESCE(json_extract(fields_json, '{path}.{TIMESTAMP_KEY}'), "
        f"json_extract(fields_json, '{path}'))"
    )


def _type_expr(field_path: str) -> str:
    return f"json_type(fields_json, '{_json_path(field_path)}')"


def _normalize_operand(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return {TIMESTAMP_KEY: datetime_to_micros(value)}
    return value


def _compile_match(field_path: str, value: Any, sql_op: str, params: list[Any]) -> str:
    """Type-guarded scalar comparison: values of different JSON types never match."""
    value = _normalize_operand(value)
    if is_timestamp(value):
        params.append(value[TIMESTAMP_KEY])
        ts_type = f"json_type(fields_json, '{_json_path(field_path)}.{TIMESTAMP_KEY}')"
        return f"({ts_type} = 'integer' AND {_value_expr(field_path)} {sql_op} ?)"
    if isinstance(value, bool):
        params.append(int(value))
        guard = f"{_type_expr(field_path)} IN ('true', 'false')"
    elif isinstance(value, (int, float)):
        params.append(value)
        guard = f"{_type_expr(field_path)} IN ('integer', 'real')"
    elif isinstance(value, str):
        params.append(value)
        guard = f"{_type_expr(field_path)} = 'text'"
    elif isinstance(value, (dict, list)):
        if sql_op not in ("=", "!="):
            raise InvalidParametersError(
                f"Operator '{sql_op}' cannot compare field '{field_path}' with a "
                f"{type(value).__name__}"
            )
        params.append(encode_json(value))
        kind = "object" if isinstance(value, dict) else "array"
        return (
            f"({_type_expr(field_path)} = '{kind}' AND "
            f"json_extract(fields_json, '{_json_path(field_path)}') {sql_op} json(?))"
        )
    else:
        raise InvalidParametersError(
            f"Unsupported filter value {value!r} for field '{field_path}'"
        )
    return f"({guard} AND {_value_expr(field_path)} {sql_op} ?)"


def _element_operand(flt: FieldFilter, value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, str)):
        return value
    raise InvalidParametersError(
        f"Filter '{flt.key}' only matches array elements against scalars, got {value!r}"
    )


def _require_list(flt: FieldFilter) -> list[Any]:
    if not isinstance(flt.value, (list, tuple)):
        raise InvalidParametersError(
            f"Filter '{flt.key}' expects a list of values, got {type(flt.value).__name__}"
        )
    return list(flt.value)


def _compile_comparison(flt: FieldFilter, params: list[Any]) -> str:
    """Compile one field filter to a SQL WHERE fragment."""
    op = flt.op
    if op == "_eq":
        return _compile_match(flt.field, flt.value, "=", params)
    if op == "_neq":
        match = _compile_match(flt.field, flt.value, "=", params)
        return f"({_value_expr(flt.field)} IS NOT NULL AND NOT {match})"
    if op in ("_lt", "_lte", "_gt", "_gte"):
        sql_op = {"_lt": "<", "_lte": "<=", "_gt": ">", "_gte": ">="}[op]
        return _compile_match(flt.field, flt.value, sql_op, params)
    if op in ("_eq_any", "_neq_any"):
        values = _require_list(flt)
        matches = [_compile_match(flt.field, v, "=", params) for v in values]
        any_match = f"({' OR '.join(matches)})" if matches else "0"
        if op == "_eq_any":
            return any_match
        return f"({_value_expr(flt.field)} IS NOT NULL AND NOT {any_match})"
    if op == "_inc_any":
        values = _require_list(flt)
        if not values:
            return "0"
        placeholders = ", ".join("?" for _ in values)
        params.append(_json_path(flt.field))
        params.extend(_element_operand(flt, v) for v in values)
        return (
            f"({_type_expr(flt.field)} = 'array' AND EXISTS "
            f"(SELECT 1 FROM json_each(fields_json, ?) AS je WHERE je.value IN ({placeholders})))"
        )
    if op == "_q":
        value = flt.value
        params.extend([_json_path(flt.field), _element_operand(flt, value)])
        array_clause = (
            f"({_type_expr(flt.field)} = 'array' AND EXISTS "
            f"(SELECT 1 FROM json_each(fields_json, ?) AS je WHERE je.value = ?))"
        )
        if not isinstance(value, str):
            return array_clause
        params.append(value)
        return (
            f"({array_clause} OR ({_type_expr(flt.field)} = 'text' AND "
            f"instr(json_extract(fields_json, '{_json_path(flt.field)}'), ?) > 0))"
        )
    raise InvalidParametersError(f"Unsupported filter operator '{op}' in '{flt.key}'")


def _compile_filter(filters: Sequence[FieldFilter], params: list[Any]) -> str:
    """AND together all field filters; empty means no restriction."""
    if not filters:
        return "1"
    return " AND ".join(_compile_comparison(f, params) for f in filters)


def _keyset_after(
    sort_field: str | None,
    anchor_value: Any,
    greater: bool,
    params: list[Any],
    anchor_id: str,
) -> str:
    """Rows strictly after the anchor in ``(sort value, doc_id)`` order.

    ``greater`` selects ascending (True) or descending (False) physical order.
    NULL sort values order first, as SQLite does.
    """
    if sort_field is None:
        params.append(anchor_id)
        return f"doc_id {'>' if greater else '<'} ?"
    sx = _value_expr(sort_field)
    if greater:
        if anchor_value is None:
            params.append(anchor_id)
            return f"({sx} IS NOT NULL OR ({sx} IS NULL AND doc_id > ?))"
        params.extend([anchor_value, anchor_value, anchor_id])
        return f"({sx} > ? OR ({sx} = ? AND doc_id > ?))"
    if anchor_value is None:
        params.append(anchor_id)
        return f"({sx} IS NULL AND doc_id < ?)"
    params.extend([anchor_value, anchor_value, anchor_id])
    return f"({sx} IS NULL OR {sx} < ? OR ({sx} = ? AND doc_id < ?))"


def _order_by(sort_field: str | None, descending: bool) -> str:
    direction = "DESC" if descending else "ASC"
    if sort_field is None:
        return f"ORDER BY doc_id {direction}"
    return f"ORDER BY {_value_expr(sort_field)} {direction}, doc_id {direction}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteDocumentClient:
    """Single-connection SQLite document client.

    The connection runs in autocommit mode and every statement is serialised
    by a re-entrant lock, so a transaction opened by one thread excludes the
    others until it ends.
    """

    def __init__(
        self,
        db_path: str,
        *,
        busy_timeout_s: float = 5.0,
        begin_retries: int = 5,
    ) -> None:
        self.db_path = db_path
        self.begin_retries = max(1, begin_retries)
        self._conn = sqlite3.connect(
            db_path,
            timeout=busy_timeout_s,
            isolation_level=None,
            check_same_thread=False,
        )
        self._lock = threading.RLock()
        self._depth = 0
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    fields_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            """)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    # --- Transaction helpers ---

    def _begin(self, sql: str) -> None:
        for attempt in range(1, self.begin_retries + 1):
            try:
                self._conn.execute(sql)
                return
            except sqlite3.OperationalError as e:
                if "locked" not in str(e) and "busy" not in str(e):
                    raise StorageBackendError("begin_transaction", str(e)) from e
                if attempt == self.begin_retries:
                    raise StorageBackendError(
                        "begin_transaction",
                        f"database stayed locked after {attempt} attempts: {e}",
                    ) from e
                logger.warning(
                    "Database locked on %s (attempt %d/%d); retrying",
                    sql,
                    attempt,
                    self.begin_retries,
                )
                time.sleep(0.01 + random.uniform(0.0, 0.02))

    @contextmanager
    def _scope(self, begin_sql: str) -> Iterator[SQLiteDocumentClient]:
        with self._lock:
            depth = self._depth
            savepoint = f"sp_{depth}"
            if depth == 0:
                self._begin(begin_sql)
            else:
                self._conn.execute(f"SAVEPOINT {savepoint}")
            self._depth = depth + 1
            try:
                yield self
            except BaseException:
                self._depth = depth
                if depth == 0:
                    self._conn.execute("ROLLBACK")
                else:
                    self._conn.execute(f"ROLLBACK TO {savepoint}")
                    self._conn.execute(f"RELEASE {savepoint}")
                raise
            self._depth = depth
            if depth == 0:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error:
                    self._conn.execute("ROLLBACK")
                    raise
            else:
                self._conn.execute(f"RELEASE {savepoint}")

    def transaction(self) -> Any:
        """Write transaction; nested calls become savepoints."""
        return self._scope("BEGIN IMMEDIATE")

    def snapshot(self) -> Any:
        """Read transaction giving a consistent view across several statements."""
        return self._scope("BEGIN")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    # --- Document operations ---

    def get(self, collection: str, doc_id: str) -> str | None:
        row = self._execute(
            "SELECT fields_json FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        return row[0] if row else None

    def insert_if_absent(self, collection: str, doc_id: str, fields_json: str) -> bool:
        now = _now_iso()
        cursor = self._execute(
            "INSERT OR IGNORE INTO documents "
            "(collection, doc_id, fields_json, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (collection, doc_id, fields_json, now, now),
        )
        return cursor.rowcount == 1

    def merge(self, collection: str, doc_id: str, fields: dict[str, str]) -> bool:
        """Shallow-merge top-level fields (each given as JSON text)."""
        if not fields:
            row = self._execute(
                "SELECT 1 FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()
            return row is not None
        assignments: list[str] = []
        params: list[Any] = []
        for key, value_json in fields.items():
            if '"' in key or "\\" in key:
                raise InvalidParametersError(f"Field name {key!r} cannot be stored")
            assignments.append("?, json(?)")
            params.extend([f'$."{key}"', value_json])
        params.extend([_now_iso(), collection, doc_id])
        cursor = self._execute(
            f"UPDATE documents SET fields_json = json_set(fields_json, {', '.join(assignments)}), "
            "updated_at = ? WHERE collection = ? AND doc_id = ?",
            params,
        )
        return cursor.rowcount == 1

    def delete(self, collection: str, doc_id: str) -> bool:
        cursor = self._execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        return cursor.rowcount == 1

    def count_documents(self, collection: str, filters: Sequence[FieldFilter]) -> int:
        params: list[Any] = [collection]
        where_sql = _compile_filter(filters, params)
        row = self._execute(
            f"SELECT COUNT(*) FROM documents WHERE collection = ? AND {where_sql}",
            params,
        ).fetchone()
        return int(row[0])

    def _anchor_value(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        sort_field: str | None,
        doc_id: str,
    ) -> tuple[bool, Any]:
        params: list[Any] = [collection, doc_id]
        where_sql = _compile_filter(filters, params)
        value_sql = _value_expr(sort_field) if sort_field else "NULL"
        row = self._execute(
            f"SELECT {value_sql} FROM documents "
            f"WHERE collection = ? AND doc_id = ? AND {where_sql}",
            params,
        ).fetchone()
        if row is None:
            return False, None
        return True, row[0]

    def find_position(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        *,
        sort_field: str | None,
        descending: bool,
        doc_id: str,
    ) -> int | None:
        """Position of ``doc_id`` in the filtered, sorted result, or None."""
        found, anchor_value = self._anchor_value(collection, filters, sort_field, doc_id)
        if not found:
            return None
        params: list[Any] = [collection]
        where_sql = _compile_filter(filters, params)
        # Rows ahead of the anchor in requested order.
        ahead = _keyset_after(sort_field, anchor_value, descending, params, doc_id)
        row = self._execute(
            f"SELECT COUNT(*) FROM documents WHERE collection = ? AND {where_sql} AND {ahead}",
            params,
        ).fetchone()
        return int(row[0])

    def query_documents(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        *,
        sort_field: str | None,
        descending: bool,
        offset: int,
        limit: int,
        anchor_id: str | None = None,
    ) -> list[tuple[str, str]]:
        """Scan in physical ``descending`` order, optionally starting after an anchor."""
        params: list[Any] = [collection]
        where_sql = _compile_filter(filters, params)
        sql = f"SELECT doc_id, fields_json FROM documents WHERE collection = ? AND {where_sql}"
        if anchor_id is not None:
            found, anchor_value = self._anchor_value(collection, filters, sort_field, anchor_id)
            if not found:
                return []
            after = _keyset_after(sort_field, anchor_value, not descending, params, anchor_id)
            sql += f" AND {after}"
        sql += f" {_order_by(sort_field, descending)} LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [(r[0], r[1]) for r in self._execute(sql, params).fetchall()]

    def list_collections(self) -> dict[str, int]:
        rows = self._execute(
            "SELECT collection, COUNT(*) FROM documents GROUP BY collection ORDER BY collection"
        ).fetchall()
        return {r[0]: int(r[1]) for r in rows}

    def storage_info(self) -> dict[str, Any]:
        """Return backend info for operator commands."""
        return {
            "backend": "sqlite",
            "db_path": self.db_path,
            "collections": self.list_collections(),
        }
