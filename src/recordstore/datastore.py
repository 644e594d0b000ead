"""The DataStore contract, shared adapter machinery, and backend wiring."""

from __future__ import annotations

import logging
import string
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Iterator, Protocol, runtime_checkable
from urllib.parse import urlparse

from recordstore.codecs import ValueCodec
from recordstore.config import RecordStoreConfig
from recordstore.errors import (
    InvalidMethodError,
    InvalidParametersError,
    RecordQueryFailedError,
    RecordStoreError,
    StorageBackendError,
    TransactionConflictError,
)
from recordstore.ids import IdAllocator
from recordstore.options import DataStoreOptions
from recordstore.query import QueryResult, RangeQuery
from recordstore.validation import RecordMapper, validate_id

logger = logging.getLogger(__name__)

Record = dict[str, Any]
Callback = Callable[[str, Any], Any]


@runtime_checkable
class DataStore(Protocol):
    """Uniform CRUD and range-query contract over one collection."""

    collection: str
    options: DataStoreOptions

    def create(self, value: Any) -> Record: ...

    def create_with_id(
        self, record_id: str, value: Any, callback: Callback | None = None
    ) -> Record: ...

    def update(self, record_id: str, value: Any) -> Record: ...

    def transactional_update(
        self, record_id: str, value: Any, callback: Callback | None = None
    ) -> Record: ...

    def read(self, record_id: str) -> Record: ...

    def query(
        self,
        filter: Any = None,
        sort: Any = None,
        range: Any = None,
        page_info: Any = None,
    ) -> QueryResult: ...

    def delete(self, record_id: str) -> Record: ...


_BACKEND_FAILURES = (StorageBackendError, TransactionConflictError)


@contextmanager
def wrap_failures(error_cls: type[RecordStoreError], action: str) -> Iterator[None]:
    """Map backend and callback failures onto ``error_cls``.

    Caller and policy errors already carry their own type and pass through.
    """
    try:
        yield
    except RecordStoreError as e:
        if isinstance(e, _BACKEND_FAILURES):
            raise error_cls(f"{action}. {e.message}") from e
        raise
    except Exception as e:
        raise error_cls(f"{action}. {type(e).__name__}: {e}") from e


class BaseDataStore:
    """Policy and mapping shared by the document and tree adapters."""

    backend: ClassVar[str] = ""

    def __init__(
        self,
        collection: str,
        options: DataStoreOptions | None = None,
        codec: ValueCodec | None = None,
        *,
        max_id_attempts: int = 100,
    ) -> None:
        if not isinstance(collection, str) or not collection.strip("/"):
            raise InvalidParametersError(f"Invalid collection path {collection!r}")
        self.collection = collection
        self.options = options or DataStoreOptions()
        self.codec = codec or self.default_codec(self.options)
        self.mapper = RecordMapper(self.options, self.codec)
        self.ids = IdAllocator(self.options.create_id_option, max_id_attempts)

    @classmethod
    def default_codec(cls, options: DataStoreOptions) -> ValueCodec:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(collection={self.collection!r})"

    def _require_plain_update(self) -> None:
        if self.options.require_transaction:
            raise InvalidMethodError(
                "Failed to update record. update() is not allowed when require_transaction "
                "is set. Use transactional_update() instead."
            )

    def _require_transactional_update(self) -> None:
        if not self.options.require_transaction:
            raise InvalidMethodError(
                "Failed to update record. transactional_update() is only allowed when "
                "require_transaction is set. Use update() instead."
            )

    def _run_callback(
        self,
        callback: Callback | None,
        record_id: str,
        value: Any,
        error_cls: type[RecordStoreError],
        action: str,
    ) -> None:
        if callback is None:
            return
        try:
            callback(record_id, value)
        except Exception as e:
            logger.warning("Callback for record '%s' failed; rolling back: %s", record_id, e)
            raise error_cls(f"{action}. Callback failed: {e}") from e

    def _log_created(self, record_id: str) -> None:
        logger.info(
            "Created record '%s' in %s collection '%s'", record_id, self.backend, self.collection
        )

    def query(
        self,
        filter: Any = None,
        sort: Any = None,
        range: Any = None,
        page_info: Any = None,
    ) -> QueryResult:
        """Filtered, sorted, inclusive-range query.

        ``page_info`` may carry the first/last visible records of a previously
        returned page; they only affect how the page is reached, never which
        records it contains.
        """
        request = RangeQuery.parse(filter, sort, range, page_info)
        with wrap_failures(RecordQueryFailedError, "Failed to query records"):
            return self._run_query(request)

    def _run_query(self, request: RangeQuery) -> QueryResult:
        raise NotImplementedError


# --- Backend wiring ---


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a storage URI."""

    backend: str
    uri: str
    db_path: str | None = None
    bucket: str | None = None
    prefix: str | None = None


def parse_storage_target(storage_uri: str) -> StorageTarget:
    """Resolve ``sqlite:///path``, ``s3://bucket/prefix`` or ``memory://``."""
    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        elif sqlite_path.startswith("/"):
            # sqlite:///rel/path -> rel/path
            sqlite_path = sqlite_path[1:]
        if not sqlite_path:
            raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        prefix = parsed.path.lstrip("/").rstrip("/")
        if not bucket:
            raise StorageBackendError("parse_storage_uri", f"Invalid s3 URI: {storage_uri}")
        return StorageTarget(backend="s3", uri=storage_uri, bucket=bucket, prefix=prefix)

    if parsed.scheme == "memory":
        return StorageTarget(backend="memory", uri=storage_uri)

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


def open_client(storage_uri: str, config: RecordStoreConfig | None = None) -> Any:
    """Open the backend client handle named by ``storage_uri``."""
    cfg = config or RecordStoreConfig()
    target = parse_storage_target(storage_uri)
    if target.backend == "sqlite":
        from recordstore.storage_sqlite import SQLiteDocumentClient

        assert target.db_path is not None
        return SQLiteDocumentClient(
            target.db_path,
            busy_timeout_s=cfg.sqlite_busy_timeout_s,
            begin_retries=cfg.sqlite_begin_retries,
        )
    if target.backend == "s3":
        from recordstore.storage_s3 import S3TreeClient

        assert target.bucket is not None
        return S3TreeClient(bucket=target.bucket, prefix=target.prefix or "", config=cfg)
    if target.backend == "memory":
        from recordstore.tree import MemoryTreeClient

        return MemoryTreeClient(max_retries=cfg.tree_transaction_max_retries)
    raise StorageBackendError("open_client", f"Unsupported backend '{target.backend}'")


def open_datastore(
    client: Any,
    collection: str,
    options: DataStoreOptions | None = None,
    codec: ValueCodec | None = None,
    *,
    config: RecordStoreConfig | None = None,
) -> DataStore:
    """Build the adapter matching ``client`` for one collection."""
    from recordstore.document_store import DocumentDataStore
    from recordstore.storage_sqlite import SQLiteDocumentClient
    from recordstore.tree import TreeClient
    from recordstore.tree_store import TreeDataStore

    cfg = config or RecordStoreConfig()
    if options is None:
        options = cfg.options_for(collection)
    if isinstance(client, SQLiteDocumentClient):
        return DocumentDataStore(
            client, collection, options, codec, max_id_attempts=cfg.max_id_attempts
        )
    if isinstance(client, TreeClient):
        return TreeDataStore(client, collection, options, codec, max_id_attempts=cfg.max_id_attempts)
    raise InvalidParametersError(f"Unsupported backend client {type(client).__name__}")


def collection_path(template: str, **params: str) -> str:
    """Fill a path template such as ``/providers/{provider_id}/userprofiles``."""
    values: dict[str, str] = {}
    for _literal, name, _spec, _conversion in string.Formatter().parse(template):
        if name is None:
            continue
        if name not in params:
            raise InvalidParametersError(f"Missing path parameter '{name}' for '{template}'")
        values[name] = validate_id(params[name])
    return template.format(**values)
