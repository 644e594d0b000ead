"""recordstore: uniform record CRUD and range queries over document and tree backends."""

__version__ = "0.1.0"

from recordstore.codecs import ChainCodec, DateCodec, IdentityCodec, KeyedListCodec, ValueCodec
from recordstore.config import RecordStoreConfig, load_config
from recordstore.datastore import (
    DataStore,
    collection_path,
    open_client,
    open_datastore,
    parse_storage_target,
)
from recordstore.document_store import DocumentDataStore
from recordstore.errors import (
    DatabaseConsistencyError,
    InvalidDataError,
    InvalidMethodError,
    InvalidParametersError,
    LockAcquisitionFailedError,
    LockReleaseFailedError,
    RecordCreateFailedError,
    RecordDeleteFailedError,
    RecordNotFoundError,
    RecordQueryFailedError,
    RecordReadFailedError,
    RecordStoreError,
    RecordUpdateFailedError,
    StorageBackendError,
    TransactionConflictError,
)
from recordstore.lock import DistributedLock, LockHandle, LockState
from recordstore.options import CreateIdOption, DataStoreOptions, ValueShape
from recordstore.query import QueryResult
from recordstore.storage_sqlite import SQLiteDocumentClient
from recordstore.tree import MemoryTreeClient, TreeClient
from recordstore.tree_store import TreeDataStore

__all__ = [
    "__version__",
    "DataStore",
    "DocumentDataStore",
    "TreeDataStore",
    "SQLiteDocumentClient",
    "TreeClient",
    "MemoryTreeClient",
    "open_client",
    "open_datastore",
    "parse_storage_target",
    "collection_path",
    "DataStoreOptions",
    "CreateIdOption",
    "ValueShape",
    "ValueCodec",
    "IdentityCodec",
    "DateCodec",
    "KeyedListCodec",
    "ChainCodec",
    "QueryResult",
    "DistributedLock",
    "LockHandle",
    "LockState",
    "RecordStoreConfig",
    "load_config",
    "RecordStoreError",
    "InvalidParametersError",
    "InvalidDataError",
    "InvalidMethodError",
    "RecordNotFoundError",
    "RecordCreateFailedError",
    "RecordUpdateFailedError",
    "RecordDeleteFailedError",
    "RecordReadFailedError",
    "RecordQueryFailedError",
    "DatabaseConsistencyError",
    "LockAcquisitionFailedError",
    "LockReleaseFailedError",
    "StorageBackendError",
    "TransactionConflictError",
]
