"""Stable process exit codes for the recordstore CLI."""

from __future__ import annotations

from recordstore.errors import (
    DatabaseConsistencyError,
    InvalidDataError,
    InvalidMethodError,
    InvalidParametersError,
    LockAcquisitionFailedError,
    LockReleaseFailedError,
    RecordCreateFailedError,
    RecordNotFoundError,
    RecordStoreError,
    StorageBackendError,
    TransactionConflictError,
)

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
DATABASE_ERROR = 3
NOT_FOUND = 4
CONFLICT = 5
VALIDATION_ERROR = 6
LOCK_ERROR = 7
EXECUTION_FAILURE = 8

_BY_ERROR: list[tuple[type[RecordStoreError], int]] = [
    (InvalidParametersError, USAGE_ERROR),
    (InvalidMethodError, USAGE_ERROR),
    (InvalidDataError, VALIDATION_ERROR),
    (RecordNotFoundError, NOT_FOUND),
    (RecordCreateFailedError, CONFLICT),
    (TransactionConflictError, CONFLICT),
    (DatabaseConsistencyError, DATABASE_ERROR),
    (StorageBackendError, DATABASE_ERROR),
    (LockAcquisitionFailedError, LOCK_ERROR),
    (LockReleaseFailedError, LOCK_ERROR),
]


def for_error(err: RecordStoreError) -> int:
    for cls, code in _BY_ERROR:
        if isinstance(err, cls):
            return code
    return EXECUTION_FAILURE
