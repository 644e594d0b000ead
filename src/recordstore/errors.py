"""Structured error types for recordstore."""

from __future__ import annotations


class RecordStoreError(Exception):
    """Base error for all recordstore errors.

    Every subclass carries a stable ``code`` so callers can map failures to
    transport-level responses without matching on message text.
    """

    code = "recordstore/unknown-error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidParametersError(RecordStoreError):
    """Raised for malformed caller input: ids, ranges, filter or sort syntax."""

    code = "recordstore/invalid-parameters"


class InvalidDataError(RecordStoreError):
    """Raised when a value fails structural validation or changes a read-only field."""

    code = "recordstore/invalid-data"


class InvalidMethodError(RecordStoreError):
    """Raised when the CRUD variant does not match the configured id/transaction policy."""

    code = "recordstore/invalid-method"


class RecordNotFoundError(RecordStoreError):
    code = "recordstore/record-not-found"

    def __init__(self, record_id: str, message: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message or f"No record exists with id '{record_id}'")


class RecordCreateFailedError(RecordStoreError):
    code = "recordstore/record-create-failed"


class RecordUpdateFailedError(RecordStoreError):
    code = "recordstore/record-update-failed"


class RecordDeleteFailedError(RecordStoreError):
    code = "recordstore/record-delete-failed"


class RecordReadFailedError(RecordStoreError):
    code = "recordstore/record-read-failed"


class RecordQueryFailedError(RecordStoreError):
    code = "recordstore/record-query-failed"


class DatabaseConsistencyError(RecordStoreError):
    """Raised when the backend returns data violating the store's own invariants."""

    code = "recordstore/database-consistency-error"


class LockAcquisitionFailedError(RecordStoreError):
    """Raised when a distributed lock cannot be acquired within its duration."""

    code = "recordstore/lock-acquisition-failed"

    def __init__(self, resource_key: str, duration_ms: int) -> None:
        self.resource_key = resource_key
        self.duration_ms = duration_ms
        super().__init__(f"Failed to acquire lock for '{resource_key}' after {duration_ms}ms")


class LockReleaseFailedError(RecordStoreError):
    code = "recordstore/lock-release-failed"


class StorageBackendError(RecordStoreError):
    """Raised when backend storage operations fail."""

    code = "recordstore/storage-backend-error"

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")


class TransactionConflictError(RecordStoreError):
    """Raised when compare-and-swap retries are exhausted on a contended key."""

    code = "recordstore/transaction-conflict"

    def __init__(self, path: str, retries: int) -> None:
        self.path = path
        self.retries = retries
        super().__init__(f"Transaction on '{path}' did not commit after {retries} attempts")


_ERRORS_BY_CODE: dict[str, type[RecordStoreError]] = {
    cls.code: cls
    for cls in (
        InvalidParametersError,
        InvalidDataError,
        InvalidMethodError,
        RecordNotFoundError,
        RecordCreateFailedError,
        RecordUpdateFailedError,
        RecordDeleteFailedError,
        RecordReadFailedError,
        RecordQueryFailedError,
        DatabaseConsistencyError,
        LockAcquisitionFailedError,
        LockReleaseFailedError,
        StorageBackendError,
        TransactionConflictError,
    )
}


def error_for_code(code: str) -> type[RecordStoreError]:
    """Return the error class registered for ``code`` (base class when unknown)."""
    return _ERRORS_BY_CODE.get(code, RecordStoreError)
