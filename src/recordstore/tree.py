"""Hierarchical JSON tree clients.

A tree client stores one JSON value per slash-separated path and exposes
versioned compare-and-swap writes. Collections are the direct children of a
path. Two implementations ship: ``MemoryTreeClient`` here, and the S3-backed
client in ``recordstore.storage_s3``.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from recordstore.errors import InvalidParametersError, TransactionConflictError
from recordstore.ids import generate_push_id

logger = logging.getLogger(__name__)


class PreconditionFailed(Exception):
    """A conditional write or delete lost against a concurrent writer."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Precondition failed for '{path}'")


class _Abort:
    def __repr__(self) -> str:
        return "ABORT"


ABORT: Any = _Abort()
"""Returned from a transaction update function to abort without writing."""


@dataclass(frozen=True)
class TransactionResult:
    committed: bool
    value: Any
    previous: Any


def normalize_path(path: str) -> str:
    """Strip surrounding slashes and reject empty or relative segments."""
    if not isinstance(path, str):
        raise InvalidParametersError(f"Invalid path {path!r}: must be a string")
    stripped = path.strip("/")
    if not stripped:
        raise InvalidParametersError("Invalid path: must contain at least one segment")
    for segment in stripped.split("/"):
        if not segment or segment in (".", ".."):
            raise InvalidParametersError(f"Invalid path {path!r}: bad segment {segment!r}")
    return stripped


def merge_children(current: Any, mapping: dict[str, Any]) -> Any:
    """Shallow merge; a ``None`` child removes that key."""
    merged = dict(current) if isinstance(current, dict) else {}
    for key, value in mapping.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


@runtime_checkable
class TreeClient(Protocol):
    max_retries: int

    def get(self, path: str) -> tuple[Any, str | None]: ...

    def set(self, path: str, value: Any) -> None: ...

    def update(self, path: str, mapping: dict[str, Any]) -> None: ...

    def put_if(
        self, path: str, value: Any, *, version: str | None = None, absent: bool = False
    ) -> str: ...

    def delete(self, path: str, *, version: str | None = None) -> None: ...

    def list_children(self, path: str) -> dict[str, Any]: ...

    def transaction(
        self, path: str, update_fn: Callable[[Any], Any]
    ) -> TransactionResult: ...

    def push_key(self) -> str: ...

    def close(self) -> None: ...


def run_transaction(
    client: TreeClient,
    path: str,
    update_fn: Callable[[Any], Any],
    max_retries: int,
) -> TransactionResult:
    """Optimistic read-modify-write on one node.

    ``update_fn`` receives a private copy of the current value and returns
    the new value, ``None`` to delete the node, or ``ABORT``. It may be
    called several times when the write loses a race; exceptions raised by
    it abort the transaction and propagate.
    """
    for attempt in range(1, max_retries + 1):
        current, version = client.get(path)
        new_value = update_fn(copy.deepcopy(current))
        if new_value is ABORT:
            logger.debug("Transaction on '%s' aborted by update function", path)
            return TransactionResult(False, current, current)
        try:
            if new_value is None:
                if version is not None:
                    client.delete(path, version=version)
            elif version is None:
                client.put_if(path, new_value, absent=True)
            else:
                client.put_if(path, new_value, version=version)
        except PreconditionFailed:
            logger.warning(
                "Transaction on '%s' lost a concurrent write (attempt %d/%d); retrying",
                path,
                attempt,
                max_retries,
            )
            continue
        return TransactionResult(True, new_value, current)
    raise TransactionConflictError(path, max_retries)


class MemoryTreeClient:
    """In-process tree client with integer versions."""

    def __init__(self, *, max_retries: int = 25) -> None:
        self.max_retries = max_retries
        self._nodes: dict[str, tuple[Any, int]] = {}
        self._counter = 0
        self._lock = threading.RLock()

    def _next_version(self) -> int:
        self._counter += 1
        return self._counter

    def get(self, path: str) -> tuple[Any, str | None]:
        key = normalize_path(path)
        with self._lock:
            node = self._nodes.get(key)
            if node is None:
                return None, None
            return copy.deepcopy(node[0]), str(node[1])

    def set(self, path: str, value: Any) -> None:
        key = normalize_path(path)
        with self._lock:
            if value is None:
                self._nodes.pop(key, None)
            else:
                self._nodes[key] = (copy.deepcopy(value), self._next_version())

    def update(self, path: str, mapping: dict[str, Any]) -> None:
        key = normalize_path(path)
        with self._lock:
            current = self._nodes.get(key)
            self.set(key, merge_children(current[0] if current else None, mapping))

    def put_if(
        self, path: str, value: Any, *, version: str | None = None, absent: bool = False
    ) -> str:
        key = normalize_path(path)
        with self._lock:
            node = self._nodes.get(key)
            if absent and node is not None:
                raise PreconditionFailed(key)
            if version is not None and (node is None or str(node[1]) != version):
                raise PreconditionFailed(key)
            new_version = self._next_version()
            self._nodes[key] = (copy.deepcopy(value), new_version)
            return str(new_version)

    def delete(self, path: str, *, version: str | None = None) -> None:
        key = normalize_path(path)
        with self._lock:
            node = self._nodes.get(key)
            if version is not None and (node is None or str(node[1]) != version):
                raise PreconditionFailed(key)
            self._nodes.pop(key, None)

    def list_children(self, path: str) -> dict[str, Any]:
        prefix = normalize_path(path) + "/"
        with self._lock:
            children = {
                key[len(prefix) :]: copy.deepcopy(value)
                for key, (value, _version) in self._nodes.items()
                if key.startswith(prefix) and "/" not in key[len(prefix) :]
            }
        return dict(sorted(children.items()))

    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> TransactionResult:
        return run_transaction(self, normalize_path(path), update_fn, self.max_retries)

    def push_key(self) -> str:
        return generate_push_id()

    def close(self) -> None:
        return None

    def storage_info(self) -> dict[str, Any]:
        with self._lock:
            return {"backend": "memory", "nodes": len(self._nodes)}
