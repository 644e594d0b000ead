"""Tests for the distributed lock."""

from __future__ import annotations

import threading
import time

import pytest

from recordstore.config import RecordStoreConfig
from recordstore.errors import (
    InvalidMethodError,
    LockAcquisitionFailedError,
    LockReleaseFailedError,
    StorageBackendError,
)
from recordstore.lock import DistributedLock, LockState
from recordstore.tree import MemoryTreeClient


class _UndeletableTree(MemoryTreeClient):
    def delete(self, path, *, version=None):
        raise StorageBackendError("delete", "network down")


def test_acquire_and_release(memory_tree):
    lock = DistributedLock(memory_tree, owner_id="worker-1")
    handle = lock.acquire("jobs/nightly", duration_ms=1000)
    assert lock.state is LockState.HELD
    assert handle.resource_key == "jobs/nightly"
    assert handle.acquired_at_timestamp > 0
    slot, _version = memory_tree.get("global/locks/jobs/nightly")
    assert slot["owner_id"] == "worker-1"
    assert slot["lease_ttl_ms"] == 60000

    lock.release()
    assert lock.state is LockState.IDLE
    assert memory_tree.get("global/locks/jobs/nightly") == (None, None)


def test_contended_acquire_times_out(memory_tree):
    holder = DistributedLock(memory_tree)
    waiter = DistributedLock(memory_tree)
    holder.acquire("r")
    started = time.monotonic()
    with pytest.raises(LockAcquisitionFailedError, match="'r' after 150ms"):
        waiter.acquire("r", duration_ms=150, check_interval_ms=20)
    assert time.monotonic() - started >= 0.15
    assert waiter.state is LockState.FAILED
    holder.release()


def test_acquire_after_release(memory_tree):
    first = DistributedLock(memory_tree)
    second = DistributedLock(memory_tree)
    first.acquire("r")
    first.release()
    second.acquire("r", duration_ms=100)
    assert second.state is LockState.HELD


def test_expired_lease_is_taken_over(memory_tree):
    crashed = DistributedLock(memory_tree, owner_id="crashed", lease_ms=30)
    crashed.acquire("r")
    time.sleep(0.05)

    survivor = DistributedLock(memory_tree, owner_id="survivor")
    survivor.acquire("r", duration_ms=500, check_interval_ms=10)
    assert memory_tree.get("global/locks/r")[0]["owner_id"] == "survivor"

    # The crashed owner's late release must not free the survivor's slot.
    crashed.release()
    assert memory_tree.get("global/locks/r")[0]["owner_id"] == "survivor"
    survivor.release()


def test_bare_timestamp_slot_is_taken_over(memory_tree):
    memory_tree.set("global/locks/u1", 1700000000000)
    lock = DistributedLock(memory_tree, owner_id="worker-1")
    lock.acquire("u1", duration_ms=200, check_interval_ms=20)
    assert lock.state is LockState.HELD
    assert memory_tree.get("global/locks/u1")[0]["owner_id"] == "worker-1"
    lock.release()
    assert memory_tree.get("global/locks/u1") == (None, None)


def test_release_leaves_foreign_slot_value(memory_tree):
    lock = DistributedLock(memory_tree)
    lock.acquire("u1")
    memory_tree.set("global/locks/u1", 1700000000000)
    lock.release()
    assert lock.state is LockState.IDLE
    assert memory_tree.get("global/locks/u1")[0] == 1700000000000


def test_not_reentrant(memory_tree):
    lock = DistributedLock(memory_tree)
    lock.acquire("a")
    with pytest.raises(InvalidMethodError):
        lock.acquire("b")
    lock.release()


def test_release_without_lock(memory_tree):
    with pytest.raises(LockReleaseFailedError):
        DistributedLock(memory_tree).release()


def test_perform_operation_returns_result(memory_tree):
    lock = DistributedLock(memory_tree)
    assert lock.perform_operation("r", lambda: 42) == 42
    assert lock.state is LockState.IDLE


def test_perform_operation_releases_on_error(memory_tree):
    lock = DistributedLock(memory_tree)

    def fail():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        lock.perform_operation("r", fail)
    assert lock.state is LockState.IDLE
    assert memory_tree.get("global/locks/r") == (None, None)


def test_release_failure_does_not_mask_operation_error():
    lock = DistributedLock(_UndeletableTree())

    def fail():
        raise ValueError("operation failed")

    with pytest.raises(ValueError, match="operation failed"):
        lock.perform_operation("r", fail)
    assert lock.state is LockState.IDLE


def test_release_failure_surfaces_after_success():
    lock = DistributedLock(_UndeletableTree())
    with pytest.raises(LockReleaseFailedError, match="network down"):
        lock.perform_operation("r", lambda: 1)
    assert lock.state is LockState.IDLE
    # The failed release still leaves the instance usable.
    with pytest.raises(LockAcquisitionFailedError):
        lock.acquire("r", duration_ms=50, check_interval_ms=10)


def test_custom_root(memory_tree):
    lock = DistributedLock(memory_tree, root="/apps/demo/locks/")
    with lock.held("r"):
        assert memory_tree.get("apps/demo/locks/r")[0] is not None


def test_mutual_exclusion(tree_client):
    spans = []
    guard = threading.Lock()

    def critical():
        start = time.monotonic()
        time.sleep(0.2)
        end = time.monotonic()
        with guard:
            spans.append((start, end))

    def worker():
        DistributedLock(tree_client).perform_operation(
            "shared", critical, duration_ms=5000, check_interval_ms=10
        )

    started = time.monotonic()
    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert time.monotonic() - started >= 0.4
    assert len(spans) == 2
    first, second = sorted(spans)
    assert first[1] <= second[0]


def test_from_config(memory_tree):
    cfg = RecordStoreConfig(lock_root="apps/demo/locks", lock_duration_ms=120, lock_lease_ms=5000)
    holder = DistributedLock.from_config(memory_tree, cfg, owner_id="holder")
    holder.acquire("r")
    assert memory_tree.get("apps/demo/locks/r")[0]["lease_ttl_ms"] == 5000

    waiter = DistributedLock.from_config(memory_tree, cfg)
    started = time.monotonic()
    with pytest.raises(LockAcquisitionFailedError, match="120ms"):
        waiter.acquire("r", check_interval_ms=20)
    assert time.monotonic() - started < 5
    holder.release()
