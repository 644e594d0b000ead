"""Distributed mutual-exclusion lock over a tree client.

A lock slot is one node at ``{root}/{resource_key}`` holding the owner token
and lease expiry. Acquisition is a create-only write; a slot whose lease has
expired (its holder crashed) is taken over by compare-and-swap.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterator, TypeVar

from recordstore.config import RecordStoreConfig
from recordstore.errors import (
    InvalidMethodError,
    LockAcquisitionFailedError,
    LockReleaseFailedError,
    RecordStoreError,
)
from recordstore.tree import PreconditionFailed, TreeClient, normalize_path

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DURATION_MS = 60000
DEFAULT_CHECK_INTERVAL_MS = 500


class LockState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    HELD = "held"
    FAILED = "failed"


@dataclass(frozen=True)
class LockHandle:
    resource_key: str
    acquired_at_timestamp: int


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


class DistributedLock:
    """Lock over one resource key at a time; not re-entrant."""

    def __init__(
        self,
        client: TreeClient,
        *,
        root: str = "global/locks",
        owner_id: str | None = None,
        lease_ms: int = 60000,
        duration_ms: int = DEFAULT_DURATION_MS,
        check_interval_ms: int = DEFAULT_CHECK_INTERVAL_MS,
    ) -> None:
        self.client = client
        self.root = normalize_path(root)
        self.owner_id = owner_id or uuid.uuid4().hex
        self.lease_ms = lease_ms
        self.duration_ms = duration_ms
        self.check_interval_ms = check_interval_ms
        self.state = LockState.IDLE
        self._handle: LockHandle | None = None

    @classmethod
    def from_config(
        cls, client: TreeClient, config: RecordStoreConfig, *, owner_id: str | None = None
    ) -> DistributedLock:
        return cls(
            client,
            root=config.lock_root,
            owner_id=owner_id,
            lease_ms=config.lock_lease_ms,
            duration_ms=config.lock_duration_ms,
            check_interval_ms=config.lock_check_interval_ms,
        )

    def _slot(self, resource_key: str) -> str:
        return normalize_path(f"{self.root}/{resource_key}")

    def _payload(self, now: datetime) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "acquired_at": now.isoformat(),
            "expires_at": (now + timedelta(milliseconds=self.lease_ms)).isoformat(),
            "lease_ttl_ms": self.lease_ms,
        }

    def _held(self, resource_key: str, now: datetime) -> LockHandle:
        self.state = LockState.HELD
        self._handle = LockHandle(resource_key, int(now.timestamp() * 1000))
        logger.info("Lock '%s' acquired by %s", resource_key, self.owner_id)
        return self._handle

    def _try_takeover(self, slot: str, payload: dict[str, Any]) -> bool:
        current, version = self.client.get(slot)
        if current is None or version is None:
            return False
        previous_owner = "<unknown>"
        expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        # Slots written by other tools may hold a bare timestamp; treat them as expired.
        if isinstance(current, dict):
            previous_owner = current.get("owner_id", previous_owner)
            try:
                expires_at = _parse_iso(str(current["expires_at"]))
            except (KeyError, TypeError, ValueError):
                logger.warning("Lock slot '%s' has no readable expiry; treating as expired", slot)
        if datetime.now(timezone.utc) < expires_at:
            return False
        try:
            self.client.put_if(slot, payload, version=version)
        except PreconditionFailed:
            return False
        logger.warning("Took over expired lock '%s' from %s", slot, previous_owner)
        return True

    def acquire(
        self,
        resource_key: str,
        duration_ms: int | None = None,
        check_interval_ms: int | None = None,
    ) -> LockHandle:
        """Poll for the lock until ``duration_ms`` elapses."""
        duration_ms = self.duration_ms if duration_ms is None else duration_ms
        check_interval_ms = (
            self.check_interval_ms if check_interval_ms is None else check_interval_ms
        )
        if self.state is LockState.HELD:
            raise InvalidMethodError(
                f"Lock already holds '{self._handle.resource_key if self._handle else '?'}'; "
                "release it before acquiring again"
            )
        slot = self._slot(resource_key)
        self.state = LockState.ACQUIRING
        deadline = time.monotonic() + duration_ms / 1000.0

        try:
            while True:
                now = datetime.now(timezone.utc)
                payload = self._payload(now)
                try:
                    self.client.put_if(slot, payload, absent=True)
                    return self._held(resource_key, now)
                except PreconditionFailed:
                    if self._try_takeover(slot, payload):
                        return self._held(resource_key, now)

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise LockAcquisitionFailedError(resource_key, duration_ms)
                logger.debug("Lock '%s' busy; retrying in %dms", resource_key, check_interval_ms)
                time.sleep(
                    min(remaining, check_interval_ms / 1000.0) + random.uniform(0.0, 0.02)
                )
        except Exception:
            self.state = LockState.FAILED
            logger.info("Failed to acquire lock '%s'", resource_key)
            raise

    def release(self) -> None:
        """Delete the slot if this owner still holds it."""
        if self.state is not LockState.HELD or self._handle is None:
            raise LockReleaseFailedError("Failed to release lock. No lock is currently held")
        resource_key = self._handle.resource_key
        slot = self._slot(resource_key)
        try:
            current, version = self.client.get(slot)
            if isinstance(current, dict) and current.get("owner_id") == self.owner_id:
                self.client.delete(slot, version=version)
            else:
                logger.warning("Lock '%s' was no longer held by %s", resource_key, self.owner_id)
        except (PreconditionFailed, RecordStoreError) as e:
            raise LockReleaseFailedError(
                f"Failed to release lock for '{resource_key}': {e}"
            ) from e
        finally:
            self.state = LockState.IDLE
            self._handle = None
        logger.info("Lock '%s' released by %s", resource_key, self.owner_id)

    @contextmanager
    def held(
        self,
        resource_key: str,
        duration_ms: int | None = None,
        check_interval_ms: int | None = None,
    ) -> Iterator[LockHandle]:
        handle = self.acquire(resource_key, duration_ms, check_interval_ms)
        try:
            yield handle
        except BaseException:
            try:
                self.release()
            except LockReleaseFailedError:
                logger.exception("Lock '%s' could not be released after a failure", resource_key)
            raise
        self.release()

    def perform_operation(
        self,
        resource_key: str,
        fn: Callable[[], T],
        duration_ms: int | None = None,
        check_interval_ms: int | None = None,
    ) -> T:
        """Run ``fn`` while holding the lock; it is released on every exit path."""
        with self.held(resource_key, duration_ms, check_interval_ms):
            return fn()
