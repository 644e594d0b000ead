"""Record identifier generation and allocation policies."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from typing import Callable, Iterator

from recordstore.errors import InvalidMethodError, RecordCreateFailedError
from recordstore.options import CreateIdOption

logger = logging.getLogger(__name__)

_AUTO_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
_AUTO_ID_LENGTH = 20

# Ordered so that lexicographic order of generated keys follows creation time.
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def generate_auto_id() -> str:
    """Random 20-character document id."""
    return "".join(secrets.choice(_AUTO_ID_ALPHABET) for _ in range(_AUTO_ID_LENGTH))


class PushIdGenerator:
    """Chronologically sortable 20-character keys.

    The first 8 characters encode the millisecond timestamp; the last 12 are
    random, and are incremented instead of re-drawn when two keys are
    generated within the same millisecond so keys stay strictly increasing.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            if now_ms == self._last_ms:
                i = 11
                while i >= 0 and self._last_random[i] == 63:
                    self._last_random[i] = 0
                    i -= 1
                if i >= 0:
                    self._last_random[i] += 1
            else:
                self._last_random = [secrets.randbelow(64) for _ in range(12)]
            self._last_ms = now_ms
            random_part = list(self._last_random)

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now_ms % 64])
            now_ms //= 64
        return "".join(reversed(time_chars)) + "".join(PUSH_CHARS[n] for n in random_part)


generate_push_id = PushIdGenerator()


class IdAllocator:
    """Resolves the identifier of a new record under a CreateIdOption policy."""

    def __init__(self, policy: CreateIdOption, max_attempts: int = 100) -> None:
        self.policy = policy
        self.max_attempts = max_attempts

    def require_auto(self) -> None:
        if self.policy is not CreateIdOption.AUTO_GENERATED_ID:
            raise InvalidMethodError(
                f"Failed to create record. create() is not allowed with create_id_option "
                f"'{self.policy.value}'. Use create_with_id() for this option."
            )

    def require_manual(self) -> None:
        if self.policy is CreateIdOption.AUTO_GENERATED_ID:
            raise InvalidMethodError(
                f"Failed to create record. create_with_id() is not allowed with create_id_option "
                f"'{self.policy.value}'. Use create() for this option."
            )

    def candidates(self, requested_id: str) -> Iterator[str]:
        """Yield ``id``, then ``id-2`` .. ``id-N`` when conflicts are allowed."""
        self.require_manual()
        limit = 1 if self.policy is CreateIdOption.MANUAL_REJECT_ID_CONFLICTS else self.max_attempts
        for sequence_no in range(1, limit + 1):
            yield requested_id if sequence_no == 1 else f"{requested_id}-{sequence_no}"

    def allocate(self, requested_id: str, claim: Callable[[str], bool]) -> str:
        """Return the first candidate ``claim`` atomically takes.

        ``claim`` must be a single check-and-set against the backend that
        returns False when the candidate is already occupied.
        """
        for attempt, candidate in enumerate(self.candidates(requested_id), start=1):
            logger.debug("Attempt %d to claim record id '%s'", attempt, candidate)
            if claim(candidate):
                return candidate
        raise RecordCreateFailedError(self._exhausted_message(requested_id))

    def _exhausted_message(self, requested_id: str) -> str:
        if self.policy is CreateIdOption.MANUAL_REJECT_ID_CONFLICTS:
            return f"Failed to create record. A record with id '{requested_id}' already exists"
        return (
            f"Failed to create record. {self.max_attempts} records already exist "
            f"with ids starting with '{requested_id}'"
        )
