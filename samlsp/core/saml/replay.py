"""Anti-replay store for accepted message IDs.

The engine only needs insert-if-absent with an expiry. Hosts running
several processes should supply a shared implementation of ReplayCache
(for example one backed by their session store).
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Protocol

from samlsp.core.saml.utils import utc_now


class ReplayCache(Protocol):
    """Store of message IDs that have already been accepted."""

    def add_if_absent(self, message_id: str, expires_at: datetime) -> bool:
        """Record ``message_id`` until ``expires_at``.

        Returns:
            True if the ID was new, False if it was already recorded and
            has not expired.
        """
        ...


class InMemoryReplayCache:
    """Thread-safe, process-local ReplayCache."""

    def __init__(self) -> None:
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def add_if_absent(self, message_id: str, expires_at: datetime) -> bool:
        now = utc_now()
        with self._lock:
            self._evict(now)
            if message_id in self._entries:
                return False
            self._entries[message_id] = expires_at
            return True

    def _evict(self, now: datetime) -> None:
        expired = [key for key, expiry in self._entries.items() if expiry <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            expiry = self._entries.get(message_id)  # type: ignore[arg-type]
            return expiry is not None and expiry > utc_now()
