"""TicketLockRegistry - per-key mutual exclusion shared by both scanners."""

from __future__ import annotations

import threading


class TicketLockRegistry:
    """Set of ticket keys currently being worked on.

    A key is held from dispatch until its task finishes, so a ticket picked
    up by one scanner is skipped by the other until it is released.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        """Claim ``key``. Returns False if it is already held."""
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def is_held(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def active(self) -> list[str]:
        """Held keys, sorted."""
        with self._lock:
            return sorted(self._keys)
