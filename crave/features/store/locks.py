"""Per-user serialization boundary.

Every write for a user runs while holding that user's lock. Different users
hold different locks and never contend. Entries are reference-counted so the
registry does not grow with the number of users ever seen.

Locks are not reentrant: a unit of work must not open a second transaction
for the same user.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from crave.core.errors import BusyError
from crave.core.metrics import record_safely, user_locks_held

logger = logging.getLogger("crave.store.locks")


class _LockEntry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class UserLockRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    def _checkout(self, user_id: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(user_id)
            if entry is None:
                entry = _LockEntry()
                self._entries[user_id] = entry
            entry.refs += 1
            return entry

    def _checkin(self, user_id: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(user_id) is entry:
                del self._entries[user_id]

    @contextmanager
    def hold(self, user_id: str, timeout: float) -> Iterator[None]:
        """Hold ``user_id``'s lock for the block, or raise BusyError after ``timeout``."""
        entry = self._checkout(user_id)
        try:
            if not entry.lock.acquire(timeout=max(0.0, timeout)):
                logger.warning("store.lock_timeout", extra={"user_id": user_id})
                raise BusyError(
                    "Another operation for this account is in progress; retry shortly",
                    details={"user_id": user_id},
                )
            record_safely(user_locks_held, amount=1)
            try:
                yield
            finally:
                entry.lock.release()
                record_safely(user_locks_held, amount=-1)
        finally:
            self._checkin(user_id, entry)

    def active_count(self) -> int:
        with self._guard:
            return len(self._entries)
