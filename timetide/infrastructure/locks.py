"""Infrastructure layer: mutual exclusion for booking commits.

Commits are serialized per ``(host_id, UTC date)``. A commit locks every date
its slot touches once padded by the largest permitted buffer, so any two
commits that could conflict share at least one key. Keys are acquired in
sorted order to avoid lock-order deadlocks. Event types with a daily booking
cap also lock the host-local date the cap is counted on.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Dict, Iterator, List

from timetide.domain.intervals import Interval
from timetide.domain.policies import MAX_BUFFER_MINUTES

logger = logging.getLogger(__name__)

LOCK_PADDING = timedelta(minutes=MAX_BUFFER_MINUTES)


def slot_lock_keys(host_id: str, slot: Interval) -> List[str]:
    padded = slot.expand(LOCK_PADDING, LOCK_PADDING)
    keys = []
    day = padded.start.date()
    last_day = (padded.end - timedelta(microseconds=1)).date()
    while day <= last_day:
        keys.append(f"booking:{host_id}:{day.isoformat()}")
        day += timedelta(days=1)
    return keys


def daily_cap_lock_key(host_id: str, local_day: date) -> str:
    return f"booking:{host_id}:local:{local_day.isoformat()}"


class KeyedLockRegistry:
    """Process-local locks created on demand, one per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys) -> Iterator[None]:
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


slot_locks = KeyedLockRegistry()
