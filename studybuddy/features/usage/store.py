"""
studybuddy/features/usage/store.py

Usage counter stores.

The ledger needs a few primitives from persistence: read a counter,
atomically add to it, and hold units for in-flight guarded actions.
Conditional writes compare against the held total (used + reserved) and
give the quota enforcer its compare-and-swap.

In-memory implementation for tests and the desktop harness; the SQL store
lives in store_sql.py.
"""

import threading
from typing import Dict, NamedTuple, Optional

from studybuddy.core.errors import ConcurrentUpdateConflict


class CounterKey(NamedTuple):
    user_id: str
    period_key: str
    quota_name: str


class UsageStore:
    """Interface for usage counter persistence."""

    def read_counter(self, key: CounterKey) -> int:
        """Current value, 0 if the counter was never written."""
        raise NotImplementedError

    def read_period(self, user_id: str, period_key: str) -> Dict[str, int]:
        """All counters of one user/period as quota name -> used."""
        raise NotImplementedError

    def read_held(self, key: CounterKey) -> int:
        """Committed plus reserved units; what limits are evaluated against."""
        raise NotImplementedError

    def atomic_increment(self, key: CounterKey, amount: int, expected: Optional[int] = None) -> int:
        """
        Add amount to used and return the new used total.

        When expected is given the add only happens if the held total
        equals it; otherwise ConcurrentUpdateConflict is raised.
        """
        raise NotImplementedError

    def reserve(self, key: CounterKey, amount: int, expected: int) -> None:
        """Hold amount units if the held total equals expected, else ConcurrentUpdateConflict."""
        raise NotImplementedError

    def settle(self, key: CounterKey, amount: int, commit: bool) -> None:
        """Drop a reservation; with commit the units move into used."""
        raise NotImplementedError

    def reset_period(self, user_id: str, period_key: str) -> int:
        """Clear a period's counters. Returns number of counters removed."""
        raise NotImplementedError


class InMemoryUsageStore(UsageStore):
    """Lock-serialized dict store. All operations on one key are totally ordered."""

    def __init__(self):
        self._counters: Dict[CounterKey, int] = {}
        self._reserved: Dict[CounterKey, int] = {}
        self._lock = threading.Lock()

    def read_counter(self, key: CounterKey) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def read_held(self, key: CounterKey) -> int:
        with self._lock:
            return self._held(key)

    def _held(self, key: CounterKey) -> int:
        return self._counters.get(key, 0) + self._reserved.get(key, 0)

    def _check_expected(self, key: CounterKey, expected: Optional[int]) -> None:
        held = self._held(key)
        if expected is not None and held != expected:
            raise ConcurrentUpdateConflict(
                "Usage changed since it was read",
                details={"quota_name": key.quota_name, "expected": expected, "actual": held},
            )

    def read_period(self, user_id: str, period_key: str) -> Dict[str, int]:
        with self._lock:
            return {
                key.quota_name: used
                for key, used in self._counters.items()
                if key.user_id == user_id and key.period_key == period_key
            }

    def atomic_increment(self, key: CounterKey, amount: int, expected: Optional[int] = None) -> int:
        with self._lock:
            self._check_expected(key, expected)
            new_total = self._counters.get(key, 0) + amount
            self._counters[key] = new_total
            return new_total

    def reserve(self, key: CounterKey, amount: int, expected: int) -> None:
        with self._lock:
            self._check_expected(key, expected)
            self._reserved[key] = self._reserved.get(key, 0) + amount

    def settle(self, key: CounterKey, amount: int, commit: bool) -> None:
        with self._lock:
            self._reserved[key] = max(0, self._reserved.get(key, 0) - amount)
            if commit:
                self._counters[key] = self._counters.get(key, 0) + amount

    def reset_period(self, user_id: str, period_key: str) -> int:
        with self._lock:
            keys = [k for k in self._counters if k.user_id == user_id and k.period_key == period_key]
            for key in keys:
                del self._counters[key]
            return len(keys)

    def clear(self) -> None:
        """Clear all counters (for testing)."""
        with self._lock:
            self._counters.clear()
            self._reserved.clear()


def get_usage_store_impl() -> UsageStore:
    """
    Get the appropriate usage store implementation.

    SQL whenever a database is configured, which is always the case since
    the local SQLite mirror is the default. There is no silent fallback to
    memory: a counter that lives only in one process would let users
    exceed their limits.
    """
    from studybuddy.features.usage.store_sql import SqlUsageStore

    return SqlUsageStore()


# Global store instance (lazy initialization)
_store_instance: Optional[UsageStore] = None
_store_lock = threading.Lock()


def get_usage_store() -> UsageStore:
    """
    Get the singleton usage store instance.

    This is the primary API that all consumers should use.
    """
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = get_usage_store_impl()
    return _store_instance


def set_usage_store(store: Optional[UsageStore]) -> None:
    global _store_instance
    _store_instance = store


def reset_usage_store() -> None:
    """
    Reset the store instance.

    FOR TESTING ONLY - forces re-initialization on next get_usage_store() call.
    """
    set_usage_store(None)
