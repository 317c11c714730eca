"""
studybuddy/features/usage/service.py

Usage ledger (per-user, per-month counters).

Handles:
- Period keys (UTC calendar month, "YYYY-MM")
- Counter reads (absent = 0) and atomic increments
- Reservations held by guarded actions until they settle
- Admin/test period resets

The ledger does not enforce limits; QuotaEnforcer gates every increment.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from studybuddy.core.errors import ValidationError
from studybuddy.features.usage.store import CounterKey, UsageStore, get_usage_store
from studybuddy.models.usage import UsagePeriod


logger = logging.getLogger("studybuddy")


def period_key_for(now: Optional[datetime] = None) -> str:
    """Calendar month key in UTC, e.g. 2024-03."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m")


class UsageLedger:
    def __init__(self, store: Optional[UsageStore] = None):
        self._store = store

    @property
    def store(self) -> UsageStore:
        return self._store or get_usage_store()

    def get_usage(self, user_id: str, period_key: str, quota_name: str) -> int:
        return self.store.read_counter(CounterKey(user_id, period_key, quota_name))

    def get_held(self, user_id: str, period_key: str, quota_name: str) -> int:
        """Used plus units reserved by in-flight guarded actions."""
        return self.store.read_held(CounterKey(user_id, period_key, quota_name))

    def get_period(self, user_id: str, period_key: str) -> UsagePeriod:
        counters = self.store.read_period(user_id, period_key)
        return UsagePeriod.from_counters(user_id, period_key, counters)

    def increment(
        self,
        user_id: str,
        period_key: str,
        quota_name: str,
        amount: int,
        expected: Optional[int] = None,
    ) -> int:
        """
        Add amount to a counter and return the new total.

        Counters never decrease within a period, so negative amounts are
        rejected. With expected set, raises ConcurrentUpdateConflict if the
        stored value moved since it was read.
        """
        if amount < 0:
            raise ValidationError("Usage increments must be non-negative", details={"amount": amount})
        new_total = self.store.atomic_increment(CounterKey(user_id, period_key, quota_name), amount, expected)
        logger.debug(
            "[usage] incremented",
            extra={"user_id": user_id, "quota_name": quota_name, "period_key": period_key, "used": new_total},
        )
        return new_total

    def reserve(self, user_id: str, period_key: str, quota_name: str, amount: int, expected: int) -> None:
        """Hold units for a guarded action; ConcurrentUpdateConflict if the held total moved."""
        if amount < 0:
            raise ValidationError("Usage reservations must be non-negative", details={"amount": amount})
        self.store.reserve(CounterKey(user_id, period_key, quota_name), amount, expected)

    def settle_reservation(self, user_id: str, period_key: str, quota_name: str, amount: int, commit: bool) -> None:
        self.store.settle(CounterKey(user_id, period_key, quota_name), amount, commit)
        logger.debug(
            "[usage] reservation settled",
            extra={"user_id": user_id, "quota_name": quota_name, "period_key": period_key, "committed": commit},
        )

    def reset_period(self, user_id: str, period_key: str) -> int:
        """Admin correction / tests only; not part of normal flow."""
        removed = self.store.reset_period(user_id, period_key)
        logger.warning(
            "[usage] period reset",
            extra={"user_id": user_id, "period_key": period_key, "counters_removed": removed},
        )
        return removed
