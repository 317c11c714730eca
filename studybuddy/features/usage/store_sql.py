"""
studybuddy/features/usage/store_sql.py

SQL-backed usage counters (Supabase/Postgres or the local SQLite mirror).

- One row per (user_id, period_key, quota_name), unique constraint enforced
- True add via UPDATE ... SET used = used + :amount (row lock serializes)
- Compare-and-swap via WHERE used + reserved = :expected
- Reservations held in the reserved column until settled
- First write inserts; losing an insert race retries as an update
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import case, select, insert, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from studybuddy.core.database import get_db_session, usage_counters
from studybuddy.core.errors import ConcurrentUpdateConflict, StoreUnavailableError
from studybuddy.features.usage.store import CounterKey, UsageStore


logger = logging.getLogger("studybuddy")

# Insert races only need one retry: afterwards the row exists
INSERT_RACE_ATTEMPTS = 2


def _key_filter(stmt, key: CounterKey):
    return (
        stmt.where(usage_counters.c.user_id == key.user_id)
        .where(usage_counters.c.period_key == key.period_key)
        .where(usage_counters.c.quota_name == key.quota_name)
    )


class SqlUsageStore(UsageStore):
    """
    Usage store on the usage_counters table.

    Maintains identical interface to InMemoryUsageStore.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        return get_db_session(self._session_factory)

    def read_counter(self, key: CounterKey) -> int:
        try:
            with self._session() as session:
                row = session.execute(_key_filter(select(usage_counters.c.used), key)).first()
        except SQLAlchemyError as e:
            logger.error("[usage] read failed", extra={"user_id": key.user_id, "quota_name": key.quota_name, "error": str(e)})
            raise StoreUnavailableError() from e
        return int(row.used) if row else 0

    def read_period(self, user_id: str, period_key: str) -> Dict[str, int]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(usage_counters.c.quota_name, usage_counters.c.used)
                    .where(usage_counters.c.user_id == user_id)
                    .where(usage_counters.c.period_key == period_key)
                ).all()
        except SQLAlchemyError as e:
            logger.error("[usage] read failed", extra={"user_id": user_id, "error": str(e)})
            raise StoreUnavailableError() from e
        return {row.quota_name: int(row.used) for row in rows}

    def read_held(self, key: CounterKey) -> int:
        try:
            with self._session() as session:
                row = session.execute(
                    _key_filter(select(usage_counters.c.used, usage_counters.c.reserved), key)
                ).first()
        except SQLAlchemyError as e:
            logger.error("[usage] read failed", extra={"user_id": key.user_id, "quota_name": key.quota_name, "error": str(e)})
            raise StoreUnavailableError() from e
        return int(row.used) + int(row.reserved) if row else 0

    def atomic_increment(self, key: CounterKey, amount: int, expected: Optional[int] = None) -> int:
        return self._write(key, expected, lambda: self._increment_once(key, amount, expected))

    def reserve(self, key: CounterKey, amount: int, expected: int) -> None:
        self._write(key, expected, lambda: self._reserve_once(key, amount, expected))

    def _write(self, key: CounterKey, expected: Optional[int], attempt_once):
        for attempt in range(INSERT_RACE_ATTEMPTS):
            try:
                return attempt_once()
            except IntegrityError as e:
                # Another writer created the row between our UPDATE and INSERT
                if expected is not None:
                    raise ConcurrentUpdateConflict(
                        "Usage changed since it was read",
                        details={"quota_name": key.quota_name, "expected": expected},
                    ) from e
                logger.debug("[usage] insert race, retrying as update", extra={"user_id": key.user_id, "quota_name": key.quota_name})
            except SQLAlchemyError as e:
                logger.error(
                    "[usage] write failed",
                    extra={"user_id": key.user_id, "quota_name": key.quota_name, "error": str(e)},
                )
                raise StoreUnavailableError() from e

        raise StoreUnavailableError()

    def _increment_once(self, key: CounterKey, amount: int, expected: Optional[int]) -> int:
        now = datetime.now(timezone.utc)
        with self._session() as session:
            stmt = _key_filter(update(usage_counters), key).values(
                used=usage_counters.c.used + amount,
                updated_at=now,
            )
            if expected is not None:
                stmt = stmt.where(usage_counters.c.used + usage_counters.c.reserved == expected)
            result = session.execute(stmt)

            if result.rowcount == 0:
                if expected:
                    # Row exists with another value, or was never written while
                    # the caller saw usage: either way the read is stale
                    raise ConcurrentUpdateConflict(
                        "Usage changed since it was read",
                        details={"quota_name": key.quota_name, "expected": expected},
                    )
                session.execute(
                    insert(usage_counters).values(
                        user_id=key.user_id,
                        period_key=key.period_key,
                        quota_name=key.quota_name,
                        used=amount,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return amount

            row = session.execute(_key_filter(select(usage_counters.c.used), key)).first()
            return int(row.used)

    def _reserve_once(self, key: CounterKey, amount: int, expected: int) -> None:
        now = datetime.now(timezone.utc)
        with self._session() as session:
            result = session.execute(
                _key_filter(update(usage_counters), key)
                .where(usage_counters.c.used + usage_counters.c.reserved == expected)
                .values(reserved=usage_counters.c.reserved + amount, updated_at=now)
            )
            if result.rowcount:
                return
            if expected:
                raise ConcurrentUpdateConflict(
                    "Usage changed since it was read",
                    details={"quota_name": key.quota_name, "expected": expected},
                )
            session.execute(
                insert(usage_counters).values(
                    user_id=key.user_id,
                    period_key=key.period_key,
                    quota_name=key.quota_name,
                    used=0,
                    reserved=amount,
                    created_at=now,
                    updated_at=now,
                )
            )

    def settle(self, key: CounterKey, amount: int, commit: bool) -> None:
        now = datetime.now(timezone.utc)
        values = {
            "reserved": case(
                (usage_counters.c.reserved > amount, usage_counters.c.reserved - amount),
                else_=0,
            ),
            "updated_at": now,
        }
        if commit:
            values["used"] = usage_counters.c.used + amount
        try:
            with self._session() as session:
                result = session.execute(_key_filter(update(usage_counters), key).values(**values))
        except SQLAlchemyError as e:
            logger.error(
                "[usage] settle failed",
                extra={"user_id": key.user_id, "quota_name": key.quota_name, "commit": commit, "error": str(e)},
            )
            raise StoreUnavailableError() from e

        if result.rowcount == 0 and commit:
            # Period was reset while the action ran; record the charge anew
            self.atomic_increment(key, amount)

    def reset_period(self, user_id: str, period_key: str) -> int:
        try:
            with self._session() as session:
                result = session.execute(
                    delete(usage_counters)
                    .where(usage_counters.c.user_id == user_id)
                    .where(usage_counters.c.period_key == period_key)
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StoreUnavailableError() from e

    def clear(self) -> None:
        """
        Clear all counters.
        FOR TESTING ONLY.
        """
        with self._session() as session:
            session.execute(usage_counters.delete())
