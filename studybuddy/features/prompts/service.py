"""
studybuddy/features/prompts/service.py

Side-effecting half of upgrade prompts: per-user throttle state.

The policy decides; callers record actions and mark a prompt shown only
when it was actually displayed.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from studybuddy.core.database import as_utc, get_db_session, upgrade_prompt_state
from studybuddy.core.errors import StoreUnavailableError, ValidationError
from studybuddy.features.prompts.policy import PromptSettings, should_prompt
from studybuddy.features.tiers.catalog import TierCatalog
from studybuddy.models.tier import TierDefinition
from studybuddy.models.upgrade_prompt import PromptState, UpgradePromptDecision
from studybuddy.models.usage import UsagePeriod


logger = logging.getLogger("studybuddy")


def get_prompt_state(user_id: str) -> PromptState:
    """Throttle state; users never prompted get an empty state."""
    try:
        with get_db_session() as session:
            row = session.execute(
                select(upgrade_prompt_state).where(upgrade_prompt_state.c.user_id == user_id)
            ).first()
    except SQLAlchemyError as e:
        raise StoreUnavailableError() from e

    if not row:
        return PromptState(user_id=user_id)
    return PromptState(
        user_id=user_id,
        last_shown_at=as_utc(row.last_shown_at),
        actions_since_prompt=int(row.actions_since_prompt),
    )


def _upsert(user_id: str, update_values: dict, insert_values: dict) -> None:
    for _ in range(2):
        try:
            with get_db_session() as session:
                result = session.execute(
                    update(upgrade_prompt_state)
                    .where(upgrade_prompt_state.c.user_id == user_id)
                    .values(**update_values)
                )
                if result.rowcount == 0:
                    session.execute(insert(upgrade_prompt_state).values(user_id=user_id, **insert_values))
            return
        except IntegrityError:
            # Row created concurrently; the update path will match now
            continue
        except SQLAlchemyError as e:
            logger.error("[prompts] state write failed", extra={"user_id": user_id, "error": str(e)})
            raise StoreUnavailableError() from e
    raise StoreUnavailableError()


def record_action(user_id: str, count: int = 1) -> PromptState:
    """Atomically add to the actions-since-last-prompt counter."""
    if count < 1:
        raise ValidationError("count must be >= 1", details={"count": count})
    now = datetime.now(timezone.utc)
    _upsert(
        user_id,
        {"actions_since_prompt": upgrade_prompt_state.c.actions_since_prompt + count, "updated_at": now},
        {"actions_since_prompt": count, "updated_at": now},
    )
    return get_prompt_state(user_id)


def mark_prompt_shown(user_id: str, now: Optional[datetime] = None) -> PromptState:
    """Record that a prompt was displayed: sets last_shown_at, resets the action count."""
    now = as_utc(now) or datetime.now(timezone.utc)
    values = {"last_shown_at": now, "actions_since_prompt": 0, "updated_at": now}
    _upsert(user_id, values, values)
    logger.info("[prompts] shown", extra={"user_id": user_id})
    return PromptState(user_id=user_id, last_shown_at=now, actions_since_prompt=0)


def decide_for_user(
    user_id: str,
    tier: TierDefinition,
    usage_snapshot: UsagePeriod,
    *,
    catalog: TierCatalog,
    action_count: Optional[int] = None,
    blocked_feature: Optional[str] = None,
    prompt_settings: Optional[PromptSettings] = None,
    now: Optional[datetime] = None,
) -> UpgradePromptDecision:
    """Read the user's throttle state and run the policy. Never marks shown."""
    state = get_prompt_state(user_id)
    return should_prompt(
        user_id,
        tier,
        usage_snapshot,
        state.actions_since_prompt if action_count is None else action_count,
        state.last_shown_at,
        catalog=catalog,
        settings=prompt_settings,
        now=now,
        blocked_feature=blocked_feature,
    )
