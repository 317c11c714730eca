"""
Upgrade prompt API.

- GET  /api/upgrade-prompt: decision for the caller (read-only)
- POST /api/upgrade-prompt/shown: caller displayed the prompt; starts throttle window
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from studybuddy.core.auth import get_current_user_id
from studybuddy.features.limits.service import QuotaEnforcer, get_quota_enforcer
from studybuddy.features.prompts.policy import should_prompt
from studybuddy.features.prompts.service import get_prompt_state, mark_prompt_shown
from studybuddy.features.tiers.catalog import TierCatalog
from studybuddy.features.tiers.service import current_catalog, resolve_effective_tier


router = APIRouter(prefix="/api/upgrade-prompt", tags=["upgrade"])


@router.get("")
def get_upgrade_prompt(
    action_count: Optional[int] = Query(None, alias="actionCount", ge=0),
    blocked_feature: Optional[str] = Query(None, alias="blockedFeature"),
    user_id: str = Depends(get_current_user_id),
    catalog: TierCatalog = Depends(current_catalog),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
):
    tier = resolve_effective_tier(user_id, catalog)
    period = enforcer.ledger.get_period(user_id, enforcer.current_period_key())
    state = get_prompt_state(user_id)
    decision = should_prompt(
        user_id,
        tier,
        period,
        state.actions_since_prompt if action_count is None else action_count,
        state.last_shown_at,
        catalog=catalog,
        blocked_feature=blocked_feature,
    )
    return {
        **decision.to_response(),
        "tier": tier.tier_id,
        "lastShownAt": state.last_shown_at.isoformat() if state.last_shown_at else None,
        "actionsSincePrompt": state.actions_since_prompt,
    }


@router.post("/shown")
def upgrade_prompt_shown(user_id: str = Depends(get_current_user_id)):
    state = mark_prompt_shown(user_id)
    return {"ok": True, "lastShownAt": state.last_shown_at.isoformat()}
