"""
Usage API routes.

- GET  /api/usage/me: tier, current period counters, per-quota summary
- POST /api/usage/check: evaluate without consuming
- POST /api/usage/consume: evaluate and commit (fail closed)

Error mapping on consume:
    403 quota_exceeded: denial, actionable message + fields in details
    400 unknown_quota: quota not defined by the caller's tier
    503 store_unavailable: store down or retries exhausted ("try again")
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from studybuddy.core.auth import get_current_user_id
from studybuddy.core.errors import PermissionError, QuotaExceededError, StoreUnavailableError, UnknownQuotaError
from studybuddy.features.flags.service import FeatureGate
from studybuddy.features.limits.service import QuotaEnforcer, get_quota_enforcer, usage_summary
from studybuddy.features.prompts.policy import PromptSettings
from studybuddy.features.prompts.service import decide_for_user, record_action
from studybuddy.features.tiers.catalog import TierCatalog
from studybuddy.features.tiers.service import current_catalog, resolve_effective_tier
from studybuddy.models.evaluation import EvaluationReason, EvaluationResult
from studybuddy.models.tier import TierDefinition
from studybuddy.models.usage import ActionRequest


logger = logging.getLogger("studybuddy")

router = APIRouter(prefix="/api/usage", tags=["usage"])


class UsageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    quota_name: str = Field(..., alias="quotaName", min_length=1)
    amount: int = Field(1, ge=1)


def _action_for(body: UsageRequest, user_id: str) -> ActionRequest:
    if body.user_id and body.user_id != user_id:
        raise PermissionError("Cannot act on behalf of another user")
    return ActionRequest(user_id=user_id, quota_name=body.quota_name, amount=body.amount)


def _upgrade_prompt(user_id: str, tier: TierDefinition, catalog: TierCatalog, enforcer: QuotaEnforcer) -> Optional[dict]:
    """Best-effort nudge annotation; omitted when it cannot be computed."""
    try:
        period = enforcer.ledger.get_period(user_id, enforcer.current_period_key())
        decision = decide_for_user(user_id, tier, period, catalog=catalog)
    except StoreUnavailableError:
        return None
    return decision.to_response() if decision.should_show else None


def _respond(result: EvaluationResult, prompt: Optional[dict]) -> dict:
    payload = {
        "allowed": result.allowed,
        "remaining": result.remaining,
        "limit": result.limit,
        "reason": result.reason.value,
    }
    if prompt:
        payload["upgradePrompt"] = prompt
    return payload


@router.get("/me")
def get_my_usage(
    user_id: str = Depends(get_current_user_id),
    catalog: TierCatalog = Depends(current_catalog),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
):
    tier = resolve_effective_tier(user_id, catalog)
    period = enforcer.ledger.get_period(user_id, enforcer.current_period_key())
    ratio = PromptSettings.from_settings().near_limit_ratio
    return {
        "userId": user_id,
        "tier": {"id": tier.tier_id, "name": tier.name},
        "periodKey": period.period_key,
        "usage": period.counters(),
        "summary": usage_summary(tier, period, ratio),
        "ads": FeatureGate(catalog).ads_enabled(tier),
    }


@router.post("/check")
def check_usage(
    body: UsageRequest,
    user_id: str = Depends(get_current_user_id),
    catalog: TierCatalog = Depends(current_catalog),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
):
    request = _action_for(body, user_id)
    tier = resolve_effective_tier(user_id, catalog)
    result = enforcer.check(request, tier)
    return _respond(result, _upgrade_prompt(user_id, tier, catalog, enforcer))


@router.post("/consume")
def consume_usage(
    body: UsageRequest,
    user_id: str = Depends(get_current_user_id),
    catalog: TierCatalog = Depends(current_catalog),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
):
    request = _action_for(body, user_id)
    tier = resolve_effective_tier(user_id, catalog)
    result = enforcer.consume(request, tier)

    if result.reason == EvaluationReason.UNKNOWN_QUOTA:
        raise UnknownQuotaError(result.message(), details=result.to_response())

    if not result.allowed:
        details = result.to_response()
        prompt = _upgrade_prompt(user_id, tier, catalog, enforcer)
        if prompt:
            details["upgradePrompt"] = prompt
        raise QuotaExceededError(result.message(), details=details)

    try:
        record_action(user_id)
    except StoreUnavailableError:
        # Usage is committed; only prompt bookkeeping is lost
        logger.warning("[usage] action count not recorded", extra={"user_id": user_id})

    return _respond(result, _upgrade_prompt(user_id, tier, catalog, enforcer))
