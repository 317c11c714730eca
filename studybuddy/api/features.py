"""Feature gate for the calling user (fails open on store outages)."""
import logging

from fastapi import APIRouter, Depends

from studybuddy.core.auth import get_current_user_id
from studybuddy.core.errors import StoreUnavailableError
from studybuddy.features.flags.service import FeatureGate
from studybuddy.features.prompts.service import decide_for_user
from studybuddy.features.tiers.catalog import TierCatalog
from studybuddy.features.tiers.service import current_catalog, get_user_tier_id_or_cached
from studybuddy.features.limits.service import QuotaEnforcer, get_quota_enforcer


logger = logging.getLogger("studybuddy")

router = APIRouter(prefix="/api/features", tags=["features"])


@router.get("/{name}")
def get_feature_access(
    name: str,
    user_id: str = Depends(get_current_user_id),
    catalog: TierCatalog = Depends(current_catalog),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
):
    """
    Whether the caller may use a capability.

    When the store is unreachable the last known tier (or the fallback
    tier) is used and the response carries degraded=true.
    """
    tier_id, degraded = get_user_tier_id_or_cached(user_id, catalog)
    tier = catalog.get_tier(tier_id)
    gate = FeatureGate(catalog)

    payload = gate.describe(tier, name)
    payload["tier"] = tier.tier_id
    payload["degraded"] = degraded

    # Blocked by entitlement (not by a kill switch): offer the upgrade
    if not degraded and not tier.allows(name) and gate.is_feature_globally_enabled(name):
        try:
            period = enforcer.ledger.get_period(user_id, enforcer.current_period_key())
            decision = decide_for_user(user_id, tier, period, catalog=catalog, blocked_feature=name)
            if decision.should_show:
                payload["upgradePrompt"] = decision.to_response()
        except StoreUnavailableError:
            logger.warning("[features] prompt skipped, store unavailable", extra={"user_id": user_id})

    return payload
