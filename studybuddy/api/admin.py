"""
Admin API routes (X-Admin-Key required).

- POST   /api/admin/config/refresh: reload the catalog snapshot
- GET    /api/admin/config/stats: catalog + override stats
- PUT    /api/admin/users/{user_id}/tier: change a user's tier
- POST   /api/admin/tiers/{tier_id}/overrides: temporary limit override
- DELETE /api/admin/tiers/{tier_id}/overrides[/{quota_name}]: remove override(s)
- POST   /api/admin/usage/{user_id}/{period_key}/reset: correction only
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from studybuddy.core.auth import AdminActor, require_admin
from studybuddy.core.errors import ValidationError
from studybuddy.features.limits.service import QuotaEnforcer, get_quota_enforcer
from studybuddy.features.tiers.catalog import TierCatalog
from studybuddy.features.tiers.service import (
    assign_tier,
    clear_limit_override,
    current_catalog,
    get_catalog_provider,
    list_active_overrides,
    set_limit_override,
)


logger = logging.getLogger("studybuddy")

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])

_PERIOD_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class AssignTierRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier_id: str = Field(..., alias="tierId")


class OverrideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quota_name: str = Field(..., alias="quotaName", min_length=1)
    value: int = Field(..., ge=-1)
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    duration_ms: Optional[int] = Field(None, alias="durationMs", gt=0)


@router.post("/config/refresh")
def refresh_config(actor: AdminActor = Depends(require_admin)):
    catalog = get_catalog_provider().refresh()
    logger.info("[admin] catalog refreshed", extra={"actor": actor.actor_id, "source": catalog.source})
    return {"ok": True, "stats": catalog.stats()}


@router.get("/config/stats")
def config_stats(catalog: TierCatalog = Depends(current_catalog)):
    overrides = list_active_overrides()
    return {
        **catalog.stats(),
        "temporary_overrides": len(overrides),
        "overrides": [o.model_dump(mode="json") for o in overrides],
    }


@router.put("/users/{user_id}/tier")
def set_user_tier(
    user_id: str,
    body: AssignTierRequest,
    actor: AdminActor = Depends(require_admin),
    catalog: TierCatalog = Depends(current_catalog),
):
    user_tier = assign_tier(user_id, body.tier_id, catalog)
    logger.info("[admin] tier changed", extra={"actor": actor.actor_id, "user_id": user_id, "tier_id": body.tier_id})
    return user_tier.model_dump(mode="json")


@router.post("/tiers/{tier_id}/overrides")
def create_override(
    tier_id: str,
    body: OverrideRequest,
    actor: AdminActor = Depends(require_admin),
    catalog: TierCatalog = Depends(current_catalog),
):
    if body.expires_at and body.duration_ms:
        raise ValidationError("Use expiresAt or durationMs, not both")
    expires_at = body.expires_at
    if body.duration_ms:
        expires_at = datetime.now(timezone.utc) + timedelta(milliseconds=body.duration_ms)

    override = set_limit_override(
        tier_id,
        body.quota_name,
        body.value,
        expires_at=expires_at,
        created_by=actor.actor_id,
        catalog=catalog,
    )
    return override.model_dump(mode="json")


@router.delete("/tiers/{tier_id}/overrides")
def delete_overrides(tier_id: str):
    return {"removed": clear_limit_override(tier_id)}


@router.delete("/tiers/{tier_id}/overrides/{quota_name}")
def delete_override(tier_id: str, quota_name: str):
    return {"removed": clear_limit_override(tier_id, quota_name)}


@router.post("/usage/{user_id}/{period_key}/reset")
def reset_usage(
    user_id: str,
    period_key: str,
    actor: AdminActor = Depends(require_admin),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
):
    if not _PERIOD_KEY.match(period_key):
        raise ValidationError("period_key must look like YYYY-MM", details={"period_key": period_key})
    removed = enforcer.ledger.reset_period(user_id, period_key)
    logger.warning("[admin] usage reset", extra={"actor": actor.actor_id, "user_id": user_id, "period_key": period_key})
    return {"ok": True, "removed": removed}
