"""
Public configuration API (frontend config client).

- GET /api/config/public: serialized catalog, cached client-side
- GET /api/config/tiers: tiers ascending by price
- GET /api/config/tiers/comparison: display-formatted limits
- GET /api/config/tiers/{tier_id}/limits: effective limits incl. overrides
- GET /api/config/features[/{name}]: global flags with rollout status

The server stays the authority for allow/deny; these are read-only.
"""
import logging

from fastapi import APIRouter, Depends

from studybuddy.core.errors import NotFoundError, StoreUnavailableError
from studybuddy.features.flags.service import FeatureGate
from studybuddy.features.tiers.catalog import TierCatalog, format_limit
from studybuddy.features.tiers.service import apply_overrides, current_catalog, get_active_overrides


logger = logging.getLogger("studybuddy")

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("/public")
def get_public_config(catalog: TierCatalog = Depends(current_catalog)):
    return catalog.to_public_dict()


@router.get("/tiers")
def list_tiers(catalog: TierCatalog = Depends(current_catalog)):
    return {"tiers": catalog.to_public_dict()["tiers"]}


@router.get("/tiers/comparison")
def compare_tiers(catalog: TierCatalog = Depends(current_catalog)):
    return {"tiers": catalog.tier_comparison()}


@router.get("/tiers/{tier_id}/limits")
def get_tier_limits(tier_id: str, catalog: TierCatalog = Depends(current_catalog)):
    """
    Effective limits for a tier.

    Overrides are best effort: if they cannot be read the base limits are
    returned with degraded=true.
    """
    if not catalog.has_tier(tier_id):
        raise NotFoundError(f"Tier {tier_id} not found", details={"tier_id": tier_id})

    tier = catalog.get_tier(tier_id)
    degraded = False
    try:
        overrides = get_active_overrides(tier_id)
    except StoreUnavailableError:
        logger.warning("[config] overrides unavailable, serving base limits", extra={"tier_id": tier_id})
        overrides = {}
        degraded = True

    effective = apply_overrides(tier, overrides)
    return {
        "tierId": tier_id,
        "limits": dict(effective.limits),
        "display": {name: format_limit(value, name) for name, value in effective.limits.items()},
        "overrides": overrides,
        "degraded": degraded,
    }


@router.get("/features")
def list_features(catalog: TierCatalog = Depends(current_catalog)):
    return {
        "features": [
            {
                "name": flag.name,
                "enabled": flag.enabled,
                "status": flag.status.value,
                "description": flag.description,
            }
            for flag in catalog.feature_flags
        ]
    }


@router.get("/features/{name}")
def get_feature(name: str, catalog: TierCatalog = Depends(current_catalog)):
    gate = FeatureGate(catalog)
    return {
        "name": name,
        "enabled": gate.is_feature_globally_enabled(name),
        "status": gate.feature_status(name).value,
        "registered": catalog.feature_flag(name) is not None,
    }
