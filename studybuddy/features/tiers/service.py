"""
studybuddy/features/tiers/service.py

Tier catalog persistence and user tier assignment.

Handles:
- Catalog seeding (free, pro, premium) and database/JSON file sources
- Process-wide CatalogProvider
- User tier assignment with a last-known-tier cache for fail-open reads
- Temporary per-tier limit overrides
"""

import json
import logging
import re
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import SQLAlchemyError

from studybuddy.core.config import settings
from studybuddy.core.database import (
    as_utc,
    get_db_session,
    tier_definitions,
    feature_flags,
    user_tiers,
    tier_limit_overrides,
)
from studybuddy.core.errors import StoreUnavailableError, ValidationError
from studybuddy.features.tiers.catalog import CatalogOptions, CatalogProvider, TierCatalog, load_catalog
from studybuddy.features.tiers.defaults import (
    DEFAULT_TIERS,
    DEFAULT_FEATURE_FLAGS,
    GB,
    MB,
    flag_from_config,
    tier_from_config,
)
from studybuddy.models.tier import TierDefinition, UNLIMITED, UNLIMITED_LABEL
from studybuddy.models.user_tier import LimitOverride, UserTier


logger = logging.getLogger("studybuddy")

# Older config files used storagePerAccount with "50MB" style values
_LIMIT_ALIASES = {"storagePerAccount": "storageBytes"}
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(MB|GB)\s*$", re.IGNORECASE)

LAST_KNOWN_TIER_CACHE_SIZE = 10_000


def _parse_limit(value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid limit: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        if value.strip().lower() == UNLIMITED_LABEL:
            return UNLIMITED
        match = _SIZE_PATTERN.match(value)
        if match:
            unit = GB if match.group(2).upper() == "GB" else MB
            return int(float(match.group(1)) * unit)
    raise ValueError(f"invalid limit: {value!r}")


# ---------------------------------------------------------------------------
# Catalog sources
# ---------------------------------------------------------------------------

def seed_catalog() -> None:
    """
    Seed default tiers and feature flags into database (idempotent).

    Existing rows are left untouched so admin edits survive restarts.
    """
    now = datetime.now(timezone.utc)

    with get_db_session() as session:
        for tier_id, config in DEFAULT_TIERS.items():
            existing = session.execute(
                select(tier_definitions.c.tier_id).where(tier_definitions.c.tier_id == tier_id)
            ).first()
            if existing:
                continue
            session.execute(
                insert(tier_definitions).values(
                    tier_id=tier_id,
                    name=config["name"],
                    price=config["price"],
                    currency=config.get("currency", "USD"),
                    interval=config.get("interval", "month"),
                    limits=config["limits"],
                    features=config["features"],
                    ads=config["ads"],
                    created_at=now,
                )
            )

        for name, config in DEFAULT_FEATURE_FLAGS.items():
            existing = session.execute(
                select(feature_flags.c.name).where(feature_flags.c.name == name)
            ).first()
            if existing:
                continue
            session.execute(
                insert(feature_flags).values(
                    name=name,
                    enabled=config["enabled"],
                    status=config["status"],
                    description=config.get("description"),
                    updated_at=now,
                )
            )


def read_catalog_from_db() -> Tuple[List[TierDefinition], list, dict]:
    """Catalog source backed by the tier_definitions / feature_flags tables."""
    with get_db_session() as session:
        tier_rows = session.execute(select(tier_definitions)).all()
        flag_rows = session.execute(select(feature_flags)).all()

    tiers = [
        tier_from_config(
            row.tier_id,
            {
                "name": row.name,
                "price": row.price,
                "currency": row.currency,
                "interval": row.interval,
                "limits": {k: _parse_limit(v) for k, v in (row.limits or {}).items()},
                "features": row.features,
                "ads": row.ads,
            },
        )
        for row in tier_rows
    ]
    flags = [
        flag_from_config(
            row.name,
            {"enabled": row.enabled, "status": row.status, "description": row.description},
        )
        for row in flag_rows
    ]
    return tiers, flags, {}


def read_catalog_from_file(path: str) -> Tuple[List[TierDefinition], list, dict]:
    """
    Catalog source backed by a JSON config file.

    Format:
        {"tiers": {"free": {"name", "price", "limits", "features", "ads"}},
         "features": {"offlineMode": {"enabled": true, "status": "beta"}},
         "monetization": {"adsEnabled": false},
         "ui": {"showUpgradePrompts": true}}

    Feature flags may also live under "app.features".
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict) or not isinstance(raw.get("tiers"), dict):
        raise ValueError("config file must contain a 'tiers' object")

    tiers = []
    for tier_id, config in raw["tiers"].items():
        limits = {
            _LIMIT_ALIASES.get(name, name): _parse_limit(value)
            for name, value in (config.get("limits") or {}).items()
        }
        tiers.append(tier_from_config(tier_id, {**config, "limits": limits}))

    flag_config = raw.get("features")
    if flag_config is None:
        flag_config = (raw.get("app") or {}).get("features") or {}
    flags = [flag_from_config(name, config) for name, config in flag_config.items()]

    extras = {}
    monetization = raw.get("monetization") or {}
    if "adsEnabled" in monetization:
        extras["ads_enabled"] = bool(monetization["adsEnabled"])
    ui = raw.get("ui") or {}
    if "showUpgradePrompts" in ui:
        extras["upgrade_prompts_enabled"] = bool(ui["showUpgradePrompts"])
    return tiers, flags, extras


def make_catalog_loader(options: Optional[CatalogOptions] = None, config_path: Optional[str] = None):
    """Loader for CatalogProvider: JSON file when configured, database otherwise."""
    opts = options or CatalogOptions.from_settings()
    path = config_path if config_path is not None else settings.TIER_CONFIG_PATH

    if path:
        return lambda: load_catalog(lambda: read_catalog_from_file(path), opts, source_name="file")
    return lambda: load_catalog(read_catalog_from_db, opts, source_name="database")


_provider: Optional[CatalogProvider] = None
_provider_lock = threading.Lock()


def get_catalog_provider() -> CatalogProvider:
    """Process-wide catalog provider (lazy)."""
    global _provider
    if _provider is None:
        with _provider_lock:
            if _provider is None:
                options = CatalogOptions.from_settings()
                _provider = CatalogProvider(make_catalog_loader(options), options)
    return _provider


def set_catalog_provider(provider: Optional[CatalogProvider]) -> None:
    """Install a provider (tests, custom sources)."""
    global _provider
    _provider = provider


def reset_catalog_provider() -> None:
    """
    Reset the provider instance.

    FOR TESTING ONLY - forces re-initialization on next get_catalog_provider() call.
    """
    set_catalog_provider(None)


def current_catalog() -> TierCatalog:
    """FastAPI dependency: the current immutable catalog snapshot."""
    return get_catalog_provider().catalog


# ---------------------------------------------------------------------------
# User tier assignment
# ---------------------------------------------------------------------------

_last_known_tiers: "OrderedDict[str, str]" = OrderedDict()
_last_known_lock = threading.Lock()


def _remember_tier(user_id: str, tier_id: str) -> None:
    with _last_known_lock:
        _last_known_tiers[user_id] = tier_id
        _last_known_tiers.move_to_end(user_id)
        while len(_last_known_tiers) > LAST_KNOWN_TIER_CACHE_SIZE:
            _last_known_tiers.popitem(last=False)


def clear_last_known_tiers() -> None:
    with _last_known_lock:
        _last_known_tiers.clear()


def assign_tier(user_id: str, tier_id: str, catalog: TierCatalog) -> UserTier:
    """
    Assign tier to user (creates or updates).

    Usage already recorded in the current period is left as is.

    Raises:
        ValidationError: If tier_id is not in the catalog
        StoreUnavailableError: If the store cannot be reached
    """
    if not catalog.has_tier(tier_id):
        raise ValidationError(f"Tier {tier_id} not found", details={"tier_id": tier_id})

    now = datetime.now(timezone.utc)

    try:
        with get_db_session() as session:
            existing = session.execute(
                select(user_tiers.c.user_id).where(user_tiers.c.user_id == user_id)
            ).first()

            if existing:
                session.execute(
                    update(user_tiers)
                    .where(user_tiers.c.user_id == user_id)
                    .values(tier_id=tier_id, assigned_at=now)
                )
            else:
                session.execute(
                    insert(user_tiers).values(user_id=user_id, tier_id=tier_id, assigned_at=now)
                )
    except SQLAlchemyError as e:
        logger.error("[tiers] assign failed", extra={"user_id": user_id, "tier_id": tier_id, "error": str(e)})
        raise StoreUnavailableError() from e

    _remember_tier(user_id, tier_id)
    logger.info("[tiers] assigned", extra={"user_id": user_id, "tier_id": tier_id})
    return UserTier(user_id=user_id, tier_id=tier_id, assigned_at=now)


def get_user_tier(user_id: str) -> Optional[UserTier]:
    """User's active tier assignment, or None if never assigned."""
    try:
        with get_db_session() as session:
            row = session.execute(
                select(user_tiers).where(user_tiers.c.user_id == user_id)
            ).first()
    except SQLAlchemyError as e:
        raise StoreUnavailableError() from e

    if not row:
        return None
    _remember_tier(user_id, row.tier_id)
    return UserTier(user_id=row.user_id, tier_id=row.tier_id, assigned_at=as_utc(row.assigned_at))


def get_user_tier_id(user_id: str, catalog: TierCatalog) -> str:
    """Active tier id; users without an assignment are on the fallback tier."""
    user_tier = get_user_tier(user_id)
    if user_tier is None:
        return catalog.fallback_tier_id
    return user_tier.tier_id


def get_user_tier_id_or_cached(user_id: str, catalog: TierCatalog) -> Tuple[str, bool]:
    """
    Tier id for entitlement reads, failing open.

    Returns (tier_id, degraded). When the store is down the last known tier
    (or the fallback tier) is returned with degraded=True.
    """
    try:
        return get_user_tier_id(user_id, catalog), False
    except StoreUnavailableError:
        with _last_known_lock:
            cached = _last_known_tiers.get(user_id)
        logger.warning(
            "[tiers] store unavailable, using last known tier",
            extra={"user_id": user_id, "tier_id": cached or catalog.fallback_tier_id},
        )
        return cached or catalog.fallback_tier_id, True


# ---------------------------------------------------------------------------
# Temporary limit overrides
# ---------------------------------------------------------------------------

def set_limit_override(
    tier_id: str,
    quota_name: str,
    value: int,
    *,
    expires_at: Optional[datetime] = None,
    created_by: Optional[str] = None,
    catalog: Optional[TierCatalog] = None,
) -> LimitOverride:
    """Upsert a temporary limit for every user on a tier."""
    if value < 0 and value != UNLIMITED:
        raise ValidationError("Override value must be >= 0 or -1 (unlimited)", details={"value": value})
    if catalog is not None and not catalog.has_tier(tier_id):
        raise ValidationError(f"Tier {tier_id} not found", details={"tier_id": tier_id})
    expires_at = as_utc(expires_at)

    try:
        with get_db_session() as session:
            session.execute(
                delete(tier_limit_overrides)
                .where(tier_limit_overrides.c.tier_id == tier_id)
                .where(tier_limit_overrides.c.quota_name == quota_name)
            )
            session.execute(
                insert(tier_limit_overrides).values(
                    tier_id=tier_id,
                    quota_name=quota_name,
                    value=value,
                    expires_at=expires_at,
                    created_by=created_by,
                )
            )
    except SQLAlchemyError as e:
        logger.error("[tiers] override write failed", extra={"tier_id": tier_id, "quota_name": quota_name, "error": str(e)})
        raise StoreUnavailableError() from e

    logger.info(
        "[tiers] limit override set",
        extra={"tier_id": tier_id, "quota_name": quota_name, "value": value, "expires_at": expires_at},
    )
    return LimitOverride(
        tier_id=tier_id, quota_name=quota_name, value=value, expires_at=expires_at, created_by=created_by
    )


def clear_limit_override(tier_id: str, quota_name: Optional[str] = None) -> int:
    """Remove one override (or all overrides of a tier). Returns rows removed."""
    stmt = delete(tier_limit_overrides).where(tier_limit_overrides.c.tier_id == tier_id)
    if quota_name:
        stmt = stmt.where(tier_limit_overrides.c.quota_name == quota_name)
    try:
        with get_db_session() as session:
            result = session.execute(stmt)
            return result.rowcount or 0
    except SQLAlchemyError as e:
        logger.error("[tiers] override delete failed", extra={"tier_id": tier_id, "error": str(e)})
        raise StoreUnavailableError() from e


def get_active_overrides(tier_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
    """Unexpired overrides for a tier as quota name -> limit."""
    now = as_utc(now) or datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            rows = session.execute(
                select(tier_limit_overrides).where(tier_limit_overrides.c.tier_id == tier_id)
            ).all()
    except SQLAlchemyError as e:
        raise StoreUnavailableError() from e

    return {
        row.quota_name: int(row.value)
        for row in rows
        if row.expires_at is None or as_utc(row.expires_at) > now
    }


def list_active_overrides(now: Optional[datetime] = None) -> List[LimitOverride]:
    """All unexpired overrides across tiers (admin stats)."""
    now = as_utc(now) or datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            rows = session.execute(
                select(tier_limit_overrides).order_by(tier_limit_overrides.c.tier_id, tier_limit_overrides.c.quota_name)
            ).all()
    except SQLAlchemyError as e:
        raise StoreUnavailableError() from e

    return [
        LimitOverride(
            tier_id=row.tier_id,
            quota_name=row.quota_name,
            value=int(row.value),
            expires_at=as_utc(row.expires_at),
            created_by=row.created_by,
        )
        for row in rows
        if row.expires_at is None or as_utc(row.expires_at) > now
    ]


def apply_overrides(tier: TierDefinition, overrides: Dict[str, int]) -> TierDefinition:
    """New definition with overridden limits; the input is left untouched."""
    if not overrides:
        return tier
    return tier.model_copy(update={"limits": {**tier.limits, **overrides}})


def resolve_effective_tier(user_id: str, catalog: TierCatalog, now: Optional[datetime] = None) -> TierDefinition:
    """User's tier from the catalog with active overrides applied."""
    tier = catalog.get_tier(get_user_tier_id(user_id, catalog))
    return apply_overrides(tier, get_active_overrides(tier.tier_id, now))
