"""
studybuddy/features/tiers/catalog.py

Tier catalog snapshot, loader and refresh provider.

Handles:
- Immutable catalog snapshots (tiers ordered by price, global feature flags)
- Loading from a source with fallback to the conservative default tier
- Periodic refresh by swapping the whole snapshot (never mutated in place)
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from studybuddy.core.config import settings as app_settings
from studybuddy.features.tiers.defaults import FALLBACK_TIER, MB, GB
from studybuddy.models.feature_flag import FeatureFlag
from studybuddy.models.tier import TierDefinition, UNLIMITED


logger = logging.getLogger("studybuddy")

# Loader result: (tiers, flags, extras). extras may carry "ads_enabled" /
# "upgrade_prompts_enabled" from file sources.
CatalogSource = Callable[[], Tuple[Iterable[TierDefinition], Iterable[FeatureFlag], dict]]


@dataclass(frozen=True)
class CatalogOptions:
    refresh_interval_ms: int = 5 * 60 * 1000
    fallback_tier: str = "free"
    throttle_window_ms: int = 24 * 60 * 60 * 1000
    ads_enabled: bool = False
    upgrade_prompts_enabled: bool = True

    @classmethod
    def from_settings(cls, settings_obj=None) -> "CatalogOptions":
        cfg = settings_obj or app_settings
        return cls(
            refresh_interval_ms=cfg.TIER_REFRESH_INTERVAL_MS,
            fallback_tier=cfg.FALLBACK_TIER,
            throttle_window_ms=cfg.UPGRADE_PROMPT_THROTTLE_MS,
            ads_enabled=cfg.ADS_ENABLED,
            upgrade_prompts_enabled=cfg.UPGRADE_PROMPTS_ENABLED,
        )


def format_limit(value: int, kind: str = "number") -> str:
    """Display form of a limit: Unlimited, thousands separators, MB/GB for storage."""
    if value == UNLIMITED:
        return "Unlimited"
    if kind in ("storage", "storageBytes"):
        if value >= GB:
            return f"{value / GB:g}GB"
        return f"{value / MB:g}MB"
    return f"{value:,}"


class TierCatalog:
    """
    Immutable snapshot of the tier catalog.

    Safe to share between request handlers without locking; refresh
    replaces the snapshot reference instead of changing this object.
    """

    def __init__(
        self,
        tiers: Iterable[TierDefinition],
        flags: Iterable[FeatureFlag] = (),
        *,
        fallback_tier_id: str = "free",
        source: str = "defaults",
        is_fallback: bool = False,
        ads_enabled: bool = False,
        upgrade_prompts_enabled: bool = True,
        loaded_at: Optional[datetime] = None,
    ):
        tier_map = {tier.tier_id: tier for tier in tiers}
        self._tiers = MappingProxyType(tier_map)
        self._ordered: Tuple[TierDefinition, ...] = tuple(
            sorted(tier_map.values(), key=lambda t: (t.price, t.tier_id))
        )
        self._flags = MappingProxyType({flag.name: flag for flag in flags})
        self.fallback_tier_id = fallback_tier_id
        self.source = source
        self.is_fallback = is_fallback
        self.ads_enabled = ads_enabled
        self.upgrade_prompts_enabled = upgrade_prompts_enabled
        self.loaded_at = loaded_at or datetime.now(timezone.utc)

    def has_tier(self, tier_id: str) -> bool:
        return tier_id in self._tiers

    def get_tier(self, tier_id: Optional[str]) -> TierDefinition:
        """Tier by id; unknown ids fall back to the fallback tier. Never raises."""
        tier = self._tiers.get(tier_id) if tier_id else None
        if tier is not None:
            return tier
        logger.debug("[catalog] unknown tier, using fallback", extra={"tier_id": tier_id})
        return self._tiers.get(self.fallback_tier_id) or FALLBACK_TIER

    def get_all_tiers(self) -> List[TierDefinition]:
        """All tiers, ascending by price (ties by tier id)."""
        return list(self._ordered)

    def is_top_tier(self, tier: TierDefinition) -> bool:
        return bool(self._ordered) and self._ordered[-1].tier_id == tier.tier_id

    def next_tier_up(self, tier: TierDefinition) -> Optional[TierDefinition]:
        for index, candidate in enumerate(self._ordered):
            if candidate.tier_id == tier.tier_id:
                return self._ordered[index + 1] if index + 1 < len(self._ordered) else None
        for candidate in self._ordered:
            if candidate.price > tier.price:
                return candidate
        return None

    def feature_flag(self, name: str) -> Optional[FeatureFlag]:
        return self._flags.get(name)

    @property
    def feature_flags(self) -> List[FeatureFlag]:
        return sorted(self._flags.values(), key=lambda f: f.name)

    def stats(self) -> Dict[str, object]:
        return {
            "loaded_at": self.loaded_at.isoformat(),
            "source": self.source,
            "tiers_count": len(self._tiers),
            "features_enabled": sum(1 for flag in self._flags.values() if flag.enabled),
            "is_fallback": self.is_fallback,
        }

    def to_public_dict(self) -> dict:
        """Serialized catalog for the frontend config client."""
        return {
            "tiers": [
                {
                    "id": tier.tier_id,
                    "name": tier.name,
                    "price": tier.price,
                    "currency": tier.currency,
                    "interval": tier.interval,
                    "limits": dict(tier.limits),
                    "features": dict(tier.features),
                    "ads": {"enabled": tier.ads.enabled, "frequency": tier.ads.frequency},
                }
                for tier in self._ordered
            ],
            "features": {
                flag.name: {"enabled": flag.enabled, "status": flag.status.value}
                for flag in self.feature_flags
            },
            "monetization": {"adsEnabled": self.ads_enabled},
            "ui": {"showUpgradePrompts": self.upgrade_prompts_enabled},
            "fallbackTier": self.fallback_tier_id,
            "loadedAt": self.loaded_at.isoformat(),
        }

    def tier_comparison(self) -> List[dict]:
        return [
            {
                "id": tier.tier_id,
                "name": tier.name,
                "price": tier.price,
                "currency": tier.currency,
                "limits": {
                    quota_name: format_limit(value, quota_name)
                    for quota_name, value in tier.limits.items()
                },
                "features": dict(tier.features),
                "adFree": not tier.ads.enabled,
            }
            for tier in self._ordered
        ]


def fallback_catalog(options: Optional[CatalogOptions] = None) -> TierCatalog:
    """Catalog containing only the conservative fallback tier."""
    opts = options or CatalogOptions()
    return TierCatalog(
        [FALLBACK_TIER],
        fallback_tier_id=FALLBACK_TIER.tier_id,
        source="fallback",
        is_fallback=True,
        ads_enabled=opts.ads_enabled,
        upgrade_prompts_enabled=opts.upgrade_prompts_enabled,
    )


def load_catalog(source: CatalogSource, options: Optional[CatalogOptions] = None, *, source_name: str = "database") -> TierCatalog:
    """
    Build a catalog snapshot from a source.

    Never raises: a failing or malformed source yields the fallback catalog
    so limits can always be evaluated.
    """
    opts = options or CatalogOptions()
    try:
        tiers, flags, extras = source()
        tiers = list(tiers)
        flags = list(flags)
        if not tiers:
            raise ValueError("catalog source returned no tiers")
        if not all(isinstance(tier, TierDefinition) for tier in tiers):
            raise ValueError("catalog source returned malformed tiers")
    except Exception as e:
        logger.error(
            "[catalog] load failed, using fallback tier",
            extra={"source": source_name, "error": str(e), "tier_id": FALLBACK_TIER.tier_id},
        )
        return fallback_catalog(opts)

    fallback_tier_id = opts.fallback_tier
    tier_ids = {tier.tier_id for tier in tiers}
    if fallback_tier_id not in tier_ids:
        fallback_tier_id = FALLBACK_TIER.tier_id
        if fallback_tier_id in tier_ids:
            # The source's own tier wins over the bundled default of the same id
            logger.warning(
                "[catalog] configured fallback tier missing from source, using source tier",
                extra={"source": source_name, "tier_id": fallback_tier_id, "configured": opts.fallback_tier},
            )
        else:
            logger.warning(
                "[catalog] fallback tier missing from source, adding default",
                extra={"source": source_name, "tier_id": fallback_tier_id, "configured": opts.fallback_tier},
            )
            tiers.append(FALLBACK_TIER)

    catalog = TierCatalog(
        tiers,
        flags,
        fallback_tier_id=fallback_tier_id,
        source=source_name,
        ads_enabled=bool(extras.get("ads_enabled", opts.ads_enabled)),
        upgrade_prompts_enabled=bool(extras.get("upgrade_prompts_enabled", opts.upgrade_prompts_enabled)),
    )
    logger.info(
        "[catalog] loaded",
        extra={"source": source_name, "tiers_count": len(tiers), "flags_count": len(flags)},
    )
    return catalog


class CatalogProvider:
    """
    Holds the current catalog snapshot.

    refresh() builds a new snapshot and swaps the reference; readers see
    either the old or the new snapshot, never a mix.
    """

    def __init__(self, loader: Callable[[], TierCatalog], options: Optional[CatalogOptions] = None):
        self._loader = loader
        self.options = options or CatalogOptions()
        self._catalog: Optional[TierCatalog] = None
        self._refresh_lock = threading.Lock()

    @property
    def catalog(self) -> TierCatalog:
        current = self._catalog
        if current is None:
            current = self.refresh()
        return current

    def refresh(self) -> TierCatalog:
        with self._refresh_lock:
            new_catalog = self._loader()
            self._catalog = new_catalog
        return new_catalog

    async def run_refresh_loop(self) -> None:
        """Reload every refresh_interval_ms until cancelled."""
        interval = self.options.refresh_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(self.refresh)
            except Exception as e:
                # Keep serving the previous snapshot
                logger.error("[catalog] refresh failed", extra={"error": str(e)})
