"""
studybuddy/features/prompts/policy.py

Upgrade-prompt decision. Pure: no I/O, no side effects.

Rules, first match wins:
1. top tier                              -> no prompt
2. last shown within the throttle window -> no prompt
3. caller hit a tier-blocked feature     -> feature_blocked
4. any limited quota within ratio of it  -> quota_near_limit
5. action count above threshold          -> action_count_threshold
6. otherwise                             -> no prompt
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from studybuddy.core.config import settings as app_settings
from studybuddy.features.tiers.catalog import CatalogOptions, TierCatalog
from studybuddy.models.tier import TierDefinition, UNLIMITED
from studybuddy.models.upgrade_prompt import PromptTrigger, UpgradePromptDecision
from studybuddy.models.usage import UsagePeriod


NO_PROMPT = UpgradePromptDecision(should_show=False)


@dataclass(frozen=True)
class PromptSettings:
    near_limit_ratio: float = 0.10
    action_threshold: int = 10
    throttle_window_ms: int = 24 * 60 * 60 * 1000
    enabled: bool = True

    @property
    def throttle_window(self) -> timedelta:
        return timedelta(milliseconds=self.throttle_window_ms)

    @classmethod
    def from_settings(cls, settings_obj=None, options: Optional[CatalogOptions] = None) -> "PromptSettings":
        """Thresholds from settings; throttle window and on/off from the loader options."""
        cfg = settings_obj or app_settings
        opts = options or CatalogOptions.from_settings(cfg)
        return cls(
            near_limit_ratio=cfg.UPGRADE_PROMPT_NEAR_LIMIT_RATIO,
            action_threshold=cfg.UPGRADE_PROMPT_ACTION_THRESHOLD,
            throttle_window_ms=opts.throttle_window_ms,
            enabled=opts.upgrade_prompts_enabled,
        )


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _suggest(catalog: TierCatalog, tier: TierDefinition, feature: Optional[str] = None) -> Optional[str]:
    """Next tier up; for a blocked feature, the cheapest higher tier that has it."""
    if feature:
        for candidate in catalog.get_all_tiers():
            if candidate.price > tier.price and candidate.allows(feature):
                return candidate.tier_id
    upgrade = catalog.next_tier_up(tier)
    return upgrade.tier_id if upgrade else None


def near_limit_quota(tier: TierDefinition, usage: UsagePeriod, ratio: float) -> Optional[str]:
    """First quota whose remaining is within ratio of its limit (unlimited and zero limits skipped)."""
    for quota_name, limit in tier.limits.items():
        if limit == UNLIMITED or limit <= 0:
            continue
        if limit - usage.used(quota_name) <= limit * ratio:
            return quota_name
    return None


def should_prompt(
    user_id: str,
    tier: TierDefinition,
    usage_snapshot: UsagePeriod,
    action_count: int,
    last_shown: Optional[datetime],
    *,
    catalog: TierCatalog,
    settings: Optional[PromptSettings] = None,
    now: Optional[datetime] = None,
    blocked_feature: Optional[str] = None,
) -> UpgradePromptDecision:
    prompt_settings = settings or PromptSettings.from_settings()
    if not (prompt_settings.enabled and catalog.upgrade_prompts_enabled):
        return NO_PROMPT

    if catalog.is_top_tier(tier):
        return NO_PROMPT

    now = _utc(now) if now else datetime.now(timezone.utc)
    if last_shown is not None and now - _utc(last_shown) < prompt_settings.throttle_window:
        return NO_PROMPT

    if blocked_feature:
        return UpgradePromptDecision(
            should_show=True,
            trigger=PromptTrigger.FEATURE_BLOCKED,
            suggested_tier=_suggest(catalog, tier, blocked_feature),
        )

    quota_name = near_limit_quota(tier, usage_snapshot, prompt_settings.near_limit_ratio)
    if quota_name:
        return UpgradePromptDecision(
            should_show=True,
            trigger=PromptTrigger.QUOTA_NEAR_LIMIT,
            suggested_tier=_suggest(catalog, tier),
            quota_name=quota_name,
        )

    if action_count > prompt_settings.action_threshold:
        return UpgradePromptDecision(
            should_show=True,
            trigger=PromptTrigger.ACTION_COUNT_THRESHOLD,
            suggested_tier=_suggest(catalog, tier),
        )

    return NO_PROMPT
