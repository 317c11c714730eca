"""
studybuddy/features/flags/service.py

Feature gate: tier entitlement AND global enablement.

A global disabled flag always wins over a tier-level true (kill switch).
Pure in-memory reads against the catalog snapshot; never touches the store.
"""

import logging
from typing import Optional

from studybuddy.features.tiers.catalog import TierCatalog
from studybuddy.models.feature_flag import FeatureStatus
from studybuddy.models.tier import TierDefinition


logger = logging.getLogger("studybuddy")


class FeatureGate:
    def __init__(self, catalog: TierCatalog, ads_enabled: Optional[bool] = None):
        self.catalog = catalog
        self._ads_enabled = catalog.ads_enabled if ads_enabled is None else ads_enabled

    def is_feature_globally_enabled(self, name: str) -> bool:
        """Features without a registered flag have no kill switch: enabled."""
        flag = self.catalog.feature_flag(name)
        return True if flag is None else flag.enabled

    def feature_status(self, name: str) -> FeatureStatus:
        flag = self.catalog.feature_flag(name)
        return FeatureStatus.STABLE if flag is None else flag.status

    def has_feature(self, tier: TierDefinition, name: str) -> bool:
        if not self.is_feature_globally_enabled(name):
            logger.debug("[features] globally disabled", extra={"tier_id": tier.tier_id, "feature": name})
            return False
        return tier.allows(name)

    def ads_enabled(self, tier: TierDefinition) -> bool:
        """Ads show only if monetization has them on AND the tier is ad supported."""
        return bool(self._ads_enabled and tier.ads.enabled)

    def describe(self, tier: TierDefinition, name: str) -> dict:
        return {
            "feature": name,
            "enabled": self.has_feature(tier, name),
            "tierAllows": tier.allows(name),
            "globallyEnabled": self.is_feature_globally_enabled(name),
            "status": self.feature_status(name).value,
        }
