"""
studybuddy/models/tier.py

Tier definitions for the subscription catalog.

A tier bundles quota limits, feature entitlements, price and ad policy.
Limits use -1 as the unlimited sentinel; never compare it numerically.
"""

from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


UNLIMITED = -1
UNLIMITED_LABEL = "unlimited"


class AdPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    frequency: Optional[str] = None


class TierDefinition(BaseModel):
    """
    TierDefinition represents one subscription level.

    Examples:
    - free (default, ad supported)
    - pro
    - premium (top tier, everything unlimited)

    Instances are immutable snapshots; overrides produce new instances.
    """
    model_config = ConfigDict(frozen=True)

    tier_id: str
    name: str
    price: float = 0.0
    currency: str = "USD"
    interval: str = "month"
    limits: Dict[str, int] = Field(default_factory=dict)
    features: Dict[str, bool] = Field(default_factory=dict)
    ads: AdPolicy = Field(default_factory=AdPolicy)

    @field_validator("limits")
    @classmethod
    def _check_limits(cls, value: Dict[str, int]) -> Dict[str, int]:
        for quota_name, limit in value.items():
            if limit < 0 and limit != UNLIMITED:
                raise ValueError(f"limit for {quota_name} must be >= 0 or -1 (unlimited)")
        return value

    def limit_for(self, quota_name: str) -> Optional[int]:
        """Capacity for a quota, or None when the tier does not define it."""
        return self.limits.get(quota_name)

    def is_unlimited(self, quota_name: str) -> bool:
        return self.limits.get(quota_name) == UNLIMITED

    def allows(self, feature_name: str) -> bool:
        return bool(self.features.get(feature_name, False))
