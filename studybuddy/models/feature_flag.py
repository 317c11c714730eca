"""
studybuddy/models/feature_flag.py

Global feature flags (kill switch + rollout status), independent of tier.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class FeatureStatus(str, Enum):
    ALPHA = "alpha"
    BETA = "beta"
    STABLE = "stable"


class FeatureFlag(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    enabled: bool = True
    status: FeatureStatus = FeatureStatus.STABLE
    description: Optional[str] = None
