"""
studybuddy/models/user_tier.py

Links users to their active tier.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UserTier(BaseModel):
    """
    UserTier represents a user's active tier assignment.

    Constraint: Each user has exactly one active tier. Changing tiers
    never rewrites usage already recorded in the current period.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    tier_id: str
    assigned_at: datetime


class LimitOverride(BaseModel):
    """Temporary per-tier limit (promotions, support, testing)."""
    model_config = ConfigDict(frozen=True)

    tier_id: str
    quota_name: str
    value: int
    expires_at: Optional[datetime] = None
    created_by: Optional[str] = None
