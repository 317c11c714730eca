"""
studybuddy/models/upgrade_prompt.py

Upgrade prompt decision + persisted throttle state.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PromptTrigger(str, Enum):
    QUOTA_NEAR_LIMIT = "quota_near_limit"
    ACTION_COUNT_THRESHOLD = "action_count_threshold"
    FEATURE_BLOCKED = "feature_blocked"


class UpgradePromptDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    should_show: bool
    trigger: Optional[PromptTrigger] = None
    suggested_tier: Optional[str] = None
    quota_name: Optional[str] = None

    def to_response(self) -> dict:
        return {
            "shouldShow": self.should_show,
            "trigger": self.trigger.value if self.trigger else None,
            "suggestedTier": self.suggested_tier,
            "quotaName": self.quota_name,
        }


class PromptState(BaseModel):
    """
    Per-user prompt throttle state.

    last_shown_at is updated each time a prompt is actually shown,
    regardless of whether the user upgrades.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    last_shown_at: Optional[datetime] = None
    actions_since_prompt: int = Field(default=0, ge=0)
