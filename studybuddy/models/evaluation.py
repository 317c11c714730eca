"""
studybuddy/models/evaluation.py

Limit evaluation result. Denials are data, not exceptions.
"""

from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict

from studybuddy.models.tier import UNLIMITED_LABEL


class EvaluationReason(str, Enum):
    OK = "ok"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNKNOWN_QUOTA = "unknown_quota"


class EvaluationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    remaining: Union[int, str]
    limit: Union[int, str]
    reason: EvaluationReason
    quota_name: Optional[str] = None
    current_usage: int = 0
    requested: int = 1

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED_LABEL

    def message(self) -> str:
        """User-visible text naming the quota and its current/limit values."""
        if self.reason == EvaluationReason.UNKNOWN_QUOTA:
            return f"Unknown quota '{self.quota_name}' for your plan"
        if self.reason == EvaluationReason.QUOTA_EXCEEDED:
            return (
                f"{self.quota_name} limit reached: {self.current_usage} of {self.limit} used, "
                f"{self.remaining} remaining, {self.requested} requested. "
                "Upgrade your plan for a higher limit."
            )
        return "ok"

    def to_response(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "reason": self.reason.value,
            "quotaName": self.quota_name,
            "currentUsage": self.current_usage,
            "requested": self.requested,
        }
