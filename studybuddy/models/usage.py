"""
studybuddy/models/usage.py

Usage ledger models.

Usage is tracked per user per calendar month (period_key "YYYY-MM", UTC).
Absent counters mean nothing was consumed yet, never "invalid".
"""

from enum import Enum
from typing import Dict, Mapping
from pydantic import BaseModel, ConfigDict, Field


class QuotaName(str, Enum):
    """Quotas defined by every bundled tier."""
    QUESTIONS_PER_MONTH = "questionsPerMonth"
    TOPICS_PER_ACCOUNT = "topicsPerAccount"
    STORAGE_BYTES = "storageBytes"


_QUOTA_FIELDS = {
    QuotaName.QUESTIONS_PER_MONTH.value: "questions_per_month",
    QuotaName.TOPICS_PER_ACCOUNT.value: "topics_per_account",
    QuotaName.STORAGE_BYTES.value: "storage_bytes",
}


class UsagePeriod(BaseModel):
    """
    Snapshot of one user's counters for one period.

    Known quotas are explicit fields defaulting to zero; counters for
    quota names outside QuotaName are kept in `extra`.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    period_key: str
    questions_per_month: int = Field(default=0, ge=0)
    topics_per_account: int = Field(default=0, ge=0)
    storage_bytes: int = Field(default=0, ge=0)
    extra: Dict[str, int] = Field(default_factory=dict)

    def used(self, quota_name: str) -> int:
        field_name = _QUOTA_FIELDS.get(quota_name)
        if field_name:
            return getattr(self, field_name)
        return self.extra.get(quota_name, 0)

    def counters(self) -> Dict[str, int]:
        """All counters keyed by quota name (known quotas always present)."""
        result = {quota: getattr(self, field_name) for quota, field_name in _QUOTA_FIELDS.items()}
        result.update(self.extra)
        return result

    @classmethod
    def from_counters(cls, user_id: str, period_key: str, counters: Mapping[str, int]) -> "UsagePeriod":
        known = {}
        extra = {}
        for quota_name, used in counters.items():
            field_name = _QUOTA_FIELDS.get(quota_name)
            if field_name:
                known[field_name] = int(used)
            else:
                extra[quota_name] = int(used)
        return cls(user_id=user_id, period_key=period_key, extra=extra, **known)


class ActionRequest(BaseModel):
    """One quota-consuming attempt. Not persisted."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    quota_name: str
    amount: int = Field(default=1, ge=1)
