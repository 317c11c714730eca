"""Tests for tier/usage/evaluation models."""
import pytest
from pydantic import ValidationError as PydanticValidationError

from studybuddy.models.evaluation import EvaluationReason, EvaluationResult
from studybuddy.models.tier import AdPolicy, TierDefinition, UNLIMITED
from studybuddy.models.usage import ActionRequest, QuotaName, UsagePeriod


def _tier(**limits):
    return TierDefinition(tier_id="t", name="T", limits=limits, features={"offlineMode": True})


def test_tier_is_immutable():
    tier = _tier(questionsPerMonth=10)
    with pytest.raises(PydanticValidationError):
        tier.name = "changed"


def test_limit_helpers():
    tier = _tier(questionsPerMonth=10, storageBytes=UNLIMITED)
    assert tier.limit_for("questionsPerMonth") == 10
    assert tier.limit_for("foo") is None
    assert tier.is_unlimited("storageBytes") is True
    assert tier.is_unlimited("questionsPerMonth") is False
    assert tier.allows("offlineMode") is True
    assert tier.allows("sync") is False


def test_negative_limits_other_than_unlimited_rejected():
    with pytest.raises(PydanticValidationError):
        _tier(questionsPerMonth=-2)


def test_ad_policy_defaults_off():
    assert TierDefinition(tier_id="x", name="X").ads == AdPolicy(enabled=False)


def test_usage_period_defaults_absent_quotas_to_zero():
    period = UsagePeriod(user_id="u1", period_key="2024-03")
    for quota in QuotaName:
        assert period.used(quota.value) == 0
    assert period.used("somethingElse") == 0


def test_usage_period_from_counters_splits_known_and_extra():
    period = UsagePeriod.from_counters(
        "u1", "2024-03", {"questionsPerMonth": 7, "storageBytes": 1024, "flashcards": 3}
    )
    assert period.questions_per_month == 7
    assert period.storage_bytes == 1024
    assert period.topics_per_account == 0
    assert period.extra == {"flashcards": 3}
    assert period.used("flashcards") == 3
    assert period.counters() == {
        "questionsPerMonth": 7,
        "topicsPerAccount": 0,
        "storageBytes": 1024,
        "flashcards": 3,
    }


def test_action_request_amount_must_be_positive():
    assert ActionRequest(user_id="u1", quota_name="questionsPerMonth").amount == 1
    with pytest.raises(PydanticValidationError):
        ActionRequest(user_id="u1", quota_name="questionsPerMonth", amount=0)


def test_denial_message_names_quota_and_values():
    result = EvaluationResult(
        allowed=False,
        remaining=5,
        limit=100,
        reason=EvaluationReason.QUOTA_EXCEEDED,
        quota_name="questionsPerMonth",
        current_usage=95,
        requested=10,
    )
    message = result.message()
    assert "questionsPerMonth" in message
    assert "95 of 100" in message
    assert "5 remaining" in message
