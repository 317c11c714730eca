"""Tests for the pure limit evaluator."""
import pytest

from studybuddy.features.limits.evaluator import evaluate
from studybuddy.features.tiers.defaults import default_tiers
from studybuddy.models.evaluation import EvaluationReason
from studybuddy.models.tier import TierDefinition, UNLIMITED
from studybuddy.models.usage import ActionRequest


FREE = TierDefinition(tier_id="free", name="Free", limits={"questionsPerMonth": 100})
PRO = TierDefinition(tier_id="pro", name="Pro", price=9.99, limits={"questionsPerMonth": UNLIMITED})


def _req(amount, quota="questionsPerMonth"):
    return ActionRequest(user_id="u1", quota_name=quota, amount=amount)


def test_denied_when_request_exceeds_remaining():
    result = evaluate(_req(10), FREE, 95)
    assert result.allowed is False
    assert result.reason == EvaluationReason.QUOTA_EXCEEDED
    assert result.remaining == 5
    assert result.limit == 100


def test_allowed_reports_post_consumption_remaining():
    result = evaluate(_req(5), FREE, 95)
    assert result.allowed is True
    assert result.reason == EvaluationReason.OK
    assert result.remaining == 0


def test_unknown_quota_fails_closed():
    for tier in default_tiers() + [FREE, PRO]:
        result = evaluate(_req(1, quota="foo"), tier, 0)
        assert result.allowed is False
        assert result.reason == EvaluationReason.UNKNOWN_QUOTA


def test_unlimited_ignores_usage_magnitude():
    result = evaluate(_req(1000), PRO, 1_000_000)
    assert result.allowed is True
    assert result.remaining == "unlimited"
    assert result.limit == "unlimited"


def test_unlimited_always_allowed_for_any_usage():
    for usage in (0, 1, 99, 10**12):
        for amount in (1, 50, 10**9):
            assert evaluate(_req(amount), PRO, usage).allowed is True


def test_never_allows_past_a_finite_limit():
    for limit in (0, 1, 7, 100):
        tier = TierDefinition(tier_id="t", name="T", limits={"questionsPerMonth": limit})
        for usage in range(0, limit + 3):
            for amount in range(1, limit + 3):
                result = evaluate(_req(amount), tier, usage)
                if usage + amount > limit:
                    assert result.allowed is False
                    assert result.remaining >= 0
                else:
                    assert result.allowed is True
                    assert result.remaining == limit - usage - amount


def test_over_limit_usage_clamps_remaining_to_zero():
    # Usage above the limit can appear after an admin lowers a limit
    result = evaluate(_req(1), FREE, 150)
    assert result.allowed is False
    assert result.remaining == 0


@pytest.mark.parametrize("usage,amount,allowed", [(0, 100, True), (0, 101, False), (100, 1, False), (99, 1, True)])
def test_boundaries(usage, amount, allowed):
    assert evaluate(_req(amount), FREE, usage).allowed is allowed
