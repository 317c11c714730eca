"""
Tests for user tier assignment and temporary limit overrides.

Verifies:
- Assignment upsert, unknown tiers rejected
- Tier changes never rewrite usage
- Overrides apply to the effective tier and expire
- Entitlement reads fail open on the last known tier
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from studybuddy.core.errors import StoreUnavailableError, ValidationError
from studybuddy.features.limits.service import QuotaEnforcer
from studybuddy.features.tiers import service as tier_service
from studybuddy.features.tiers.service import (
    assign_tier,
    clear_limit_override,
    get_active_overrides,
    get_user_tier,
    get_user_tier_id,
    get_user_tier_id_or_cached,
    list_active_overrides,
    resolve_effective_tier,
    set_limit_override,
)
from studybuddy.models.usage import ActionRequest


def test_unassigned_user_is_on_fallback_tier(catalog):
    assert get_user_tier("u1") is None
    assert get_user_tier_id("u1", catalog) == "free"
    assert resolve_effective_tier("u1", catalog).tier_id == "free"


def test_assign_and_reassign(catalog):
    first = assign_tier("u1", "pro", catalog)
    assert first.tier_id == "pro"
    assert get_user_tier("u1").tier_id == "pro"

    assign_tier("u1", "premium", catalog)
    assert get_user_tier_id("u1", catalog) == "premium"


def test_assign_unknown_tier_rejected(catalog):
    with pytest.raises(ValidationError):
        assign_tier("u1", "enterprise", catalog)
    assert get_user_tier("u1") is None


def test_tier_change_preserves_period_usage(catalog):
    clock = lambda: datetime(2024, 3, 15, tzinfo=timezone.utc)
    enforcer = QuotaEnforcer(max_retries=3, clock=clock)
    assign_tier("u1", "pro", catalog)
    request = ActionRequest(user_id="u1", quota_name="questionsPerMonth", amount=150)
    assert enforcer.consume(request, resolve_effective_tier("u1", catalog)).allowed is True

    # Downgrade mid-period: usage stays, free limit now applies
    assign_tier("u1", "free", catalog)
    assert enforcer.ledger.get_usage("u1", "2024-03", "questionsPerMonth") == 150
    result = enforcer.check(ActionRequest(user_id="u1", quota_name="questionsPerMonth"), resolve_effective_tier("u1", catalog))
    assert result.allowed is False
    assert result.remaining == 0


def test_override_applies_to_effective_tier(catalog):
    set_limit_override("free", "questionsPerMonth", 500, created_by="support")
    tier = resolve_effective_tier("u1", catalog)
    assert tier.limits["questionsPerMonth"] == 500
    assert tier.limits["topicsPerAccount"] == 3
    # Catalog snapshot untouched
    assert catalog.get_tier("free").limits["questionsPerMonth"] == 100


def test_override_replaces_previous_value(catalog):
    set_limit_override("free", "questionsPerMonth", 500)
    set_limit_override("free", "questionsPerMonth", -1)
    assert get_active_overrides("free") == {"questionsPerMonth": -1}
    assert len(list_active_overrides()) == 1


def test_expired_override_is_ignored(catalog, fixed_now):
    set_limit_override("free", "questionsPerMonth", 500, expires_at=fixed_now + timedelta(days=1))
    assert get_active_overrides("free", now=fixed_now) == {"questionsPerMonth": 500}
    assert get_active_overrides("free", now=fixed_now + timedelta(days=2)) == {}
    assert resolve_effective_tier("u1", catalog, now=fixed_now + timedelta(days=2)).limits["questionsPerMonth"] == 100


def test_override_validation(catalog):
    with pytest.raises(ValidationError):
        set_limit_override("free", "questionsPerMonth", -5)
    with pytest.raises(ValidationError):
        set_limit_override("enterprise", "questionsPerMonth", 5, catalog=catalog)


def test_clear_overrides(catalog):
    set_limit_override("free", "questionsPerMonth", 500)
    set_limit_override("free", "storageBytes", 1)
    assert clear_limit_override("free", "storageBytes") == 1
    assert get_active_overrides("free") == {"questionsPerMonth": 500}
    assert clear_limit_override("free") == 1
    assert get_active_overrides("free") == {}


def test_entitlement_read_uses_last_known_tier_on_outage(catalog, monkeypatch):
    assign_tier("u1", "pro", catalog)
    assert get_user_tier_id_or_cached("u1", catalog) == ("pro", False)

    def store_down(user_id):
        raise StoreUnavailableError()

    monkeypatch.setattr(tier_service, "get_user_tier", store_down)
    assert get_user_tier_id_or_cached("u1", catalog) == ("pro", True)
    assert get_user_tier_id_or_cached("stranger", catalog) == ("free", True)


def test_limit_resolution_fails_closed_on_outage(catalog, monkeypatch):
    def store_down(user_id):
        raise StoreUnavailableError()

    monkeypatch.setattr(tier_service, "get_user_tier", store_down)
    with pytest.raises(StoreUnavailableError):
        resolve_effective_tier("u1", catalog)


def test_override_calls_surface_store_outage(catalog, monkeypatch):
    def broken_session(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(tier_service, "get_db_session", broken_session)
    with pytest.raises(StoreUnavailableError):
        set_limit_override("free", "questionsPerMonth", 500, catalog=catalog)
    with pytest.raises(StoreUnavailableError):
        clear_limit_override("free")
    with pytest.raises(StoreUnavailableError):
        list_active_overrides()
