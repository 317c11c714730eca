# studybuddy/tests/test_api_features.py
from studybuddy.core.errors import StoreUnavailableError
from studybuddy.features.tiers import service as tier_service


USER = {"X-User-Id": "u1"}


def test_free_user_blocked_from_advanced_ai(client):
    resp = client.get("/api/features/advancedAI", headers=USER)
    assert resp.status_code == 200
    body = resp.json()
    assert body["enabled"] is False
    assert body["tierAllows"] is False
    assert body["degraded"] is False
    assert body["upgradePrompt"]["trigger"] == "feature_blocked"
    assert body["upgradePrompt"]["suggestedTier"] == "pro"


def test_entitled_feature(client):
    body = client.get("/api/features/basicAI", headers=USER).json()
    assert body["enabled"] is True
    assert body["tier"] == "free"
    assert "upgradePrompt" not in body


def test_outage_serves_last_known_tier_degraded(client, admin_headers, monkeypatch):
    client.put("/api/admin/users/u1/tier", headers=admin_headers, json={"tierId": "pro"})

    def store_down(user_id):
        raise StoreUnavailableError()

    monkeypatch.setattr(tier_service, "get_user_tier", store_down)
    body = client.get("/api/features/advancedAI", headers=USER).json()
    assert body["tier"] == "pro"
    assert body["enabled"] is True
    assert body["degraded"] is True


def test_outage_for_unknown_user_uses_fallback_tier(client, monkeypatch):
    def store_down(user_id):
        raise StoreUnavailableError()

    monkeypatch.setattr(tier_service, "get_user_tier", store_down)
    body = client.get("/api/features/advancedAI", headers={"X-User-Id": "new-user"}).json()
    assert body["tier"] == "free"
    assert body["enabled"] is False
    assert body["degraded"] is True
    assert "upgradePrompt" not in body
