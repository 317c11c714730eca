"""
Tests for the tier catalog.

Verifies:
- Unknown tiers fall back, never raise
- Ordering by ascending price
- Fallback catalog on load failure
- Refresh swaps the whole snapshot
"""
import json
import asyncio

import pytest

from studybuddy.features.tiers.catalog import (
    CatalogOptions,
    CatalogProvider,
    TierCatalog,
    fallback_catalog,
    format_limit,
    load_catalog,
)
from studybuddy.features.tiers.defaults import FALLBACK_TIER, default_feature_flags, default_tiers
from studybuddy.features.tiers.service import (
    make_catalog_loader,
    read_catalog_from_db,
    read_catalog_from_file,
    seed_catalog,
)
from studybuddy.models.tier import TierDefinition, UNLIMITED


def _source(tiers, flags=(), extras=None):
    return lambda: (tiers, flags, extras or {})


def test_get_tier_unknown_falls_back_to_free(catalog):
    tier = catalog.get_tier("platinum")
    assert tier.tier_id == "free"
    assert catalog.get_tier(None).tier_id == "free"


def test_get_all_tiers_ascending_by_price(catalog):
    assert [t.tier_id for t in catalog.get_all_tiers()] == ["free", "pro", "premium"]


def test_ordering_ignores_insertion_order():
    tiers = [
        TierDefinition(tier_id="b", name="B", price=5),
        TierDefinition(tier_id="c", name="C", price=1),
        TierDefinition(tier_id="a", name="A", price=5),
    ]
    snapshot = TierCatalog(tiers)
    assert [t.tier_id for t in snapshot.get_all_tiers()] == ["c", "a", "b"]


def test_top_tier_and_next_tier_up(catalog):
    free, pro, premium = catalog.get_all_tiers()
    assert catalog.is_top_tier(premium) is True
    assert catalog.is_top_tier(free) is False
    assert catalog.next_tier_up(free).tier_id == "pro"
    assert catalog.next_tier_up(pro).tier_id == "premium"
    assert catalog.next_tier_up(premium) is None


def test_load_catalog_failure_returns_fallback():
    def boom():
        raise RuntimeError("config unreadable")

    snapshot = load_catalog(boom, CatalogOptions())
    assert snapshot.is_fallback is True
    assert [t.tier_id for t in snapshot.get_all_tiers()] == [FALLBACK_TIER.tier_id]
    assert snapshot.get_tier("pro") == FALLBACK_TIER


def test_load_catalog_malformed_returns_fallback():
    assert load_catalog(_source([])).is_fallback is True
    assert load_catalog(_source([{"tier_id": "free"}])).is_fallback is True


def test_load_catalog_adds_missing_fallback_tier():
    pro_only = [TierDefinition(tier_id="pro", name="Pro", price=9.99, limits={"questionsPerMonth": 1500})]
    snapshot = load_catalog(_source(pro_only), CatalogOptions(fallback_tier="free"))
    assert snapshot.has_tier("free")
    assert snapshot.get_tier("unknown") == FALLBACK_TIER
    assert snapshot.is_fallback is False


def test_load_catalog_misconfigured_fallback_keeps_source_free_tier():
    source_free = next(t for t in default_tiers() if t.tier_id == "free")
    snapshot = load_catalog(_source(default_tiers()), CatalogOptions(fallback_tier="basic"))

    assert snapshot.fallback_tier_id == "free"
    assert snapshot.get_tier("free") == source_free
    assert snapshot.get_tier("free").features == source_free.features
    assert snapshot.get_tier("basic") == source_free
    assert len(snapshot.get_all_tiers()) == len(default_tiers())


def test_load_catalog_honours_file_extras():
    snapshot = load_catalog(
        _source(default_tiers(), extras={"ads_enabled": True, "upgrade_prompts_enabled": False}),
        CatalogOptions(ads_enabled=False, upgrade_prompts_enabled=True),
    )
    assert snapshot.ads_enabled is True
    assert snapshot.upgrade_prompts_enabled is False


def test_provider_refresh_swaps_snapshot():
    versions = iter([
        TierCatalog([TierDefinition(tier_id="free", name="Free v1")]),
        TierCatalog([TierDefinition(tier_id="free", name="Free v2")]),
    ])
    provider = CatalogProvider(lambda: next(versions))

    first = provider.catalog
    assert first.get_tier("free").name == "Free v1"

    second = provider.refresh()
    assert provider.catalog is second
    assert second.get_tier("free").name == "Free v2"
    # Old snapshot untouched for readers still holding it
    assert first.get_tier("free").name == "Free v1"


def test_refresh_loop_keeps_serving_when_reload_fails():
    calls = {"n": 0}
    good = TierCatalog(default_tiers())

    def loader():
        calls["n"] += 1
        if calls["n"] > 1:
            raise RuntimeError("boom")
        return good

    provider = CatalogProvider(loader, CatalogOptions(refresh_interval_ms=1))
    assert provider.catalog is good

    async def run_briefly():
        task = asyncio.create_task(provider.run_refresh_loop())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run_briefly())
    assert calls["n"] > 1
    assert provider.catalog is good


def test_stats_and_public_dict(catalog):
    stats = catalog.stats()
    assert stats["tiers_count"] == 3
    assert stats["features_enabled"] == len(default_feature_flags())
    assert stats["is_fallback"] is False

    public = catalog.to_public_dict()
    assert [t["id"] for t in public["tiers"]] == ["free", "pro", "premium"]
    assert public["features"]["offlineMode"] == {"enabled": True, "status": "beta"}
    assert public["tiers"][0]["limits"]["questionsPerMonth"] == 100


def test_format_limit():
    assert format_limit(UNLIMITED) == "Unlimited"
    assert format_limit(1500) == "1,500"
    assert format_limit(100 * 1024 * 1024, "storageBytes") == "100MB"
    assert format_limit(5 * 1024 * 1024 * 1024, "storage") == "5GB"


def test_fallback_catalog_is_conservative():
    snapshot = fallback_catalog()
    free = snapshot.get_tier("free")
    assert free.limits["questionsPerMonth"] == 100
    assert free.allows("offlineMode") is False


def test_seed_and_read_from_database():
    seed_catalog()
    seed_catalog()  # idempotent
    tiers, flags, extras = read_catalog_from_db()
    assert sorted(t.tier_id for t in tiers) == ["free", "premium", "pro"]
    assert {f.name for f in flags} == {f.name for f in default_feature_flags()}
    assert extras == {}

    loaded = make_catalog_loader(CatalogOptions(), config_path="")()
    assert loaded.source == "database"
    assert loaded.get_tier("pro").limits["questionsPerMonth"] == 1500


def test_unseeded_database_falls_back():
    loaded = make_catalog_loader(CatalogOptions(), config_path="")()
    assert loaded.is_fallback is True


def test_read_catalog_from_file(tmp_path):
    config_file = tmp_path / "app-config.json"
    config_file.write_text(json.dumps({
        "tiers": {
            "free": {
                "name": "Free",
                "limits": {"questionsPerMonth": 50, "topicsPerAccount": 3, "storagePerAccount": "50MB"},
                "features": {"basicAI": True, "offlineMode": False},
                "ads": {"enabled": True},
            },
            "pro": {
                "name": "Pro",
                "price": 9.99,
                "limits": {"questionsPerMonth": "unlimited"},
                "features": {"offlineMode": True},
                "ads": {"enabled": False},
            },
        },
        "app": {"features": {"offlineMode": {"enabled": False, "status": "beta"}}},
        "monetization": {"adsEnabled": True},
    }))

    snapshot = make_catalog_loader(CatalogOptions(), config_path=str(config_file))()
    assert snapshot.source == "file"
    free = snapshot.get_tier("free")
    assert free.limits["storageBytes"] == 50 * 1024 * 1024
    assert snapshot.get_tier("pro").is_unlimited("questionsPerMonth")
    assert snapshot.feature_flag("offlineMode").enabled is False
    assert snapshot.ads_enabled is True


def test_bad_file_falls_back(tmp_path):
    config_file = tmp_path / "broken.json"
    config_file.write_text("{not json")
    snapshot = make_catalog_loader(CatalogOptions(), config_path=str(config_file))()
    assert snapshot.is_fallback is True

    with pytest.raises(ValueError):
        missing_tiers = tmp_path / "empty.json"
        missing_tiers.write_text("{}")
        read_catalog_from_file(str(missing_tiers))
