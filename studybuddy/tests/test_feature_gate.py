# studybuddy/tests/test_feature_gate.py
from studybuddy.features.flags.service import FeatureGate
from studybuddy.features.tiers.catalog import TierCatalog
from studybuddy.features.tiers.defaults import default_feature_flags, default_tiers
from studybuddy.models.feature_flag import FeatureFlag, FeatureStatus


def _catalog(flags=None, ads_enabled=True):
    return TierCatalog(
        default_tiers(),
        default_feature_flags() if flags is None else flags,
        ads_enabled=ads_enabled,
    )


def test_tier_entitlement_decides_when_flag_enabled():
    catalog = _catalog()
    gate = FeatureGate(catalog)
    assert gate.has_feature(catalog.get_tier("pro"), "advancedAI") is True
    assert gate.has_feature(catalog.get_tier("free"), "advancedAI") is False


def test_global_kill_switch_wins_over_tier():
    flags = [FeatureFlag(name="advancedAI", enabled=False, status=FeatureStatus.BETA)]
    catalog = _catalog(flags)
    gate = FeatureGate(catalog)

    premium = catalog.get_tier("premium")
    assert premium.allows("advancedAI") is True
    assert gate.has_feature(premium, "advancedAI") is False
    assert gate.describe(premium, "advancedAI") == {
        "feature": "advancedAI",
        "enabled": False,
        "tierAllows": True,
        "globallyEnabled": False,
        "status": "beta",
    }


def test_unregistered_feature_has_no_kill_switch():
    catalog = _catalog(flags=[])
    gate = FeatureGate(catalog)
    assert gate.is_feature_globally_enabled("sync") is True
    assert gate.feature_status("sync") == FeatureStatus.STABLE
    assert gate.has_feature(catalog.get_tier("pro"), "sync") is True


def test_unknown_feature_is_denied():
    catalog = _catalog()
    gate = FeatureGate(catalog)
    assert gate.has_feature(catalog.get_tier("premium"), "timeTravel") is False


def test_feature_status_from_flag():
    gate = FeatureGate(_catalog())
    assert gate.feature_status("sync") == FeatureStatus.ALPHA
    assert gate.feature_status("basicAI") == FeatureStatus.STABLE


def test_ads_need_global_switch_and_tier():
    catalog = _catalog(ads_enabled=True)
    assert FeatureGate(catalog).ads_enabled(catalog.get_tier("free")) is True
    assert FeatureGate(catalog).ads_enabled(catalog.get_tier("pro")) is False

    off = _catalog(ads_enabled=False)
    assert FeatureGate(off).ads_enabled(off.get_tier("free")) is False
    assert FeatureGate(off, ads_enabled=True).ads_enabled(off.get_tier("free")) is True
