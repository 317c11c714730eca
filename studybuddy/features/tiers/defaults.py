"""
studybuddy/features/tiers/defaults.py

Bundled static tier configuration.

FALLBACK_TIER is the single conservative default used by both the loader
(when the catalog cannot be read) and the evaluator (unknown tier ids).
"""

from studybuddy.models.feature_flag import FeatureFlag, FeatureStatus
from studybuddy.models.tier import AdPolicy, TierDefinition, UNLIMITED


MB = 1024 * 1024
GB = 1024 * MB


DEFAULT_TIERS = {
    "free": {
        "name": "Free",
        "price": 0,
        "currency": "USD",
        "interval": "month",
        "limits": {
            "questionsPerMonth": 100,
            "topicsPerAccount": 3,
            "storageBytes": 100 * MB,
        },
        "features": {
            "basicAI": True,
            "advancedAI": False,
            "offlineMode": False,
            "sync": False,
            "prioritySupport": False,
            "customization": False,
        },
        "ads": {"enabled": True, "frequency": "low"},
    },
    "pro": {
        "name": "Pro",
        "price": 9.99,
        "currency": "USD",
        "interval": "month",
        "limits": {
            "questionsPerMonth": 1500,
            "topicsPerAccount": UNLIMITED,
            "storageBytes": 5 * GB,
        },
        "features": {
            "basicAI": True,
            "advancedAI": True,
            "offlineMode": True,
            "sync": True,
            "prioritySupport": True,
            "customization": False,
        },
        "ads": {"enabled": False},
    },
    "premium": {
        "name": "Premium",
        "price": 19.99,
        "currency": "USD",
        "interval": "month",
        "limits": {
            "questionsPerMonth": UNLIMITED,
            "topicsPerAccount": UNLIMITED,
            "storageBytes": UNLIMITED,
        },
        "features": {
            "basicAI": True,
            "advancedAI": True,
            "offlineMode": True,
            "sync": True,
            "prioritySupport": True,
            "customization": True,
        },
        "ads": {"enabled": False},
    },
}


DEFAULT_FEATURE_FLAGS = {
    "basicAI": {"enabled": True, "status": "stable", "description": "Question generation from uploaded material"},
    "advancedAI": {"enabled": True, "status": "beta", "description": "Larger models and explanations"},
    "offlineMode": {"enabled": True, "status": "beta", "description": "Desktop app with local SQLite mirror"},
    "sync": {"enabled": True, "status": "alpha", "description": "Two-way sync between desktop and cloud"},
    "prioritySupport": {"enabled": True, "status": "stable", "description": "Priority email support"},
    "customization": {"enabled": True, "status": "alpha", "description": "Custom themes and study layouts"},
}


# Conservative limits; everything optional is off.
FALLBACK_TIER = TierDefinition(
    tier_id="free",
    name="Free",
    price=0,
    limits={
        "questionsPerMonth": 100,
        "topicsPerAccount": 3,
        "storageBytes": 100 * MB,
    },
    features={"basicAI": True},
    ads=AdPolicy(enabled=True, frequency="low"),
)


def tier_from_config(tier_id: str, config: dict) -> TierDefinition:
    """Build a TierDefinition from the dict form used by defaults and JSON files."""
    ads = config.get("ads") or {}
    return TierDefinition(
        tier_id=tier_id,
        name=config.get("name", tier_id),
        price=config.get("price", 0),
        currency=config.get("currency", "USD"),
        interval=config.get("interval", "month"),
        limits=dict(config.get("limits") or {}),
        features=dict(config.get("features") or {}),
        ads=AdPolicy(enabled=bool(ads.get("enabled", False)), frequency=ads.get("frequency")),
    )


def flag_from_config(name: str, config: dict) -> FeatureFlag:
    return FeatureFlag(
        name=name,
        enabled=bool(config.get("enabled", True)),
        status=FeatureStatus(config.get("status", FeatureStatus.STABLE.value)),
        description=config.get("description"),
    )


def default_tiers() -> list:
    return [tier_from_config(tier_id, config) for tier_id, config in DEFAULT_TIERS.items()]


def default_feature_flags() -> list:
    return [flag_from_config(name, config) for name, config in DEFAULT_FEATURE_FLAGS.items()]
