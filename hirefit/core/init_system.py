import logging
from sqlalchemy.orm import Session

from hirefit.database import SessionLocal
from hirefit.models.feature import FeatureDefinition, FeatureType

logger = logging.getLogger(__name__)

# A stored limit below zero means unlimited (both tenant and feature quotas)
UNLIMITED = -1

# Default feature definitions for the platform
FEATURES = [
    {
        "id": "core",
        "name": "Core Platform",
        "description": "Candidates, Jobs, Resume Management - Essential platform features",
        "category": "core",
        "type": FeatureType.standard,
        "default_enabled": True,
        "usage_limited": False,
        "default_limit": None,
        "sort_order": 1,
    },
    {
        "id": "ai_screening",
        "name": "AI Resume Screening",
        "description": "AI-powered resume parsing, analysis, and scoring against job requirements",
        "category": "ai",
        "type": FeatureType.freemium,
        "default_enabled": True,
        "usage_limited": True,
        "default_limit": 20,  # AI scores per month on the free tier
        "sort_order": 2,
    },
    {
        "id": "ai_interview",
        "name": "AI Interview Evaluation",
        "description": "AI-assisted candidate evaluation during interviews with structured feedback",
        "category": "ai",
        "type": FeatureType.premium,
        "default_enabled": False,
        "usage_limited": True,
        "default_limit": 10,
        "sort_order": 3,
    },
    {
        "id": "scheduler",
        "name": "Interview Scheduler",
        "description": "Calendar integration and automated interview scheduling with candidates",
        "category": "scheduling",
        "type": FeatureType.addon,
        "default_enabled": False,
        "usage_limited": False,
        "default_limit": None,
        "sort_order": 4,
    },
    {
        "id": "analytics",
        "name": "Advanced Analytics",
        "description": "Comprehensive hiring metrics, reports, and pipeline analytics",
        "category": "analytics",
        "type": FeatureType.premium,
        "default_enabled": False,
        "usage_limited": False,
        "default_limit": None,
        "sort_order": 5,
    },
    {
        "id": "integrations",
        "name": "ATS/HRIS Integrations",
        "description": "Connect to external systems like Workday, Greenhouse, Lever, etc.",
        "category": "integrations",
        "type": FeatureType.enterprise,
        "default_enabled": False,
        "usage_limited": False,
        "default_limit": None,
        "sort_order": 6,
    },
]

# Subscription tier -> included features and per-feature limits
TIER_FEATURES = {
    "free": {
        "features": ["core", "ai_screening"],
        "limits": {"ai_screening": 20},
    },
    "pro": {
        "features": ["core", "ai_screening", "scheduler"],
        "limits": {"ai_screening": 100},
    },
    "team": {
        "features": ["core", "ai_screening", "scheduler", "analytics", "ai_interview"],
        "limits": {"ai_screening": 500, "ai_interview": 50},
    },
    "enterprise": {
        "features": ["core", "ai_screening", "scheduler", "analytics", "ai_interview", "integrations"],
        "limits": {"ai_screening": UNLIMITED, "ai_interview": UNLIMITED},
    },
}

PRICING_TIERS = [
    {
        "id": "free",
        "name": "Free",
        "price": 0,
        "price_label": "$0/mo",
        "description": "For individual HR professionals",
        "limits": {"max_jobs": 3, "max_candidates": 50, "max_ai_scores_per_month": 20, "max_team_members": 1},
        "features": [
            "3 active job postings",
            "50 candidates",
            "20 AI resume scores/month",
            "Unlimited resume uploads",
            "Basic support",
        ],
    },
    {
        "id": "pro",
        "name": "Pro",
        "price": 29,
        "price_label": "$29/mo",
        "description": "For growing professionals",
        "limits": {"max_jobs": 10, "max_candidates": 500, "max_ai_scores_per_month": 100, "max_team_members": 1},
        "features": [
            "10 active job postings",
            "500 candidates",
            "100 AI resume scores/month",
            "Advanced analytics",
            "Priority support",
        ],
        "popular": True,
    },
    {
        "id": "team",
        "name": "Team",
        "price": 79,
        "price_label": "$79/mo",
        "description": "For small teams",
        "limits": {"max_jobs": 50, "max_candidates": 2000, "max_ai_scores_per_month": 500, "max_team_members": 5},
        "features": [
            "Unlimited job postings",
            "2,000 candidates",
            "500 AI resume scores/month",
            "Up to 5 team members",
            "Team collaboration",
            "Advanced analytics",
        ],
    },
    {
        "id": "enterprise",
        "name": "Enterprise",
        "price": None,
        "price_label": "Custom",
        "description": "For large organizations",
        "limits": {
            "max_jobs": UNLIMITED,
            "max_candidates": UNLIMITED,
            "max_ai_scores_per_month": UNLIMITED,
            "max_team_members": UNLIMITED,
        },
        "features": [
            "Unlimited everything",
            "SSO integration",
            "API access",
            "Custom integrations",
            "Dedicated support",
            "SLA guarantee",
        ],
    },
]


def seed_feature_definitions(db: Session) -> int:
    """
    Upsert the feature catalog. Safe to run on every startup.
    Returns the number of definitions written.
    """
    for definition in FEATURES:
        feature = db.query(FeatureDefinition).filter(FeatureDefinition.id == definition["id"]).first()
        if feature is None:
            db.add(FeatureDefinition(**definition))
        else:
            for key, value in definition.items():
                setattr(feature, key, value)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Seeded {len(FEATURES)} feature definitions")
    return len(FEATURES)


def init_system_data():
    """
    Checks if the system needs initialization.
    Seeds the feature catalog; tenants and users are provisioned elsewhere.
    """
    db = SessionLocal()
    try:
        seed_feature_definitions(db)
    except Exception as e:
        logger.error(f"Startup initialization failed: {e}")
        raise
    finally:
        db.close()
