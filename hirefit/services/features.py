"""
Feature entitlement resolver.

Resolves whether a tenant may use a feature from the catalog defaults and an
optional per-tenant override row, and keeps the per-feature monthly usage
counter. Counter writes are single conditional UPDATE statements so that
concurrent uploads for one tenant never lose an increment.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hirefit.core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from hirefit.core.init_system import TIER_FEATURES, UNLIMITED
from hirefit.models.feature import FeatureDefinition, FeatureType, TenantFeature
from hirefit.models.tenant import first_of_month
from hirefit.schemas.feature import FeatureStatus
from hirefit.services.base import BaseService

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _same_month(a: date, b: date) -> bool:
    return (a.year, a.month) == (b.year, b.month)


def _effective_limit(raw_limit: Optional[int]) -> Optional[int]:
    """None means unlimited; stored negative limits are normalized to None."""
    if raw_limit is None or raw_limit < 0:
        return None
    return raw_limit


class FeatureService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    # --- Catalog ---

    def get_all_features(self) -> List[FeatureDefinition]:
        return (
            self.db.query(FeatureDefinition)
            .filter(FeatureDefinition.is_active == True)  # noqa: E712
            .order_by(FeatureDefinition.sort_order.asc())
            .all()
        )

    def get_feature(self, feature_id: str) -> FeatureDefinition:
        feature = self.db.query(FeatureDefinition).filter(FeatureDefinition.id == feature_id).first()
        if not feature:
            raise NotFoundError(f"Feature '{feature_id}' not found")
        return feature

    def _get_override(self, tenant_id: int, feature_id: str) -> Optional[TenantFeature]:
        return (
            self.db.query(TenantFeature)
            .filter(TenantFeature.tenant_id == tenant_id, TenantFeature.feature_id == feature_id)
            .first()
        )

    # --- Resolution (read-only) ---

    def get_feature_status(self, tenant_id: int, feature_id: str) -> FeatureStatus:
        feature = self.get_feature(feature_id)
        override = self._get_override(tenant_id, feature_id)

        # Standard features are always enabled
        is_standard = feature.type == FeatureType.standard
        enabled = is_standard or (override.enabled if override else feature.default_enabled)

        raw_limit = override.usage_limit if override and override.usage_limit is not None else feature.default_limit
        limit = _effective_limit(raw_limit)

        # A counter from an earlier month reads as zero until the next write resets it
        used = 0
        if override and _same_month(override.usage_reset_date, _today()):
            used = override.usage_count

        remaining = None if limit is None else max(0, limit - used)
        can_use = enabled and (not feature.usage_limited or limit is None or used < limit)

        return FeatureStatus(
            feature_id=feature.id,
            name=feature.name,
            description=feature.description or "",
            enabled=enabled,
            usage_limited=feature.usage_limited,
            limit=limit,
            used=used,
            remaining=remaining,
            can_use=can_use,
        )

    def is_feature_enabled(self, tenant_id: int, feature_id: str) -> bool:
        return self.get_feature_status(tenant_id, feature_id).enabled

    def can_use_feature(self, tenant_id: int, feature_id: str) -> bool:
        return self.get_feature_status(tenant_id, feature_id).can_use

    def check_feature_limit(self, tenant_id: int, feature_id: str) -> FeatureStatus:
        """
        Raises AccessDeniedError when the feature is disabled or its quota is exhausted.
        Both cases share the error kind; only the message differs.
        """
        status = self.get_feature_status(tenant_id, feature_id)

        if not status.enabled:
            raise AccessDeniedError(
                f"Feature '{status.name}' is not enabled for your account. Please upgrade your plan."
            )

        if status.usage_limited and not status.can_use:
            raise AccessDeniedError(
                f"You have reached the usage limit for '{status.name}' ({status.used}/{status.limit}). "
                "Please upgrade your plan for more usage."
            )

        return status

    def get_all_feature_statuses(self, tenant_id: int) -> List[FeatureStatus]:
        return [self.get_feature_status(tenant_id, f.id) for f in self.get_all_features()]

    def get_enabled_features(self, tenant_id: int) -> List[FeatureStatus]:
        return [s for s in self.get_all_feature_statuses(tenant_id) if s.enabled]

    # --- Usage counter ---

    def reset_usage_if_needed(self, tenant_id: int, feature_id: str) -> bool:
        """
        Zero the counter when the stored reset date is from an earlier month.
        Compare-and-set on the stored date, so concurrent callers reset at most once.
        Returns True when this call performed the reset.
        """
        override = self._get_override(tenant_id, feature_id)
        if override is None:
            return False

        today = _today()
        stored = override.usage_reset_date
        if _same_month(stored, today):
            return False

        result = self.db.execute(
            update(TenantFeature)
            .where(TenantFeature.id == override.id, TenantFeature.usage_reset_date == stored)
            .values(usage_count=0, usage_reset_date=first_of_month(today))
            .execution_options(synchronize_session=False)
        )
        self._commit()

        if result.rowcount:
            logger.info(f"Reset monthly usage for feature {feature_id} on tenant {tenant_id}")
        return bool(result.rowcount)

    def _ensure_override(self, tenant_id: int, feature: FeatureDefinition) -> None:
        if self._get_override(tenant_id, feature.id) is not None:
            return

        self.db.add(
            TenantFeature(
                tenant_id=tenant_id,
                feature_id=feature.id,
                enabled=feature.default_enabled or feature.type == FeatureType.standard,
                usage_limit=None,
                usage_count=0,
                usage_reset_date=first_of_month(_today()),
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker inserted the row first
            self.db.rollback()

    def increment_usage(self, tenant_id: int, feature_id: str) -> FeatureStatus:
        """
        Record one billable use. Not idempotent: call exactly once per action.
        Fails closed with AccessDeniedError when the quota is already exhausted.
        """
        status = self.check_feature_limit(tenant_id, feature_id)
        feature = self.get_feature(feature_id)

        if not feature.usage_limited:
            return status

        self._ensure_override(tenant_id, feature)
        self.reset_usage_if_needed(tenant_id, feature_id)

        stmt = update(TenantFeature).where(
            TenantFeature.tenant_id == tenant_id,
            TenantFeature.feature_id == feature_id,
        )
        if status.limit is not None:
            stmt = stmt.where(TenantFeature.usage_count < status.limit)

        result = self.db.execute(
            stmt.values(usage_count=TenantFeature.usage_count + 1).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise AccessDeniedError(
                f"You have reached the usage limit for '{feature.name}' ({status.limit}/{status.limit}). "
                "Please upgrade your plan for more usage."
            )
        self._commit()

        updated = self.get_feature_status(tenant_id, feature_id)
        logger.info(f"Incremented usage for feature {feature_id} on tenant {tenant_id}: {updated.used}")
        return updated

    # --- Administration ---

    def _upsert_override(self, tenant_id: int, feature: FeatureDefinition, **values: Any) -> TenantFeature:
        override = self._get_override(tenant_id, feature.id)
        if override is None:
            override = TenantFeature(
                tenant_id=tenant_id,
                feature_id=feature.id,
                enabled=feature.default_enabled,
                usage_count=0,
                usage_reset_date=first_of_month(_today()),
            )
            self.db.add(override)
        for key, value in values.items():
            setattr(override, key, value)
        self._commit()
        self.db.refresh(override)
        return override

    def enable_feature(self, tenant_id: int, feature_id: str, custom_limit: Optional[int] = None) -> TenantFeature:
        """Enable a feature; without a custom limit the definition's default applies."""
        feature = self.get_feature(feature_id)
        override = self._upsert_override(tenant_id, feature, enabled=True, usage_limit=custom_limit)
        logger.info(f"Enabled feature {feature_id} for tenant {tenant_id}")
        return override

    def disable_feature(self, tenant_id: int, feature_id: str) -> TenantFeature:
        feature = self.get_feature(feature_id)
        if feature.type == FeatureType.standard:
            raise ValidationError(f"Cannot disable standard feature '{feature.name}'")

        override = self._upsert_override(tenant_id, feature, enabled=False)
        logger.info(f"Disabled feature {feature_id} for tenant {tenant_id}")
        return override

    def set_feature_limit(self, tenant_id: int, feature_id: str, limit: Optional[int]) -> TenantFeature:
        """Set a tenant-specific limit. `limit=None` makes the feature unlimited for the tenant."""
        feature = self.get_feature(feature_id)
        if not feature.usage_limited:
            raise ValidationError(f"Feature '{feature.name}' does not have usage limits")

        stored = UNLIMITED if limit is None else limit
        override = self._upsert_override(tenant_id, feature, usage_limit=stored)
        logger.info(f"Set usage limit for feature {feature_id} on tenant {tenant_id}: {limit}")
        return override

    # --- Tiers ---

    def get_tier_features(self, tier: str) -> Dict[str, Any]:
        return TIER_FEATURES.get(tier, TIER_FEATURES["free"])

    def get_all_tiers(self) -> List[Dict[str, Any]]:
        return [{"name": name, **config} for name, config in TIER_FEATURES.items()]

    def initialize_tenant_features(self, tenant_id: int, tier: str) -> List[TenantFeature]:
        tier_config = self.get_tier_features(tier)
        results = [
            self.enable_feature(tenant_id, feature_id, tier_config["limits"].get(feature_id))
            for feature_id in tier_config["features"]
        ]
        logger.info(f"Initialized {len(results)} features for tenant {tenant_id} (tier: {tier})")
        return results

    def upgrade_tenant_features(self, tenant_id: int, new_tier: str) -> List[TenantFeature]:
        tier_config = self.get_tier_features(new_tier)
        results = self.initialize_tenant_features(tenant_id, new_tier)

        # Disable everything the new tier does not include
        for feature in self.get_all_features():
            if feature.id not in tier_config["features"] and feature.type != FeatureType.standard:
                self.disable_feature(tenant_id, feature.id)

        logger.info(f"Upgraded features for tenant {tenant_id} to tier: {new_tier}")
        return results
