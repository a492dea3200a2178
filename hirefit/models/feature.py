"""
Feature catalog and per-tenant overrides.

A missing TenantFeature row means "use the definition's defaults".
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, ForeignKey, UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import enum
from hirefit.database import Base
from hirefit.models.tenant import first_of_month


class FeatureType(str, enum.Enum):
    standard = "standard"      # Always included (core features)
    freemium = "freemium"      # Free with limits
    premium = "premium"        # Paid feature
    addon = "addon"            # Optional paid add-on
    enterprise = "enterprise"  # Enterprise-only


class FeatureDefinition(Base):
    __tablename__ = "feature_definitions"

    id = Column(String(50), primary_key=True)  # e.g. "ai_screening"
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    category = Column(String(50), default="core")
    type = Column(SQLEnum(FeatureType), default=FeatureType.standard, nullable=False)
    default_enabled = Column(Boolean, default=False, nullable=False)
    usage_limited = Column(Boolean, default=False, nullable=False)
    default_limit = Column(Integer, nullable=True)  # None = unlimited
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)


class TenantFeature(Base):
    __tablename__ = "tenant_features"
    __table_args__ = (UniqueConstraint("tenant_id", "feature_id", name="uq_tenant_feature"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_id = Column(String(50), ForeignKey("feature_definitions.id"), nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    usage_limit = Column(Integer, nullable=True)  # None = inherit the definition's default
    usage_count = Column(Integer, default=0, nullable=False)
    usage_reset_date = Column(Date, default=lambda: first_of_month(), nullable=False)

    tenant = relationship("Tenant", back_populates="features")
    feature = relationship("FeatureDefinition")
