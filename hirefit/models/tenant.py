"""
Tenant Model.
Every row in the system is scoped by tenant_id. The quota fields here are the
tenant-wide plan limits; per-feature quotas live on TenantFeature.
"""
from datetime import date, datetime, timezone

from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hirefit.database import Base


def first_of_month(today: date = None) -> date:
    today = today or datetime.now(timezone.utc).date()
    return today.replace(day=1)


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    type = Column(String(20), default="personal", nullable=False)  # personal | company
    subscription_tier = Column(String(20), default="free", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Plan limits; None or a negative value means unlimited
    max_jobs = Column(Integer, default=3)
    max_candidates = Column(Integer, default=50)
    max_team_members = Column(Integer, default=1)
    max_ai_scores_per_month = Column(Integer, default=20)

    ai_scores_used_this_month = Column(Integer, default=0, nullable=False)
    usage_reset_date = Column(Date, default=lambda: first_of_month(), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")
    jobs = relationship("Job", back_populates="tenant", cascade="all, delete-orphan")
    features = relationship("TenantFeature", back_populates="tenant", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Tenant {self.slug} ({self.subscription_tier})>"
