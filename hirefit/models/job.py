from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from hirefit.database import Base

class JobStatus(str, enum.Enum):
    draft = "draft"
    open = "open"
    paused = "paused"
    closed = "closed"

# Statuses that count against the tenant's job limit
ACTIVE_JOB_STATUSES = (JobStatus.draft, JobStatus.open, JobStatus.paused)

class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    title = Column(String, index=True, nullable=False)
    description = Column(Text, default="")
    requirements = Column(JSON, default=list)  # list of requirement strings
    department = Column(String, nullable=True)
    location = Column(String, nullable=True)
    employment_type = Column(String, default="full_time")
    experience_level = Column(String, nullable=True)
    status = Column(SQLEnum(JobStatus), default=JobStatus.open, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tenant = relationship("Tenant", back_populates="jobs")
