# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    tenant, user, job, candidate, application, resume, feature
)

# Explicit class exports for cleaner imports
from .tenant import Tenant
from .user import User
from .job import Job, JobStatus
from .candidate import Candidate
from .application import Application
from .resume import Resume, ResumeScore, ProcessingStatus
from .feature import FeatureDefinition, TenantFeature, FeatureType

__all__ = [
    "Tenant",
    "User",
    "Job",
    "JobStatus",
    "Candidate",
    "Application",
    "Resume",
    "ResumeScore",
    "ProcessingStatus",
    "FeatureDefinition",
    "TenantFeature",
    "FeatureType",
]
