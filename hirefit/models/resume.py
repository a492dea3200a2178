from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime, ForeignKey, JSON,
    UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import enum
from hirefit.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class ProcessingStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class Resume(Base):
    __tablename__ = "resumes"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=True, index=True)
    candidate_id = Column(Integer, ForeignKey("candidates.id"), nullable=True, index=True)
    uploaded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    original_file_name = Column(String, nullable=False)
    storage_path = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size_bytes = Column(Integer, default=0)

    processing_status = Column(SQLEnum(ProcessingStatus), default=ProcessingStatus.pending, index=True, nullable=False)
    processing_error = Column(Text, nullable=True)
    # Id of the one queued message allowed to claim this resume
    processing_message_id = Column(String, nullable=True, index=True)

    raw_text = Column(Text, nullable=True)
    parsed_data = Column(JSON, nullable=True)
    parse_confidence = Column(Float, nullable=True)
    is_primary = Column(Boolean, default=True, nullable=False)

    uploaded_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    candidate = relationship("Candidate", back_populates="resumes")
    scores = relationship("ResumeScore", back_populates="resume", cascade="all, delete-orphan")


class ResumeScore(Base):
    __tablename__ = "resume_scores"
    __table_args__ = (UniqueConstraint("resume_id", "job_id", name="uq_resume_score_resume_job"),)

    id = Column(Integer, primary_key=True, index=True)
    resume_id = Column(Integer, ForeignKey("resumes.id", ondelete="CASCADE"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)

    overall_score = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=False)
    skills_match_score = Column(Integer)
    experience_match_score = Column(Integer)
    education_match_score = Column(Integer)
    certifications_score = Column(Integer, nullable=True)
    overall_fit_score = Column(Integer)

    # {summary, matchedSkills, missingSkills, highlights, concerns}
    explanation = Column(JSON, default=dict)
    model_version = Column(String)
    rubric_version = Column(String, default="1.0")
    scored_at = Column(DateTime(timezone=True), default=_utcnow)

    resume = relationship("Resume", back_populates="scores")
