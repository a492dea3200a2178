from pydantic import BaseModel, ConfigDict
from typing import Dict, List, Optional, Any
from datetime import datetime

from hirefit.models.resume import ProcessingStatus

# --- UPLOAD / PROCESSING SCHEMAS ---

class UploadedFile(BaseModel):
    """File handed to the orchestrator, independent of the HTTP framework."""
    original_file_name: str
    file_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

class ResumeUploadResponse(BaseModel):
    resume_id: int
    file_name: str
    status: str
    message: str
    provider: str

class RetryResponse(BaseModel):
    resume_id: int
    status: str
    message: str = "Resume re-queued for processing"

class CandidateSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str

class ResumeProcessingStatus(BaseModel):
    resume_id: int
    file_name: str
    status: str
    error: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    candidate: Optional[CandidateSummary] = None
    score: Optional[int] = None

class ProcessingOutcome(BaseModel):
    """What a successful pipeline run materialized."""
    resume_id: int
    candidate_id: int
    overall_score: int
    confidence: float
    candidate_created: bool
    application_created: bool

class QueueHealth(BaseModel):
    status: str  # ok | disabled | error
    queue: str
    error: Optional[str] = None

class AIStatus(BaseModel):
    configured_provider: str
    active_provider: str
    status: str
    details: Dict[str, Any] = {}
    queue: Optional[QueueHealth] = None

# --- CANDIDATE RESUME SCHEMAS ---

class ResumeScoreSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: int
    overall_score: int
    confidence: float
    scored_at: Optional[datetime] = None

class ResumeSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    candidate_id: Optional[int] = None
    job_id: Optional[int] = None
    original_file_name: str
    file_type: str
    file_size_bytes: int
    processing_status: ProcessingStatus
    processing_error: Optional[str] = None
    is_primary: bool
    uploaded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    scores: List[ResumeScoreSummary] = []
