"""
AI provider contract.
Both the mock and the production provider consume and produce these models,
so the scoring agent never depends on a specific model's output format.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional


class ExperienceEntry(BaseModel):
    company: str = ""
    title: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    years: float = 0
    description: str = ""


class EducationEntry(BaseModel):
    institution: str = ""
    degree: str = ""
    field: str = ""
    graduation_year: Optional[int] = None


class ParsedCandidateData(BaseModel):
    first_name: str
    last_name: str
    email: str = ""
    phone: str = ""
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    linkedin_url: Optional[str] = None
    website_url: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    summary: str = ""
    raw_text: str = ""


class ResumeScores(BaseModel):
    overall_score: int = Field(ge=0, le=100)
    confidence: float = Field(ge=0.0, le=1.0)
    skills_match_score: int = Field(ge=0, le=100)
    experience_match_score: int = Field(ge=0, le=100)
    education_match_score: int = Field(ge=0, le=100)
    certifications_score: Optional[int] = Field(default=None, ge=0, le=100)
    overall_fit_score: int = Field(ge=0, le=100)
    explanation: str = ""
    matched_skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)
    highlights: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)


class JobContext(BaseModel):
    id: int
    title: str
    description: str = ""
    requirements: List[str] = Field(default_factory=list)
    department: Optional[str] = None
    location: Optional[str] = None
    employment_type: Optional[str] = None
    experience_level: Optional[str] = None


class DocumentParseResult(BaseModel):
    text: str
    page_count: int = 1
    confidence: float = Field(ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ResumeAnalysisInput(BaseModel):
    resume_text: str
    job: JobContext
    parsed_data_hint: Optional[Dict[str, Any]] = None


class ResumeAnalysisResult(BaseModel):
    candidate_data: ParsedCandidateData
    scores: ResumeScores
    model_version: str
    processing_time_ms: int = 0


class ProviderHealth(BaseModel):
    status: Literal["ok", "degraded", "error"]
    details: Dict[str, str] = Field(default_factory=dict)
