"""
Resume Scoring Agent.

Per-resume flow:
    received -> entitlement_checked -> job_loaded -> analyzed -> usage_recorded -> persisted | failed

Quota is only consumed after a successful analysis. The agent never retries;
redelivery is the queue consumer's decision.
"""
import enum
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hirefit.core.exceptions import NotFoundError
from hirefit.models.application import Application
from hirefit.models.candidate import Candidate
from hirefit.models.job import Job
from hirefit.models.resume import ProcessingStatus, Resume, ResumeScore
from hirefit.schemas.ai import JobContext, ProviderHealth, ResumeAnalysisInput, ResumeAnalysisResult
from hirefit.schemas.resume import ProcessingOutcome
from hirefit.services.ai.base import AIProvider
from hirefit.services.base import BaseService
from hirefit.services.features import FeatureService
from hirefit.services.usage import UsageService

logger = logging.getLogger(__name__)

AI_SCREENING_FEATURE = "ai_screening"
RUBRIC_VERSION = "1.0"


class ScoringStage(str, enum.Enum):
    received = "received"
    entitlement_checked = "entitlement_checked"
    job_loaded = "job_loaded"
    analyzed = "analyzed"
    usage_recorded = "usage_recorded"
    persisted = "persisted"
    failed = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def placeholder_email(resume_id: int) -> str:
    """Stand-in address for resumes without an email, so they are never merged."""
    return f"resume-{resume_id}@unknown.invalid"


class ResumeScoringAgent(BaseService):
    def __init__(self, db: Session, provider: AIProvider):
        super().__init__(db)
        self.provider = provider
        self.features = FeatureService(db)
        self.usage = UsageService(db)

    def _stage(self, resume_ref: str, stage: ScoringStage):
        logger.debug(f"Scoring {resume_ref}: {stage.value}")

    def load_job_context(self, job_id: int, tenant_id: int) -> JobContext:
        job = self.db.query(Job).filter(Job.id == job_id, Job.tenant_id == tenant_id).first()
        if not job:
            raise NotFoundError("Job not found")

        requirements = job.requirements if isinstance(job.requirements, list) else []
        return JobContext(
            id=job.id,
            title=job.title,
            description=job.description or "",
            requirements=[str(r) for r in requirements],
            department=job.department,
            location=job.location,
            employment_type=job.employment_type,
            experience_level=job.experience_level,
        )

    def score_resume(
        self,
        resume_text: str,
        job_id: int,
        tenant_id: int,
        parsed_data_hint: Optional[dict] = None,
        resume_ref: str = "resume",
    ) -> ResumeAnalysisResult:
        """Entitlement check, job load, analysis and feature usage, in that order."""
        self._stage(resume_ref, ScoringStage.received)

        self.features.check_feature_limit(tenant_id, AI_SCREENING_FEATURE)
        self._stage(resume_ref, ScoringStage.entitlement_checked)

        job = self.load_job_context(job_id, tenant_id)
        self._stage(resume_ref, ScoringStage.job_loaded)

        result = self.provider.analyze_resume(
            ResumeAnalysisInput(resume_text=resume_text, job=job, parsed_data_hint=parsed_data_hint)
        )
        self._stage(resume_ref, ScoringStage.analyzed)

        self.features.increment_usage(tenant_id, AI_SCREENING_FEATURE)
        self._stage(resume_ref, ScoringStage.usage_recorded)

        return result

    def process_resume(
        self,
        resume_id: int,
        job_id: int,
        tenant_id: int,
        user_id: Optional[int],
        resume_text: str,
        parse_confidence: float,
    ) -> ProcessingOutcome:
        resume_ref = f"resume {resume_id}"
        try:
            result = self.score_resume(resume_text, job_id, tenant_id, resume_ref=resume_ref)
            self.usage.increment_ai_score_usage(tenant_id)
            outcome = self.materialize(resume_id, job_id, tenant_id, user_id, result, resume_text, parse_confidence)
        except Exception:
            self._stage(resume_ref, ScoringStage.failed)
            raise
        self._stage(resume_ref, ScoringStage.persisted)
        return outcome

    def materialize(
        self,
        resume_id: int,
        job_id: int,
        tenant_id: int,
        user_id: Optional[int],
        result: ResumeAnalysisResult,
        resume_text: str,
        parse_confidence: float,
    ) -> ProcessingOutcome:
        """
        Persist candidate, score, resume state and application in one transaction.
        Safe to repeat for the same (resume, job), and to run concurrently for
        the same email: candidate and application are get-or-create and the
        score is overwritten in place.
        """
        data = result.candidate_data
        scores = result.scores
        now = _now()

        resume = self.db.query(Resume).filter(Resume.id == resume_id, Resume.tenant_id == tenant_id).first()
        if not resume:
            raise NotFoundError("Resume not found")

        job = self.db.query(Job).filter(Job.id == job_id, Job.tenant_id == tenant_id).first()
        if not job:
            raise NotFoundError("Job not found")

        email = (data.email or "").strip().lower() or placeholder_email(resume_id)

        candidate, candidate_created = self._get_or_create_candidate(
            tenant_id,
            email,
            lambda: Candidate(
                tenant_id=tenant_id,
                created_by_id=user_id,
                email=email,
                first_name=data.first_name,
                last_name=data.last_name,
                phone=data.phone or None,
                city=data.city,
                state=data.state,
                country=data.country,
                linkedin_url=data.linkedin_url,
                source="resume_upload",
                source_details=f"Uploaded for job: {job.title}",
                tags=data.skills[:5],
            ),
        )

        score = (
            self.db.query(ResumeScore)
            .filter(ResumeScore.resume_id == resume_id, ResumeScore.job_id == job_id)
            .first()
        )
        if score is None:
            score = ResumeScore(resume_id=resume_id, job_id=job_id)
            self.db.add(score)

        score.overall_score = scores.overall_score
        score.confidence = scores.confidence
        score.skills_match_score = scores.skills_match_score
        score.experience_match_score = scores.experience_match_score
        score.education_match_score = scores.education_match_score
        score.certifications_score = scores.certifications_score
        score.overall_fit_score = scores.overall_fit_score
        score.explanation = {
            "summary": scores.explanation,
            "matchedSkills": scores.matched_skills,
            "missingSkills": scores.missing_skills,
            "highlights": scores.highlights,
            "concerns": scores.concerns,
        }
        score.model_version = result.model_version
        score.rubric_version = RUBRIC_VERSION
        score.scored_at = now

        resume.candidate_id = candidate.id
        resume.is_primary = not self._has_other_primary(candidate.id, resume_id)
        resume.processing_status = ProcessingStatus.completed
        resume.processing_error = None
        resume.processed_at = now
        resume.raw_text = resume_text
        resume.parse_confidence = parse_confidence
        resume.parsed_data = data.model_dump(mode="json", exclude={"raw_text"})

        _, application_created = self._get_or_create_application(
            candidate.id,
            job_id,
            lambda: Application(
                candidate_id=candidate.id,
                job_id=job_id,
                status="new",
                notes=f"Auto-created from resume upload. AI Score: {scores.overall_score}%",
            ),
        )

        self._commit()

        logger.info(
            f"Materialized resume {resume_id} for job {job_id}: candidate {candidate.id} "
            f"(created={candidate_created}), score {scores.overall_score}"
        )
        return ProcessingOutcome(
            resume_id=resume_id,
            candidate_id=candidate.id,
            overall_score=scores.overall_score,
            confidence=scores.confidence,
            candidate_created=candidate_created,
            application_created=application_created,
        )

    def _find_candidate(self, tenant_id: int, email: str) -> Optional[Candidate]:
        return (
            self.db.query(Candidate)
            .filter(Candidate.tenant_id == tenant_id, Candidate.email == email)
            .first()
        )

    def _find_application(self, candidate_id: int, job_id: int) -> Optional[Application]:
        return (
            self.db.query(Application)
            .filter(Application.candidate_id == candidate_id, Application.job_id == job_id)
            .first()
        )

    def _has_other_primary(self, candidate_id: int, resume_id: int) -> bool:
        return self.db.query(
            exists().where(
                Resume.candidate_id == candidate_id,
                Resume.is_primary.is_(True),
                Resume.id != resume_id,
            )
        ).scalar()

    def _insert(self, row) -> bool:
        """Insert inside a savepoint. False when a unique constraint says the row already exists."""
        try:
            with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            return False
        return True

    def _get_or_create_candidate(
        self, tenant_id: int, email: str, build: Callable[[], Candidate]
    ) -> Tuple[Candidate, bool]:
        candidate = self._find_candidate(tenant_id, email)
        if candidate is not None:
            return candidate, False

        candidate = build()
        if self._insert(candidate):
            return candidate, True

        # Another upload created the same candidate first
        logger.info(f"Candidate {email} was created concurrently in tenant {tenant_id}, reusing it")
        return (
            self.db.query(Candidate)
            .filter(Candidate.tenant_id == tenant_id, Candidate.email == email)
            .one()
        ), False

    def _get_or_create_application(
        self, candidate_id: int, job_id: int, build: Callable[[], Application]
    ) -> Tuple[Application, bool]:
        application = self._find_application(candidate_id, job_id)
        if application is not None:
            return application, False

        application = build()
        if self._insert(application):
            return application, True

        return (
            self.db.query(Application)
            .filter(Application.candidate_id == candidate_id, Application.job_id == job_id)
            .one()
        ), False

    def get_provider_health(self) -> ProviderHealth:
        try:
            return self.provider.health_check()
        except Exception as e:
            logger.error(f"AI provider health check failed: {e}")
            return ProviderHealth(status="error", details={"provider": self.provider.name, "error": str(e)})
