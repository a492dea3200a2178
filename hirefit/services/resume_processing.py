"""
Resume Processing Orchestrator.

Upload -> preconditions -> blob write -> Resume row (processing) -> dispatch.
Dispatch goes to the queue when the publisher is enabled, otherwise to an
inline background task. Both paths end in `process_resume_directly`, so the
outcome does not depend on how a resume was dispatched.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import update
from sqlalchemy.orm import Session

from hirefit.core.config import settings
from hirefit.core.exceptions import ConflictError, NotFoundError, QueueError, ValidationError
from hirefit.database import SessionLocal, session_scope
from hirefit.models.candidate import Candidate
from hirefit.models.job import Job
from hirefit.models.resume import ProcessingStatus, Resume, ResumeScore
from hirefit.schemas.resume import (
    AIStatus,
    CandidateSummary,
    ProcessingOutcome,
    ResumeProcessingStatus,
    ResumeUploadResponse,
    RetryResponse,
    UploadedFile,
)
from hirefit.services.ai.base import AIProvider
from hirefit.services.base import BaseService
from hirefit.services.document_parser import DocumentParser, get_extension, validate_file
from hirefit.services.features import FeatureService
from hirefit.services.queue import QueuePublisher
from hirefit.services.scoring_agent import AI_SCREENING_FEATURE, ResumeScoringAgent
from hirefit.services.storage import LocalBlobStore, build_storage_path
from hirefit.services.usage import UsageService

logger = logging.getLogger(__name__)

# Statuses a queued message may still act on
AWAITING_PROCESSING = (ProcessingStatus.pending, ProcessingStatus.processing)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def run_inline_processing(
    session_factory: Callable[[], Session],
    provider: AIProvider,
    resume_id: int,
    job_id: int,
    tenant_id: int,
    user_id: Optional[int],
    content: bytes,
    file_name: str,
    mime_type: str,
):
    """
    Background entry point for inline mode. Opens its own session and never
    raises: failures are already recorded on the Resume row.
    """
    with session_scope(session_factory) as db:
        try:
            ResumeProcessingService(db, provider).process_resume_directly(
                resume_id, job_id, tenant_id, user_id, content, file_name, mime_type
            )
        except Exception:
            logger.exception(f"Inline processing failed for resume {resume_id}")


class ResumeProcessingService(BaseService):
    def __init__(
        self,
        db: Session,
        provider: AIProvider,
        blob_store: Optional[LocalBlobStore] = None,
        publisher: Optional[QueuePublisher] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        super().__init__(db)
        self.provider = provider
        self.blob_store = blob_store
        self.publisher = publisher
        self.session_factory = session_factory

    # --- Upload ---

    def upload_and_process(
        self,
        tenant_id: int,
        user_id: int,
        job_id: int,
        file: UploadedFile,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ResumeUploadResponse:
        # Preconditions; nothing is written until all of them pass
        validate_file(file.file_type, file.size)
        UsageService(self.db).enforce_ai_score_limit(tenant_id)
        FeatureService(self.db).check_feature_limit(tenant_id, AI_SCREENING_FEATURE)
        UsageService(self.db).enforce_candidate_limit(tenant_id)

        job = self.db.query(Job).filter(Job.id == job_id, Job.tenant_id == tenant_id).first()
        if not job:
            raise NotFoundError("Job not found")

        storage_path = build_storage_path(tenant_id, job_id, get_extension(file.file_type))
        self.blob_store.write(storage_path, file.content)

        resume = Resume(
            tenant_id=tenant_id,
            job_id=job_id,
            uploaded_by_id=user_id,
            original_file_name=file.original_file_name,
            storage_path=storage_path,
            file_type=file.file_type,
            file_size_bytes=file.size,
            processing_status=ProcessingStatus.processing,
            processing_started_at=_now(),
            processing_message_id=self._new_message_id(),
        )
        self.db.add(resume)
        self._commit()
        self.db.refresh(resume)

        logger.info(f"Resume {resume.id} uploaded for job {job_id} by user {user_id}")

        mode = self._dispatch(resume, user_id, file.content, background_tasks)
        message = (
            "Resume queued for AI processing"
            if mode == "queued"
            else "Resume uploaded, AI processing started"
        )
        return ResumeUploadResponse(
            resume_id=resume.id,
            file_name=resume.original_file_name,
            status=ProcessingStatus.processing.value,
            message=message,
            provider=self.provider.name,
        )

    def _dispatch(
        self,
        resume: Resume,
        user_id: Optional[int],
        content: bytes,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> str:
        """
        Queue when the resume carries a message id, otherwise run inline.
        Returns the mode used.
        """
        message_id = resume.processing_message_id
        if message_id and self.publisher is not None:
            try:
                result = self.publisher.enqueue_resume_processing(
                    resume_id=resume.id,
                    job_id=resume.job_id,
                    tenant_id=resume.tenant_id,
                    user_id=user_id,
                    storage_path=resume.storage_path,
                    original_file_name=resume.original_file_name,
                    file_type=resume.file_type,
                    message_id=message_id,
                )
                if result.enqueued:
                    return "queued"
            except QueueError as e:
                logger.warning(f"Broker unreachable for resume {resume.id}, processing inline: {e}")

        if message_id:
            # A message may still have reached the broker; it must not claim
            self.db.execute(
                update(Resume)
                .where(Resume.id == resume.id, Resume.processing_message_id == message_id)
                .values(processing_message_id=None)
                .execution_options(synchronize_session=False)
            )
            self._commit()

        args = (
            self.session_factory,
            self.provider,
            resume.id,
            resume.job_id,
            resume.tenant_id,
            user_id,
            content,
            resume.original_file_name,
            resume.file_type,
        )
        if background_tasks is not None:
            background_tasks.add_task(run_inline_processing, *args)
        else:
            threading.Thread(
                target=run_inline_processing, args=args, name=f"resume-{resume.id}", daemon=True
            ).start()
        return "inline"

    def _new_message_id(self) -> Optional[str]:
        """Id for the next queued dispatch; None when resumes are processed inline."""
        if self.publisher is not None and self.publisher.is_enabled:
            return str(uuid.uuid4())
        return None

    # --- Processing ---

    def process_resume_directly(
        self,
        resume_id: int,
        job_id: int,
        tenant_id: int,
        user_id: Optional[int],
        content: bytes,
        file_name: str,
        mime_type: str,
        mark_failed: bool = True,
    ) -> ProcessingOutcome:
        """
        The single processing routine for inline and queued modes.
        On error the resume is marked failed (unless the caller owns that
        decision, as the queue consumer does) and the error is re-raised.
        """
        try:
            parsed = DocumentParser(self.provider).parse_document(content, file_name, mime_type)
            outcome = ResumeScoringAgent(self.db, self.provider).process_resume(
                resume_id, job_id, tenant_id, user_id, parsed.text, parsed.confidence
            )
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Processing failed for resume {resume_id}")
            if mark_failed:
                self.mark_failed(resume_id, str(e))
            raise

        logger.info(f"Resume {resume_id} processed: score {outcome.overall_score}")
        return outcome

    def mark_failed(self, resume_id: int, error: str) -> bool:
        """Terminal failure. A completed resume is never downgraded."""
        result = self.db.execute(
            update(Resume)
            .where(Resume.id == resume_id, Resume.processing_status != ProcessingStatus.completed)
            .values(processing_status=ProcessingStatus.failed, processing_error=error)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return bool(result.rowcount)

    def mark_retrying(self, resume_id: int, error: str) -> bool:
        """Keep the resume in processing with the last error recorded."""
        result = self.db.execute(
            update(Resume)
            .where(Resume.id == resume_id, Resume.processing_status.in_(AWAITING_PROCESSING))
            .values(processing_status=ProcessingStatus.processing, processing_error=error)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return bool(result.rowcount)

    def claim_for_processing(self, resume_id: int, tenant_id: int, message_id: str) -> bool:
        """
        Guard for queued deliveries: only the latest message dispatched for a
        resume still awaiting processing claims it. Messages superseded by a
        retry, or by an inline fallback, are refused. Refreshes
        processing_started_at for the reaper.
        """
        result = self.db.execute(
            update(Resume)
            .where(
                Resume.id == resume_id,
                Resume.tenant_id == tenant_id,
                Resume.processing_status.in_(AWAITING_PROCESSING),
                Resume.processing_message_id == message_id,
            )
            .values(processing_status=ProcessingStatus.processing, processing_started_at=_now())
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return bool(result.rowcount)

    # --- Retry ---

    def retry_processing(
        self,
        tenant_id: int,
        user_id: int,
        resume_id: int,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> RetryResponse:
        result = self.db.execute(
            update(Resume)
            .where(
                Resume.id == resume_id,
                Resume.tenant_id == tenant_id,
                Resume.processing_status == ProcessingStatus.failed,
            )
            .values(
                processing_status=ProcessingStatus.processing,
                processing_error=None,
                processing_started_at=_now(),
                processing_message_id=self._new_message_id(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            resume = self.db.query(Resume).filter(Resume.id == resume_id, Resume.tenant_id == tenant_id).first()
            if not resume:
                raise NotFoundError("Resume not found")
            raise ConflictError(
                f"Only failed resumes can be retried (current status: {resume.processing_status.value})"
            )
        self._commit()

        resume = self.db.query(Resume).filter(Resume.id == resume_id).first()
        if resume.job_id is None:
            self.mark_failed(resume_id, "Resume is not linked to a job")
            raise ValidationError("Resume is not linked to a job")

        try:
            content = self.blob_store.read(resume.storage_path)
        except NotFoundError:
            self.mark_failed(resume_id, "Stored resume file not found")
            raise

        logger.info(f"Retrying processing for resume {resume_id}")
        self._dispatch(resume, user_id, content, background_tasks)
        return RetryResponse(resume_id=resume_id, status=ProcessingStatus.processing.value)

    # --- Queries ---

    def get_job_processing_status(self, tenant_id: int, job_id: int) -> List[ResumeProcessingStatus]:
        job = self.db.query(Job).filter(Job.id == job_id, Job.tenant_id == tenant_id).first()
        if not job:
            raise NotFoundError("Job not found")

        resumes = (
            self.db.query(Resume)
            .populate_existing()
            .filter(Resume.tenant_id == tenant_id, Resume.job_id == job_id)
            .order_by(Resume.uploaded_at.desc(), Resume.id.desc())
            .all()
        )

        statuses = []
        for resume in resumes:
            candidate = None
            if resume.candidate_id:
                c = self.db.query(Candidate).filter(Candidate.id == resume.candidate_id).first()
                candidate = CandidateSummary.model_validate(c) if c else None

            score = (
                self.db.query(ResumeScore)
                .filter(ResumeScore.resume_id == resume.id, ResumeScore.job_id == job_id)
                .first()
            )
            statuses.append(ResumeProcessingStatus(
                resume_id=resume.id,
                file_name=resume.original_file_name,
                status=resume.processing_status.value,
                error=resume.processing_error,
                uploaded_at=resume.uploaded_at,
                processed_at=resume.processed_at,
                candidate=candidate,
                score=score.overall_score if score else None,
            ))
        return statuses

    def get_ai_status(self) -> AIStatus:
        health = ResumeScoringAgent(self.db, self.provider).get_provider_health()
        queue = self.publisher.health_check() if self.publisher else None
        return AIStatus(
            configured_provider=settings.ai.provider,
            active_provider=self.provider.name,
            status=health.status,
            details=health.details,
            queue=queue,
        )

    # --- Maintenance ---

    def sweep_stale_resumes(self, stale_after_minutes: Optional[int] = None) -> int:
        """Fail resumes stuck in processing longer than the window. Returns how many."""
        minutes = settings.stale_processing_minutes if stale_after_minutes is None else stale_after_minutes
        cutoff = _now() - timedelta(minutes=minutes)
        result = self.db.execute(
            update(Resume)
            .where(
                Resume.processing_status == ProcessingStatus.processing,
                Resume.processing_started_at < cutoff,
            )
            .values(
                processing_status=ProcessingStatus.failed,
                processing_error=f"Processing timed out after {minutes} minutes",
            )
            .execution_options(synchronize_session=False)
        )
        self._commit()
        if result.rowcount:
            logger.warning(f"Marked {result.rowcount} stale resume(s) as failed")
        return result.rowcount
