"""
Queue consumer for resume processing messages, plus the stale-resume reaper.

Each delivery is settled exactly once: completed, abandoned for redelivery or
dead-lettered. The database is updated before the message is settled, so a
crash in between leads to a redelivery that the status guard turns into a no-op.
"""
import logging
import threading
import time
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from hirefit.core.config import settings
from hirefit.core.exceptions import MalformedMessageError, UnknownMessageTypeError
from hirefit.core.logging import request_id_var
from hirefit.database import SessionLocal, session_scope
from hirefit.schemas.queue import (
    ResultScores,
    ResumeProcessingMessage,
    ResumeProcessingResultPayload,
    parse_queue_message,
)
from hirefit.services.ai.base import AIProvider
from hirefit.services.queue import Broker, QueuePublisher, ReceivedMessage
from hirefit.services.resume_processing import ResumeProcessingService
from hirefit.services.storage import LocalBlobStore

logger = logging.getLogger(__name__)

COMPLETED = "completed"
DROPPED = "dropped"
ABANDONED = "abandoned"
DEAD_LETTERED = "dead_lettered"

# Pause after a broker error before polling again
BROKER_ERROR_BACKOFF_SECONDS = 2.0


class QueueConsumer:
    def __init__(
        self,
        broker: Broker,
        provider: AIProvider,
        blob_store: LocalBlobStore,
        publisher: Optional[QueuePublisher] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        queue_name: Optional[str] = None,
        concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
        receive_timeout: Optional[float] = None,
    ):
        self.broker = broker
        self.provider = provider
        self.blob_store = blob_store
        self.publisher = publisher
        self.session_factory = session_factory
        self.queue_name = settings.queue.processing_queue if queue_name is None else queue_name
        self.concurrency = settings.queue.concurrency if concurrency is None else concurrency
        self.max_attempts = settings.queue.max_attempts if max_attempts is None else max_attempts
        self.receive_timeout = settings.queue.receive_timeout_seconds if receive_timeout is None else receive_timeout

        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self):
        if self.is_running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._worker_loop, name=f"resume-consumer-{i}", daemon=True)
            for i in range(self.concurrency)
        ]
        for t in self._threads:
            t.start()
        logger.info(f"Queue consumer started on '{self.queue_name}' with {self.concurrency} worker(s)")

    def stop(self, timeout: float = 10.0):
        """Stop polling and wait for in-flight messages to finish."""
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info("Queue consumer stopped")

    def _worker_loop(self):
        while not self._stop.is_set():
            try:
                received = self.broker.receive(self.queue_name, self.receive_timeout)
            except Exception:
                logger.exception("Queue receive failed")
                self._stop.wait(BROKER_ERROR_BACKOFF_SECONDS)
                continue

            if received is None:
                continue

            try:
                self.handle_message(received)
            except Exception:
                # The lock lapses after the visibility timeout and the broker redelivers
                logger.exception(f"Failed to settle message {received.message_id}")

    def drain(self, max_messages: int = 100) -> List[str]:
        """Process whatever is queued on the calling thread. Returns each outcome."""
        outcomes = []
        while len(outcomes) < max_messages:
            received = self.broker.receive(self.queue_name, 0.1)
            if received is None:
                break
            outcomes.append(self.handle_message(received))
        return outcomes

    # --- Message handling ---

    def handle_message(self, received: ReceivedMessage) -> str:
        try:
            message = parse_queue_message(received.body)
        except UnknownMessageTypeError as e:
            logger.warning(f"Dropping message {received.message_id}: {e}")
            self.broker.complete(self.queue_name, received)
            return DROPPED
        except MalformedMessageError as e:
            logger.error(f"Dead-lettering malformed message {received.message_id}: {e}")
            self.broker.dead_letter(self.queue_name, received, "MalformedMessage", str(e))
            return DEAD_LETTERED

        if not isinstance(message, ResumeProcessingMessage):
            logger.warning(f"Dropping {message.type} message {message.message_id} from processing queue")
            self.broker.complete(self.queue_name, received)
            return DROPPED

        token = request_id_var.set(message.correlation_id or message.message_id)
        try:
            return self._process(received, message)
        finally:
            request_id_var.reset(token)

    def _process(self, received: ReceivedMessage, message: ResumeProcessingMessage) -> str:
        payload = message.payload
        start = time.monotonic()
        with session_scope(self.session_factory) as db:
            service = ResumeProcessingService(db, self.provider, self.blob_store, self.publisher, self.session_factory)

            if not service.claim_for_processing(payload.resume_id, payload.tenant_id, message.message_id):
                logger.info(f"Resume {payload.resume_id} is no longer awaiting processing, dropping message")
                self.broker.complete(self.queue_name, received)
                return DROPPED

            logger.info(
                f"Processing resume {payload.resume_id} "
                f"(attempt {received.attempts + 1}/{self.max_attempts})"
            )
            try:
                content = self.blob_store.read(payload.storage_path)
                outcome = service.process_resume_directly(
                    payload.resume_id,
                    payload.job_id,
                    payload.tenant_id,
                    payload.user_id,
                    content,
                    payload.original_file_name,
                    payload.file_type,
                    mark_failed=False,
                )
            except Exception as e:
                db.rollback()
                return self._handle_failure(service, received, message, e, start)

            self.broker.complete(self.queue_name, received)
            self._publish(message, ResumeProcessingResultPayload(
                resume_id=payload.resume_id,
                job_id=payload.job_id,
                tenant_id=payload.tenant_id,
                status="completed",
                candidate_id=outcome.candidate_id,
                scores=ResultScores(overall_score=outcome.overall_score, confidence=outcome.confidence),
                processing_time=int((time.monotonic() - start) * 1000),
            ))
            return COMPLETED

    def _handle_failure(
        self,
        service: ResumeProcessingService,
        received: ReceivedMessage,
        message: ResumeProcessingMessage,
        error: Exception,
        start: float,
    ) -> str:
        payload = message.payload
        error_text = str(error) or error.__class__.__name__

        if received.attempts + 1 >= self.max_attempts:
            logger.error(
                f"Resume {payload.resume_id} failed after {received.attempts + 1} attempts, dead-lettering: {error_text}"
            )
            service.mark_failed(payload.resume_id, error_text)
            self.broker.dead_letter(self.queue_name, received, "MaxAttemptsExceeded", error_text)
            self._publish(message, ResumeProcessingResultPayload(
                resume_id=payload.resume_id,
                job_id=payload.job_id,
                tenant_id=payload.tenant_id,
                status="failed",
                error=error_text,
                processing_time=int((time.monotonic() - start) * 1000),
            ))
            return DEAD_LETTERED

        logger.warning(
            f"Resume {payload.resume_id} attempt {received.attempts + 1} failed, will retry: {error_text}"
        )
        service.mark_retrying(payload.resume_id, error_text)
        self.broker.abandon(self.queue_name, received)
        return ABANDONED

    def _publish(self, message: ResumeProcessingMessage, result: ResumeProcessingResultPayload):
        if self.publisher is None:
            return
        try:
            self.publisher.publish_result(result, correlation_id=message.correlation_id)
        except Exception:
            logger.exception(f"Failed to publish result for resume {result.resume_id}")


class StaleResumeReaper:
    """Periodically fails resumes whose processing never finished."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        provider: Optional[AIProvider] = None,
        interval_seconds: Optional[int] = None,
        stale_after_minutes: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.interval_seconds = settings.reaper_interval_seconds if interval_seconds is None else interval_seconds
        self.stale_after_minutes = (
            settings.stale_processing_minutes if stale_after_minutes is None else stale_after_minutes
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> int:
        with session_scope(self.session_factory) as db:
            return ResumeProcessingService(db, self.provider).sweep_stale_resumes(self.stale_after_minutes)

    def _loop(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Stale resume sweep failed")

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="stale-resume-reaper", daemon=True)
        self._thread.start()
        logger.info(
            f"Stale resume reaper started (every {self.interval_seconds}s, "
            f"timeout {self.stale_after_minutes} min)"
        )

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
