import os
import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import BackgroundTasks

from hirefit.core.exceptions import AnalysisError, MalformedMessageError, QueueError, UnknownMessageTypeError
from hirefit.models.application import Application
from hirefit.models.candidate import Candidate
from hirefit.models.feature import TenantFeature
from hirefit.models.resume import ProcessingStatus, Resume, ResumeScore
from hirefit.models.tenant import Tenant
from hirefit.schemas.queue import (
    ResumeProcessingMessage,
    ResumeProcessingPayload,
    ResumeProcessingResultMessage,
    parse_queue_message,
)
from hirefit.schemas.resume import UploadedFile
from hirefit.services.ai.mock import MockAIProvider
from hirefit.services.queue import InMemoryBroker, QueuePublisher, get_broker
from hirefit.services.queue_consumer import (
    ABANDONED, COMPLETED, DEAD_LETTERED, DROPPED, QueueConsumer, StaleResumeReaper,
)

PROCESSING_QUEUE = "resume-processing"
RESULTS_QUEUE = "resume-results"


class FailingProvider(MockAIProvider):
    def analyze_resume(self, analysis_input):
        raise AnalysisError("AI service completely unavailable")


def _payload(**overrides):
    values = dict(
        resume_id=1, job_id=2, tenant_id=3, user_id=4,
        storage_path="3/jobs/2/file.pdf", original_file_name="file.pdf", file_type="application/pdf",
    )
    values.update(overrides)
    return ResumeProcessingPayload(**values)


@pytest.fixture
def consumer_factory(broker, publisher, blob_store, session_factory):
    def _make(provider=None, max_attempts=5):
        return QueueConsumer(
            broker=broker,
            provider=provider or MockAIProvider(),
            blob_store=blob_store,
            publisher=publisher,
            session_factory=session_factory,
            queue_name=PROCESSING_QUEUE,
            concurrency=1,
            max_attempts=max_attempts,
            receive_timeout=0.1,
        )
    return _make


def _queued_upload(db_session, make_service, publisher, tenant, user, job, content):
    upload = UploadedFile(original_file_name="jane_doe.txt", file_type="text/plain", content=content)
    return make_service(publisher=publisher).upload_and_process(tenant.id, user.id, job.id, upload, BackgroundTasks())


def _resume(db_session, resume_id):
    db_session.expire_all()
    return db_session.get(Resume, resume_id)


# --- Message contracts ---

def test_wire_format_is_camel_case():
    message = ResumeProcessingMessage(correlation_id="corr-1", payload=_payload())
    wire = message.to_wire()

    assert set(wire) == {"messageId", "correlationId", "timestamp", "version", "type", "payload"}
    assert wire["type"] == "RESUME_PROCESSING"
    assert wire["version"] == "1.0"
    assert wire["payload"]["storagePath"] == "3/jobs/2/file.pdf"


def test_parse_branches_on_type():
    wire = ResumeProcessingMessage(payload=_payload()).to_wire()
    parsed = parse_queue_message(wire)
    assert isinstance(parsed, ResumeProcessingMessage)
    assert parsed.payload.resume_id == 1

    result = {
        "messageId": "m-1", "timestamp": "2030-01-01T00:00:00Z", "type": "RESUME_PROCESSING_RESULT",
        "payload": {"resumeId": 1, "jobId": 2, "tenantId": 3, "status": "failed", "error": "boom"},
    }
    parsed = parse_queue_message(result)
    assert isinstance(parsed, ResumeProcessingResultMessage)
    assert parsed.payload.error == "boom"


def test_parse_unknown_type():
    with pytest.raises(UnknownMessageTypeError) as exc:
        parse_queue_message({"type": "CANDIDATE_MERGED", "payload": {}})
    assert exc.value.message_type == "CANDIDATE_MERGED"


@pytest.mark.parametrize("body", [
    "{not json",
    '["a", "list"]',
    {"type": "RESUME_PROCESSING", "payload": {"resumeId": "abc"}},
])
def test_parse_malformed(body):
    with pytest.raises(MalformedMessageError):
        parse_queue_message(body)


# --- Brokers and publisher ---

def test_in_memory_broker_settlement(broker):
    broker.send("q", {"n": 1}, "m-1", {"tenantId": 1})

    received = broker.receive("q", timeout=0.1)
    assert received.body == {"n": 1}
    assert received.attempts == 0
    assert broker.in_flight_count("q") == 1

    broker.abandon("q", received)
    redelivered = broker.receive("q", timeout=0.1)
    assert redelivered.attempts == 1

    broker.dead_letter("q", redelivered, "MaxAttemptsExceeded", "boom")
    assert broker.pending_count("q") == 0
    assert broker.in_flight_count("q") == 0
    [dead] = broker.dead_letters("q")
    assert dead["dead_letter_reason"] == "MaxAttemptsExceeded"

    assert broker.receive("q", timeout=0.01) is None


def test_settling_twice_is_an_error(broker):
    broker.send("q", {}, "m-1")
    received = broker.receive("q", timeout=0.1)
    broker.complete("q", received)
    with pytest.raises(QueueError):
        broker.complete("q", received)


def test_unsettled_delivery_is_redelivered_after_visibility_timeout():
    broker = InMemoryBroker(visibility_timeout=0.2)
    broker.send("q", {"n": 1}, "m-1")

    first = broker.receive("q", timeout=0.1)
    assert broker.receive("q", timeout=0.01) is None

    time.sleep(0.25)
    redelivered = broker.receive("q", timeout=0.1)
    assert redelivered.message_id == "m-1"
    assert redelivered.body == {"n": 1}
    assert redelivered.attempts == 1

    # The first consumer lost its lock and can no longer settle
    with pytest.raises(QueueError):
        broker.complete("q", first)
    broker.complete("q", redelivered)
    assert broker.pending_count("q") == 0
    assert broker.in_flight_count("q") == 0


def test_requeue_expired_returns_count():
    broker = InMemoryBroker(visibility_timeout=0.05)
    broker.send("q", {}, "m-1")
    broker.send("q", {}, "m-2")
    broker.receive("q", timeout=0.1)
    broker.receive("q", timeout=0.1)
    time.sleep(0.1)

    assert broker.requeue_expired("q") == 2
    assert broker.in_flight_count("q") == 0
    assert [m.attempts for m in broker.peek("q")] == [1, 1]


def test_get_broker_by_url():
    assert get_broker("") is None
    assert isinstance(get_broker("memory://"), InMemoryBroker)
    assert get_broker("memory://") is get_broker("memory://")
    with pytest.raises(ValueError):
        get_broker("amqp://localhost")


def test_disabled_publisher_does_not_enqueue():
    result = QueuePublisher(None).enqueue_resume_processing(1, 2, 3, 4, "p", "f.pdf", "application/pdf")
    assert result.enqueued is False


def test_publisher_wraps_send_failures():
    class DownBroker(InMemoryBroker):
        def send(self, *args, **kwargs):
            raise ConnectionError("connection refused")

        def health_check(self):
            raise ConnectionError("connection refused")

    publisher = QueuePublisher(DownBroker(), PROCESSING_QUEUE, RESULTS_QUEUE)
    with pytest.raises(QueueError):
        publisher.enqueue_resume_processing(1, 2, 3, 4, "p", "f.pdf", "application/pdf")
    assert publisher.health_check().status == "error"


def test_message_id_doubles_as_correlation_id(publisher, broker):
    result = publisher.enqueue_resume_processing(1, 2, 3, 4, "p", "f.pdf", "application/pdf")
    [message] = broker.peek(PROCESSING_QUEUE)
    assert message.message_id == result.message_id
    assert message.body["correlationId"] == result.message_id


# --- Consumer ---

def test_consumer_happy_path(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, sample_resume):
    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)

    assert consumer_factory().drain() == [COMPLETED]

    resume = _resume(db_session, response.resume_id)
    assert resume.processing_status == ProcessingStatus.completed
    assert broker.in_flight_count(PROCESSING_QUEUE) == 0

    [result] = broker.peek(RESULTS_QUEUE)
    assert result.body["type"] == "RESUME_PROCESSING_RESULT"
    assert result.body["payload"]["status"] == "completed"
    assert result.body["payload"]["candidateId"] == resume.candidate_id
    assert result.body["payload"]["scores"]["overallScore"] > 0


def test_result_keeps_correlation_id(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, sample_resume):
    _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)
    [queued] = broker.peek(PROCESSING_QUEUE)

    consumer_factory().drain()

    [result] = broker.peek(RESULTS_QUEUE)
    assert result.body["correlationId"] == queued.body["correlationId"]


def test_dead_letter_after_max_attempts(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, sample_resume):
    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)

    outcomes = consumer_factory(provider=FailingProvider(), max_attempts=3).drain()

    assert outcomes == [ABANDONED, ABANDONED, DEAD_LETTERED]
    [dead] = broker.dead_letters(PROCESSING_QUEUE)
    assert dead["dead_letter_reason"] == "MaxAttemptsExceeded"
    assert dead["dead_letter_description"] == "AI service completely unavailable"

    resume = _resume(db_session, response.resume_id)
    assert resume.processing_status == ProcessingStatus.failed
    assert resume.processing_error == "AI service completely unavailable"

    [result] = broker.peek(RESULTS_QUEUE)
    assert result.body["payload"]["status"] == "failed"

    # Failed attempts never consume quota
    assert db_session.query(TenantFeature).filter(TenantFeature.usage_count > 0).count() == 0
    assert db_session.get(Tenant, tenant.id).ai_scores_used_this_month == 0


def test_retryable_failure_keeps_resume_processing(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, sample_resume):
    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)
    consumer = consumer_factory(provider=FailingProvider(), max_attempts=5)

    received = broker.receive(PROCESSING_QUEUE, 0.1)
    assert consumer.handle_message(received) == ABANDONED

    resume = _resume(db_session, response.resume_id)
    assert resume.processing_status == ProcessingStatus.processing
    assert resume.processing_error == "AI service completely unavailable"
    [redelivery] = broker.peek(PROCESSING_QUEUE)
    assert redelivery.attempts == 1


def test_missing_blob_is_retried_then_dead_lettered(db_session, tenant, user, job, make_service, publisher, broker, blob_store, consumer_factory, sample_resume):
    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)
    resume = _resume(db_session, response.resume_id)
    os.remove(os.path.join(blob_store.root_dir, resume.storage_path))

    outcomes = consumer_factory(max_attempts=2).drain()
    assert outcomes == [ABANDONED, DEAD_LETTERED]
    assert _resume(db_session, response.resume_id).processing_status == ProcessingStatus.failed


def test_completed_resume_message_is_dropped(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, sample_resume):
    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)
    [queued] = broker.peek(PROCESSING_QUEUE)
    consumer = consumer_factory()
    assert consumer.drain() == [COMPLETED]

    # Duplicate delivery of the same message
    broker.send(PROCESSING_QUEUE, queued.body, queued.message_id, queued.attributes)
    assert consumer.drain() == [DROPPED]
    assert db_session.query(ResumeScore).filter(ResumeScore.resume_id == response.resume_id).count() == 1


def test_unknown_message_type_is_dropped(broker, consumer_factory):
    broker.send(PROCESSING_QUEUE, {"type": "CANDIDATE_MERGED", "payload": {}}, "m-1")
    assert consumer_factory().drain() == [DROPPED]
    assert broker.dead_letters(PROCESSING_QUEUE) == []


def test_result_message_on_processing_queue_is_dropped(broker, consumer_factory):
    result = {
        "messageId": "m-1", "timestamp": "2030-01-01T00:00:00Z", "type": "RESUME_PROCESSING_RESULT",
        "payload": {"resumeId": 1, "jobId": 2, "tenantId": 3, "status": "completed"},
    }
    broker.send(PROCESSING_QUEUE, result, "m-1")
    assert consumer_factory().drain() == [DROPPED]


def test_malformed_message_is_dead_lettered(broker, consumer_factory):
    broker.send(PROCESSING_QUEUE, {"type": "RESUME_PROCESSING", "payload": {"resumeId": 1}}, "m-1")
    assert consumer_factory().drain() == [DEAD_LETTERED]
    [dead] = broker.dead_letters(PROCESSING_QUEUE)
    assert dead["dead_letter_reason"] == "MalformedMessage"


def test_inline_and_queued_processing_agree(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, run_background, sample_resume):
    tasks = BackgroundTasks()
    upload = UploadedFile(original_file_name="jane_doe.txt", file_type="text/plain", content=sample_resume)
    response = make_service().upload_and_process(tenant.id, user.id, job.id, upload, tasks)
    run_background(tasks)

    def snapshot():
        db_session.expire_all()
        resume = db_session.get(Resume, response.resume_id)
        score = db_session.query(ResumeScore).filter(ResumeScore.resume_id == resume.id).one()
        candidate = db_session.get(Candidate, resume.candidate_id)
        return {
            "status": resume.processing_status,
            "parsed_data": resume.parsed_data,
            "parse_confidence": resume.parse_confidence,
            "candidate": (candidate.email, candidate.first_name, candidate.last_name, candidate.tags),
            "scores": (
                score.overall_score, score.confidence, score.skills_match_score, score.experience_match_score,
                score.education_match_score, score.certifications_score, score.overall_fit_score,
                score.explanation, score.model_version,
            ),
            "applications": db_session.query(Application).count(),
        }

    inline = snapshot()

    # Reset the resume and run the same upload through the queue
    resume = db_session.get(Resume, response.resume_id)
    db_session.query(Application).delete()
    db_session.query(ResumeScore).delete()
    resume.candidate_id = None
    resume.processing_status = ProcessingStatus.pending
    resume.processing_message_id = "parity-run"
    db_session.commit()
    db_session.query(Candidate).delete()
    db_session.commit()

    publisher.enqueue_resume_processing(
        resume_id=resume.id, job_id=job.id, tenant_id=tenant.id, user_id=user.id,
        storage_path=resume.storage_path, original_file_name=resume.original_file_name, file_type=resume.file_type,
        message_id="parity-run",
    )
    assert consumer_factory().drain() == [COMPLETED]

    assert snapshot() == inline


def test_consumer_threads_process_queue(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, sample_resume):
    import time

    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)
    consumer = consumer_factory()
    consumer.start()
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not broker.peek(RESULTS_QUEUE):
            time.sleep(0.05)
    finally:
        consumer.stop()

    assert not consumer.is_running
    assert _resume(db_session, response.resume_id).processing_status == ProcessingStatus.completed


def test_reaper_run_once(db_session, tenant, job, session_factory):
    from datetime import datetime, timedelta, timezone

    db_session.add(Resume(
        tenant_id=tenant.id, job_id=job.id, original_file_name="old.txt", storage_path="x",
        file_type="text/plain", processing_status=ProcessingStatus.processing,
        processing_started_at=datetime.now(timezone.utc) - timedelta(hours=2),
    ))
    db_session.commit()

    reaper = StaleResumeReaper(session_factory=session_factory, stale_after_minutes=30)
    assert reaper.run_once() == 1
    assert reaper.run_once() == 0


def test_reaper_zero_window_is_respected(db_session, tenant, job, session_factory):
    db_session.add(Resume(
        tenant_id=tenant.id, job_id=job.id, original_file_name="r.txt", storage_path="x",
        file_type="text/plain", processing_status=ProcessingStatus.processing,
        processing_started_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    ))
    db_session.commit()

    reaper = StaleResumeReaper(session_factory=session_factory, interval_seconds=0, stale_after_minutes=0)
    assert reaper.interval_seconds == 0
    assert reaper.run_once() == 1


def test_message_superseded_by_retry_is_dropped(db_session, tenant, user, job, make_service, publisher, broker, consumer_factory, sample_resume):
    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)

    # The first message outlives the reaper window and the resume is retried
    resume = _resume(db_session, response.resume_id)
    resume.processing_started_at = datetime.now(timezone.utc) - timedelta(hours=1)
    db_session.commit()
    service = make_service(publisher=publisher)
    assert service.sweep_stale_resumes(30) == 1
    service.retry_processing(tenant.id, user.id, response.resume_id, BackgroundTasks())

    stale, current = broker.peek(PROCESSING_QUEUE)
    assert stale.message_id != current.message_id
    assert _resume(db_session, response.resume_id).processing_message_id == current.message_id

    assert consumer_factory().drain() == [DROPPED, COMPLETED]

    assert _resume(db_session, response.resume_id).processing_status == ProcessingStatus.completed
    assert db_session.query(ResumeScore).filter(ResumeScore.resume_id == response.resume_id).count() == 1
    assert db_session.query(TenantFeature).filter(TenantFeature.feature_id == "ai_screening").one().usage_count == 1
    assert db_session.get(Tenant, tenant.id).ai_scores_used_this_month == 1


def test_consumer_recovers_delivery_left_unsettled(db_session, tenant, user, job, make_service, blob_store, session_factory, sample_resume):
    broker = InMemoryBroker(visibility_timeout=0.5)
    publisher = QueuePublisher(broker, PROCESSING_QUEUE, RESULTS_QUEUE)
    response = _queued_upload(db_session, make_service, publisher, tenant, user, job, sample_resume)

    # A worker takes the message and dies before settling it
    assert broker.receive(PROCESSING_QUEUE, 0.1) is not None

    consumer = QueueConsumer(
        broker=broker,
        provider=MockAIProvider(),
        blob_store=blob_store,
        publisher=publisher,
        session_factory=session_factory,
        queue_name=PROCESSING_QUEUE,
        concurrency=1,
        receive_timeout=0.1,
    )
    assert consumer.drain() == []

    time.sleep(0.6)
    assert consumer.drain() == [COMPLETED]
    assert _resume(db_session, response.resume_id).processing_status == ProcessingStatus.completed
    assert broker.in_flight_count(PROCESSING_QUEUE) == 0
