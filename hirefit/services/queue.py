"""
Message queue brokers and the resume-processing publisher.

Brokers deliver with explicit acknowledgement: a received message stays
locked to its consumer until it is completed, abandoned (redelivered with
attempts + 1) or dead-lettered. A lock expires after the visibility timeout;
the next receive puts expired deliveries back on the queue, so a consumer
that dies mid-message delays it but never loses it. The attempt counter
travels inside the broker envelope because neither broker tracks delivery
counts natively.
"""
import json
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import redis

from hirefit.core.config import settings
from hirefit.core.exceptions import QueueError
from hirefit.schemas.queue import (
    ResumeProcessingMessage,
    ResumeProcessingPayload,
    ResumeProcessingResultMessage,
    ResumeProcessingResultPayload,
)
from hirefit.schemas.resume import QueueHealth

logger = logging.getLogger(__name__)

DEAD_LETTER_SUFFIX = ":dead-letter"
IN_FLIGHT_SUFFIX = ":in-flight"
LOCKS_SUFFIX = ":locks"


@dataclass
class ReceivedMessage:
    message_id: str
    body: Any
    attempts: int = 0  # earlier deliveries; 0 on the first
    attributes: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""  # lock handle for settling this delivery


@dataclass
class EnqueueResult:
    message_id: str
    enqueued: bool


def _envelope(message_id: str, body: Any, attributes: Dict[str, Any], attempts: int = 0, **extra: Any) -> str:
    return json.dumps({
        "id": message_id,
        "attempts": attempts,
        "attributes": attributes,
        "body": body,
        # Keeps every stored envelope distinct, even for duplicate sends
        "token": uuid.uuid4().hex,
        **extra,
    })


def _from_envelope(raw: str) -> ReceivedMessage:
    try:
        data = json.loads(raw)
        return ReceivedMessage(
            message_id=str(data.get("id", "")),
            body=data.get("body"),
            attempts=int(data.get("attempts", 0)),
            attributes=data.get("attributes") or {},
            raw=raw,
        )
    except (TypeError, ValueError, AttributeError):
        # Not one of ours; hand the raw payload to the consumer as-is
        return ReceivedMessage(message_id="", body=raw, raw=raw)


def _redelivery(message: ReceivedMessage) -> str:
    return _envelope(message.message_id, message.body, message.attributes, message.attempts + 1)


class Broker(ABC):
    @abstractmethod
    def send(self, queue: str, body: Any, message_id: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def receive(self, queue: str, timeout: float) -> Optional[ReceivedMessage]:
        """Block up to `timeout` seconds. The returned message is locked until settled."""

    @abstractmethod
    def complete(self, queue: str, message: ReceivedMessage) -> None:
        pass

    @abstractmethod
    def abandon(self, queue: str, message: ReceivedMessage) -> None:
        pass

    @abstractmethod
    def dead_letter(self, queue: str, message: ReceivedMessage, reason: str, description: str) -> None:
        pass

    @abstractmethod
    def requeue_expired(self, queue: str) -> int:
        """Return deliveries whose lock has expired to the queue. Returns how many."""

    @abstractmethod
    def health_check(self) -> None:
        """Raise if the broker is unreachable."""

    def close(self) -> None:
        pass


# KEYS: in-flight list, lock deadlines, destination list
# ARGV: locked envelope, replacement envelope ('' to push nothing)
# Returns 1 when the caller still held the lock.
_SETTLE_SCRIPT = """
local removed = redis.call('LREM', KEYS[1], 1, ARGV[1])
redis.call('ZREM', KEYS[2], ARGV[1])
if removed == 1 and ARGV[2] ~= '' then
    redis.call('LPUSH', KEYS[3], ARGV[2])
end
return removed
"""


class RedisBroker(Broker):
    """
    Redis lists: `queue` holds pending envelopes, `queue:in-flight` holds locked
    ones (moved atomically with BLMOVE) and `queue:dead-letter` holds the rest.
    `queue:locks` is a sorted set of in-flight envelopes scored by lock deadline.
    """

    def __init__(self, url: str, visibility_timeout: Optional[float] = None):
        self.url = url
        self.visibility_timeout = (
            settings.queue.visibility_timeout_seconds if visibility_timeout is None else visibility_timeout
        )
        self.client = redis.Redis.from_url(url, decode_responses=True)
        self._settle = self.client.register_script(_SETTLE_SCRIPT)

    def _keys(self, queue: str, destination: str) -> List[str]:
        return [queue + IN_FLIGHT_SUFFIX, queue + LOCKS_SUFFIX, destination]

    def send(self, queue, body, message_id, attributes=None):
        self.client.lpush(queue, _envelope(message_id, body, attributes or {}))

    def receive(self, queue, timeout):
        self.requeue_expired(queue)
        raw = self.client.blmove(queue, queue + IN_FLIGHT_SUFFIX, timeout, "RIGHT", "LEFT")
        if raw is None:
            return None
        self.client.zadd(queue + LOCKS_SUFFIX, {raw: time.time() + self.visibility_timeout})
        return _from_envelope(raw)

    def requeue_expired(self, queue):
        in_flight, locks = queue + IN_FLIGHT_SUFFIX, queue + LOCKS_SUFFIX
        now = time.time()

        # Envelopes moved by a receiver that died before recording the lock
        for raw in self.client.lrange(in_flight, 0, -1):
            self.client.zadd(locks, {raw: now + self.visibility_timeout}, nx=True)

        requeued = 0
        for raw in self.client.zrangebyscore(locks, "-inf", now):
            requeued += self._settle(keys=self._keys(queue, queue), args=[raw, _redelivery(_from_envelope(raw))])
        if requeued:
            logger.warning(f"Requeued {requeued} expired delivery(ies) on {queue}")
        return requeued

    def _settle_locked(self, queue: str, message: ReceivedMessage, destination: str, replacement: str):
        if not self._settle(keys=self._keys(queue, destination), args=[message.raw, replacement]):
            raise QueueError(f"Message {message.message_id} is not locked on {queue}")

    def complete(self, queue, message):
        self._settle_locked(queue, message, queue, "")

    def abandon(self, queue, message):
        self._settle_locked(queue, message, queue, _redelivery(message))

    def dead_letter(self, queue, message, reason, description):
        self._settle_locked(
            queue,
            message,
            queue + DEAD_LETTER_SUFFIX,
            _envelope(
                message.message_id, message.body, message.attributes, message.attempts + 1,
                dead_letter_reason=reason,
                dead_letter_description=description,
                dead_lettered_at=datetime.now(timezone.utc).isoformat(),
            ),
        )

    def health_check(self):
        self.client.ping()

    def close(self):
        self.client.close()


class InMemoryBroker(Broker):
    """Process-local broker for development (`memory://`) and tests."""

    def __init__(self, visibility_timeout: Optional[float] = None):
        self.visibility_timeout = (
            settings.queue.visibility_timeout_seconds if visibility_timeout is None else visibility_timeout
        )
        self._queues: Dict[str, deque] = {}
        # queue -> lock -> (envelope, lock deadline)
        self._in_flight: Dict[str, Dict[str, Tuple[str, float]]] = {}
        self._dead_letters: Dict[str, List[Dict[str, Any]]] = {}
        self._cond = threading.Condition()

    def _queue(self, name: str) -> deque:
        return self._queues.setdefault(name, deque())

    def send(self, queue, body, message_id, attributes=None):
        with self._cond:
            self._queue(queue).append(_envelope(message_id, body, attributes or {}))
            self._cond.notify()

    def _requeue_expired_locked(self, queue: str) -> int:
        now = time.monotonic()
        locks = self._in_flight.get(queue, {})
        expired = [lock for lock, (_, deadline) in locks.items() if deadline <= now]
        for lock in expired:
            raw, _ = locks.pop(lock)
            self._queue(queue).append(_redelivery(_from_envelope(raw)))
        if expired:
            logger.warning(f"Requeued {len(expired)} expired delivery(ies) on {queue}")
        return len(expired)

    def requeue_expired(self, queue):
        with self._cond:
            return self._requeue_expired_locked(queue)

    def receive(self, queue, timeout):
        def ready():
            self._requeue_expired_locked(queue)
            return len(self._queue(queue)) > 0

        with self._cond:
            if not self._cond.wait_for(ready, timeout=timeout):
                return None
            raw = self._queue(queue).popleft()
            lock = str(uuid.uuid4())
            self._in_flight.setdefault(queue, {})[lock] = (raw, time.monotonic() + self.visibility_timeout)
            message = _from_envelope(raw)
            message.raw = lock
            return message

    def _release(self, queue: str, message: ReceivedMessage) -> str:
        entry = self._in_flight.get(queue, {}).pop(message.raw, None)
        if entry is None:
            raise QueueError(f"Message {message.message_id} is not locked on {queue}")
        return entry[0]

    def complete(self, queue, message):
        with self._cond:
            self._release(queue, message)

    def abandon(self, queue, message):
        with self._cond:
            self._release(queue, message)
            self._queue(queue).append(_redelivery(message))
            self._cond.notify()

    def dead_letter(self, queue, message, reason, description):
        with self._cond:
            self._release(queue, message)
            self._dead_letters.setdefault(queue, []).append({
                "id": message.message_id,
                "body": message.body,
                "attributes": message.attributes,
                "attempts": message.attempts + 1,
                "dead_letter_reason": reason,
                "dead_letter_description": description,
            })

    def health_check(self):
        return None

    # Inspection helpers

    def pending_count(self, queue: str) -> int:
        with self._cond:
            return len(self._queue(queue))

    def in_flight_count(self, queue: str) -> int:
        with self._cond:
            return len(self._in_flight.get(queue, {}))

    def dead_letters(self, queue: str) -> List[Dict[str, Any]]:
        with self._cond:
            return list(self._dead_letters.get(queue, []))

    def peek(self, queue: str) -> List[ReceivedMessage]:
        with self._cond:
            return [_from_envelope(raw) for raw in self._queue(queue)]


_memory_broker: Optional[InMemoryBroker] = None
_broker_lock = threading.Lock()
_publisher_lock = threading.Lock()


def get_broker(url: Optional[str] = None) -> Optional[Broker]:
    """Broker for a URL; empty means no broker (inline processing)."""
    global _memory_broker
    url = settings.queue.broker_url if url is None else url
    if not url:
        return None

    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisBroker(url)

    if url.startswith("memory://"):
        with _broker_lock:
            if _memory_broker is None:
                _memory_broker = InMemoryBroker()
        return _memory_broker

    raise ValueError(f"Unsupported QUEUE_BROKER_URL scheme: {url}")


class QueuePublisher:
    def __init__(
        self,
        broker: Optional[Broker] = None,
        processing_queue: Optional[str] = None,
        results_queue: Optional[str] = None,
    ):
        self.broker = broker
        self.processing_queue = processing_queue or settings.queue.processing_queue
        self.results_queue = results_queue or settings.queue.results_queue
        if broker is None:
            logger.info("Queue broker not configured - resumes will be processed inline")

    @property
    def is_enabled(self) -> bool:
        return self.broker is not None

    def enqueue_resume_processing(
        self,
        resume_id: int,
        job_id: int,
        tenant_id: int,
        user_id: int,
        storage_path: str,
        original_file_name: str,
        file_type: str,
        message_id: Optional[str] = None,
    ) -> EnqueueResult:
        message_id = message_id or str(uuid.uuid4())
        if not self.is_enabled:
            logger.debug(f"Queue disabled, resume {resume_id} not enqueued")
            return EnqueueResult(message_id=message_id, enqueued=False)

        message = ResumeProcessingMessage(
            message_id=message_id,
            correlation_id=message_id,
            payload=ResumeProcessingPayload(
                resume_id=resume_id,
                job_id=job_id,
                tenant_id=tenant_id,
                user_id=user_id,
                storage_path=storage_path,
                original_file_name=original_file_name,
                file_type=file_type,
            ),
        )
        attributes = {"tenantId": tenant_id, "resumeId": resume_id, "jobId": job_id}

        try:
            self.broker.send(self.processing_queue, message.to_wire(), message_id, attributes)
        except Exception as e:
            logger.error(f"Failed to enqueue resume {resume_id}: {e}")
            raise QueueError(f"Failed to enqueue resume for processing: {e}")

        logger.info(f"Enqueued resume {resume_id} for processing (message {message_id})")
        return EnqueueResult(message_id=message_id, enqueued=True)

    def publish_result(
        self, payload: ResumeProcessingResultPayload, correlation_id: Optional[str] = None
    ) -> EnqueueResult:
        message_id = str(uuid.uuid4())
        if not self.is_enabled:
            return EnqueueResult(message_id=message_id, enqueued=False)

        message = ResumeProcessingResultMessage(
            message_id=message_id,
            correlation_id=correlation_id,
            payload=payload,
        )
        attributes = {"tenantId": payload.tenant_id, "resumeId": payload.resume_id, "jobId": payload.job_id}
        try:
            self.broker.send(self.results_queue, message.to_wire(), message_id, attributes)
        except Exception as e:
            raise QueueError(f"Failed to publish processing result: {e}")

        logger.debug(f"Published {payload.status} result for resume {payload.resume_id}")
        return EnqueueResult(message_id=message_id, enqueued=True)

    def health_check(self) -> QueueHealth:
        if not self.is_enabled:
            return QueueHealth(status="disabled", queue=self.processing_queue)
        try:
            self.broker.health_check()
            return QueueHealth(status="ok", queue=self.processing_queue)
        except Exception as e:
            return QueueHealth(status="error", queue=self.processing_queue, error=str(e))


_publisher: Optional[QueuePublisher] = None


def get_queue_publisher() -> QueuePublisher:
    global _publisher
    if _publisher is None:
        with _publisher_lock:
            if _publisher is None:
                _publisher = QueuePublisher(get_broker())
    return _publisher
