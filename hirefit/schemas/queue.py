"""
Queue message contracts.

Wire format is a JSON envelope with camelCase keys:
{messageId, correlationId?, timestamp, version, type, payload}
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from hirefit.core.exceptions import MalformedMessageError, UnknownMessageTypeError

MESSAGE_VERSION = "1.0"

RESUME_PROCESSING = "RESUME_PROCESSING"
RESUME_PROCESSING_RESULT = "RESUME_PROCESSING_RESULT"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResumeProcessingPayload(WireModel):
    resume_id: int
    job_id: int
    tenant_id: int
    user_id: int
    storage_path: str
    original_file_name: str
    file_type: str


class ResultScores(WireModel):
    overall_score: int
    confidence: float


class ResumeProcessingResultPayload(WireModel):
    resume_id: int
    job_id: int
    tenant_id: int
    status: Literal["completed", "failed"]
    candidate_id: Optional[int] = None
    scores: Optional[ResultScores] = None
    error: Optional[str] = None
    processing_time: int = 0  # milliseconds


class BaseQueueMessage(WireModel):
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = MESSAGE_VERSION

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ResumeProcessingMessage(BaseQueueMessage):
    type: Literal["RESUME_PROCESSING"] = RESUME_PROCESSING
    payload: ResumeProcessingPayload


class ResumeProcessingResultMessage(BaseQueueMessage):
    type: Literal["RESUME_PROCESSING_RESULT"] = RESUME_PROCESSING_RESULT
    payload: ResumeProcessingResultPayload


QueueMessage = Union[ResumeProcessingMessage, ResumeProcessingResultMessage]

_MESSAGE_TYPES = {
    RESUME_PROCESSING: ResumeProcessingMessage,
    RESUME_PROCESSING_RESULT: ResumeProcessingResultMessage,
}


def parse_queue_message(body: Union[str, bytes, Dict[str, Any]]) -> QueueMessage:
    """
    Deserialize a wire envelope by branching on its `type` discriminant.

    Raises UnknownMessageTypeError for a well-formed envelope of a type this
    service does not handle, and MalformedMessageError for anything that cannot
    be decoded into a known variant.
    """
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except (TypeError, ValueError) as e:
            raise MalformedMessageError(f"Message body is not valid JSON: {e}")

    if not isinstance(body, dict):
        raise MalformedMessageError("Message body must be a JSON object")

    message_type = body.get("type")
    model = _MESSAGE_TYPES.get(message_type)
    if model is None:
        raise UnknownMessageTypeError(message_type)

    try:
        return model.model_validate(body)
    except PydanticValidationError as e:
        raise MalformedMessageError(f"Invalid {message_type} message: {e.error_count()} field error(s)")
