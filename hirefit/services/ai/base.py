import math
from abc import ABC, abstractmethod
from typing import Any, List

from hirefit.schemas.ai import (
    DocumentParseResult,
    ProviderHealth,
    ResumeAnalysisInput,
    ResumeAnalysisResult,
)

DEFAULT_SCORE = 50
DEFAULT_CONFIDENCE = 0.8


def clamp_score(value: Any) -> int:
    """Integer in [0, 100]; anything missing or non-numeric becomes DEFAULT_SCORE."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SCORE
    if math.isnan(number):
        return DEFAULT_SCORE
    return int(min(100, max(0, round(number))))


def clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number) or number == 0:
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, number))


def as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


class AIProvider(ABC):
    """
    Capability set shared by every AI backend.
    Providers clamp scores before returning; a partially malformed upstream
    response is defaulted field by field rather than raised.
    """

    name: str = "base"

    @abstractmethod
    def parse_document(self, content: bytes, file_name: str, mime_type: str) -> DocumentParseResult:
        """Extract text. Raises ParseError on malformed input or upstream failure."""

    @abstractmethod
    def analyze_resume(self, analysis_input: ResumeAnalysisInput) -> ResumeAnalysisResult:
        """Score a resume against a job. Raises AnalysisError on upstream failure."""

    @abstractmethod
    def health_check(self) -> ProviderHealth:
        pass
