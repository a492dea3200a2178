import io
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import docx
import PyPDF2
import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from hirefit.core import prompts
from hirefit.core.config import settings
from hirefit.core.exceptions import AIError, AIKillSwitchError, AnalysisError, ParseError
from hirefit.schemas.ai import (
    DocumentParseResult,
    EducationEntry,
    ExperienceEntry,
    ParsedCandidateData,
    ProviderHealth,
    ResumeAnalysisInput,
    ResumeAnalysisResult,
    ResumeScores,
)
from hirefit.services.ai.base import AIProvider, as_str_list, clamp_confidence, clamp_score

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
OPENROUTER_MODELS_URL = "https://openrouter.ai/api/v1/models"

# Runs of printable characters worth keeping from a legacy binary .doc
PRINTABLE_RUN_RE = re.compile(r"[\x20-\x7E\t\r\n]{4,}")


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((requests.exceptions.Timeout, requests.exceptions.ConnectionError)),
    reraise=True,
)
def _post_chat(api_key: str, payload: Dict[str, Any], timeout: int) -> Dict[str, Any]:
    """Single chat-completion call; transient network failures are retried."""
    response = requests.post(
        url=OPENROUTER_URL,
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "http://localhost:3000",  # Required by OpenRouter
        },
        data=json.dumps(payload),
        timeout=timeout,
    )
    response.raise_for_status()
    return response.json()


def _extract_json(content: str) -> Dict[str, Any]:
    # Models sometimes wrap the JSON in prose or code fences
    match = re.search(r"\{.*\}", content, re.DOTALL)
    if not match:
        raise AnalysisError("AI response did not contain a JSON object")
    try:
        data = json.loads(match.group())
    except json.JSONDecodeError:
        logger.error(f"Failed to decode AI JSON response: {content[:500]}")
        raise AnalysisError("Failed to parse AI response.")
    if not isinstance(data, dict):
        raise AnalysisError("AI response JSON is not an object")
    return data


def map_to_candidate_data(ai_candidate: Any, raw_text: str) -> ParsedCandidateData:
    c = ai_candidate if isinstance(ai_candidate, dict) else {}

    experience = []
    for exp in c.get("experience") or []:
        if not isinstance(exp, dict):
            continue
        try:
            years = float(exp.get("years") or 0)
        except (TypeError, ValueError):
            years = 0
        experience.append(ExperienceEntry(
            company=str(exp.get("company") or ""),
            title=str(exp.get("title") or ""),
            years=years,
            description=str(exp.get("description") or ""),
        ))

    education = [
        EducationEntry(
            institution=str(edu.get("institution") or ""),
            degree=str(edu.get("degree") or ""),
            field=str(edu.get("field") or ""),
        )
        for edu in c.get("education") or []
        if isinstance(edu, dict)
    ]

    return ParsedCandidateData(
        first_name=str(c.get("firstName") or "Unknown"),
        last_name=str(c.get("lastName") or "Candidate"),
        email=str(c.get("email") or ""),
        phone=str(c.get("phone") or ""),
        city=c.get("city") or None,
        state=c.get("state") or None,
        country=c.get("country") or None,
        linkedin_url=c.get("linkedInUrl") or None,
        skills=as_str_list(c.get("skills")),
        experience=experience,
        education=education,
        certifications=as_str_list(c.get("certifications")),
        summary=str(c.get("summary") or ""),
        raw_text=raw_text,
    )


def map_to_scores(ai_scores: Any, ai_analysis: Any) -> ResumeScores:
    s = ai_scores if isinstance(ai_scores, dict) else {}
    a = ai_analysis if isinstance(ai_analysis, dict) else {}
    certifications = s.get("certificationsScore")

    return ResumeScores(
        overall_score=clamp_score(s.get("overallScore")),
        confidence=clamp_confidence(s.get("confidence")),
        skills_match_score=clamp_score(s.get("skillsMatchScore")),
        experience_match_score=clamp_score(s.get("experienceMatchScore")),
        education_match_score=clamp_score(s.get("educationMatchScore")),
        certifications_score=None if certifications is None else clamp_score(certifications),
        overall_fit_score=clamp_score(s.get("overallFitScore")),
        explanation=str(a.get("explanation") or ""),
        matched_skills=as_str_list(a.get("matchedSkills")),
        missing_skills=as_str_list(a.get("missingSkills")),
        highlights=as_str_list(a.get("highlights")),
        concerns=as_str_list(a.get("concerns")),
    )


class OpenRouterAIProvider(AIProvider):
    """
    Production provider.
    Text extraction runs locally (PyPDF2 / python-docx); analysis is a
    chat-completion call through OpenRouter with retries and a fallback model.
    """

    name = "openrouter"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        fallback_model: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.ai.openrouter_api_key
        self.model_name = model_name or settings.ai.model_name
        self.fallback_model = fallback_model or settings.ai.fallback_model
        self.timeout = settings.ai.request_timeout_seconds if timeout is None else timeout
        if not self.api_key:
            logger.warning("OPENROUTER_API_KEY is not configured. Resume analysis will fail.")

    # --- Parsing ---

    def parse_document(self, content: bytes, file_name: str, mime_type: str) -> DocumentParseResult:
        logger.debug(f"Parsing document: {file_name}")
        if not content:
            raise ParseError(f"Document {file_name} is empty")

        try:
            if mime_type == "application/pdf":
                reader = PyPDF2.PdfReader(io.BytesIO(content))
                text = "\n".join((page.extract_text() or "") for page in reader.pages)
                pages, confidence = len(reader.pages), 0.9
            elif mime_type == "application/vnd.openxmlformats-officedocument.wordprocessingml.document":
                document = docx.Document(io.BytesIO(content))
                text = "\n".join(p.text for p in document.paragraphs)
                pages, confidence = 1, 0.95
            elif mime_type == "application/msword":
                text = "\n".join(m.strip() for m in PRINTABLE_RUN_RE.findall(content.decode("latin-1")) if m.strip())
                pages, confidence = 1, 0.6
            elif mime_type == "text/plain":
                text = content.decode("utf-8", errors="replace")
                pages, confidence = 1, 1.0
            else:
                raise ParseError(f"Unsupported file type: {mime_type}")
        except ParseError:
            raise
        except Exception as e:
            logger.error(f"Document parsing failed: {e}")
            raise ParseError(f"Failed to parse document: {e}")

        text = text.strip()
        if not text:
            raise ParseError(f"No text could be extracted from {file_name}")

        logger.debug(f"Document parsed: {pages} pages, {len(text)} chars")
        return DocumentParseResult(
            text=text,
            page_count=max(1, pages),
            confidence=confidence,
            metadata={"file_name": file_name, "file_type": mime_type, "parser_version": "local-v1.0"},
        )

    # --- Analysis ---

    def _build_messages(self, analysis_input: ResumeAnalysisInput) -> List[Dict[str, str]]:
        job = analysis_input.job
        user_content = prompts.get_prompt(
            prompts.RESUME_ANALYSIS_USER_TEMPLATE,
            title=job.title,
            requirements=prompts.format_requirements(job.requirements),
            description=job.description or "Not provided",
            department=job.department or "Not specified",
            location=job.location or "Not specified",
            employment_type=job.employment_type or "Full-time",
            resume_text=analysis_input.resume_text[: prompts.MAX_RESUME_CHARS],
        )
        return [
            {"role": "system", "content": prompts.RESUME_ANALYSIS_SYSTEM},
            {"role": "user", "content": user_content},
        ]

    def _call_model(self, messages: List[Dict[str, str]]) -> Tuple[str, str]:
        """Returns (content, model used). Tries the primary model, then the fallback."""
        if settings.ai.kill_switch:
            logger.warning("AI Kill-switch is active. Blocking request.")
            raise AIKillSwitchError()

        if not self.api_key:
            logger.error("OpenRouter API Key missing.")
            raise AIError("AI service configuration error.")

        errors = []
        for model in (self.model_name, self.fallback_model):
            payload = {
                "model": model,
                "messages": messages,
                "temperature": settings.ai.temperature,
                "response_format": {"type": "json_object"},
            }
            try:
                logger.info(f"Calling AI Model: {model}")
                data = _post_chat(self.api_key, payload, self.timeout)
                return data["choices"][0]["message"]["content"], model
            except (requests.exceptions.RequestException, KeyError, IndexError, TypeError, ValueError) as e:
                logger.warning(f"Model {model} failed: {e}")
                errors.append(f"{model}: {e}")
        raise AnalysisError(f"AI service completely unavailable ({'; '.join(errors)})")

    def analyze_resume(self, analysis_input: ResumeAnalysisInput) -> ResumeAnalysisResult:
        start = time.monotonic()
        logger.debug(f"Analyzing resume for job: {analysis_input.job.title}")

        content, model = self._call_model(self._build_messages(analysis_input))
        data = _extract_json(content)

        candidate = map_to_candidate_data(data.get("candidate"), analysis_input.resume_text)
        scores = map_to_scores(data.get("scores"), data.get("analysis"))
        processing_time_ms = int((time.monotonic() - start) * 1000)

        logger.debug(f"Resume analyzed in {processing_time_ms}ms, score: {scores.overall_score}")
        return ResumeAnalysisResult(
            candidate_data=candidate,
            scores=scores,
            model_version=f"openrouter-{model}",
            processing_time_ms=processing_time_ms,
        )

    def health_check(self) -> ProviderHealth:
        details = {"provider": self.name, "model": self.model_name}

        if settings.ai.kill_switch:
            details["message"] = "AI kill switch is active"
            return ProviderHealth(status="degraded", details=details)

        if not self.api_key:
            details["message"] = "OPENROUTER_API_KEY is not configured"
            return ProviderHealth(status="error", details=details)

        try:
            response = requests.get(
                OPENROUTER_MODELS_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=5,
            )
            details["openrouter"] = "ok" if response.ok else f"http {response.status_code}"
            return ProviderHealth(status="ok" if response.ok else "degraded", details=details)
        except requests.exceptions.RequestException as e:
            details["openrouter"] = f"error: {e}"
            return ProviderHealth(status="error", details=details)
