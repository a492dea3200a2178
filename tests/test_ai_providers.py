import io
import json
import pytest
import docx
import requests

from hirefit.core.config import settings
from hirefit.core.exceptions import AIError, AIKillSwitchError, AnalysisError, ParseError
from hirefit.schemas.ai import JobContext, ResumeAnalysisInput
from hirefit.services.ai import MockAIProvider, OpenRouterAIProvider, create_ai_provider
from hirefit.services.ai import openrouter as openrouter_module
from hirefit.services.ai.base import clamp_confidence, clamp_score

JOB = JobContext(
    id=1,
    title="Backend Engineer",
    requirements=["Python", "SQL", "AWS", "Kubernetes"],
)


def _input(text, job=JOB):
    return ResumeAnalysisInput(resume_text=text, job=job)


# --- Shared helpers ---

@pytest.mark.parametrize("value,expected", [
    (87.6, 88), (-4, 0), (140, 100), (None, 50), ("n/a", 50), (float("nan"), 50),
])
def test_clamp_score(value, expected):
    assert clamp_score(value) == expected


@pytest.mark.parametrize("value,expected", [(0.65, 0.65), (0, 0.8), (None, 0.8), (3, 1.0)])
def test_clamp_confidence(value, expected):
    assert clamp_confidence(value) == expected


def test_factory_selects_provider():
    assert isinstance(create_ai_provider("mock"), MockAIProvider)
    assert isinstance(create_ai_provider("openrouter"), OpenRouterAIProvider)
    assert isinstance(create_ai_provider("something-else"), MockAIProvider)


# --- Mock provider ---

def test_mock_analysis_is_deterministic(sample_resume):
    provider = MockAIProvider()
    first = provider.analyze_resume(_input(sample_resume.decode()))
    second = provider.analyze_resume(_input(sample_resume.decode()))

    assert first.scores == second.scores
    assert first.candidate_data == second.candidate_data
    assert first.model_version == "mock-ai-v1.0"


def test_mock_extracts_contact_details(sample_resume):
    result = MockAIProvider().analyze_resume(_input(sample_resume.decode()))
    data = result.candidate_data

    assert (data.first_name, data.last_name) == ("Jane", "Doe")
    assert data.email == "jane.doe@example.com"
    assert data.phone == "+1-555-0100"
    assert data.skills[:5] == ["Python", "SQL", "AWS", "Docker", "Leadership"]


def test_mock_scores_follow_requirement_overlap(sample_resume):
    scores = MockAIProvider().analyze_resume(_input(sample_resume.decode())).scores

    assert set(scores.matched_skills) >= {"Python", "SQL", "AWS"}
    assert scores.missing_skills == ["Kubernetes"]
    assert 40 <= scores.overall_score <= 100
    assert 0.75 <= scores.confidence <= 0.95
    assert "Jane Doe" in scores.explanation


def test_mock_parse_plain_text(sample_resume):
    result = MockAIProvider().parse_document(sample_resume, "jane.txt", "text/plain")
    assert result.text.startswith("Jane Doe")
    assert result.confidence == 0.99
    assert result.page_count == 1


def test_mock_parse_binary_uses_filename():
    result = MockAIProvider().parse_document(b"%PDF-1.4 fake", "maria_garcia_resume.pdf", "application/pdf")
    assert result.text.startswith("Maria Garcia")
    assert 0.92 <= result.confidence <= 0.97


def test_mock_parse_empty_document():
    with pytest.raises(ParseError):
        MockAIProvider().parse_document(b"", "empty.pdf", "application/pdf")


def test_mock_health():
    assert MockAIProvider().health_check().status == "ok"


# --- OpenRouter provider ---

class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.ok = status_code < 400

    def raise_for_status(self):
        if not self.ok:
            raise requests.exceptions.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self.payload


def _completion(content):
    return {"choices": [{"message": {"content": content}}]}


AI_JSON = {
    "candidate": {
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jane.doe@example.com",
        "skills": ["Python", "SQL", None, " "],
        "experience": [{"company": "Stripe", "title": "Engineer", "years": "6"}],
        "education": [{"institution": "MIT", "degree": "BS", "field": "CS"}],
    },
    "scores": {
        "overallScore": 91.4,
        "confidence": 0,
        "skillsMatchScore": 120,
        "experienceMatchScore": "bad",
        "educationMatchScore": 70,
        "overallFitScore": 88,
    },
    "analysis": {
        "explanation": "Strong backend profile.",
        "matchedSkills": ["Python", "SQL"],
        "missingSkills": ["Kubernetes"],
    },
}


@pytest.fixture
def openrouter():
    return OpenRouterAIProvider(api_key="test-key", model_name="primary/model", fallback_model="fallback/model")


def test_openrouter_maps_and_clamps_response(openrouter, monkeypatch):
    calls = []

    def fake_post(url, headers, data, timeout):
        calls.append(json.loads(data))
        return FakeResponse(_completion("```json\n" + json.dumps(AI_JSON) + "\n```"))

    monkeypatch.setattr(openrouter_module.requests, "post", fake_post)
    result = openrouter.analyze_resume(_input("Jane Doe resume text"))

    assert calls[0]["model"] == "primary/model"
    assert result.model_version == "openrouter-primary/model"
    assert result.candidate_data.skills == ["Python", "SQL"]
    assert result.candidate_data.experience[0].years == 6
    assert result.scores.overall_score == 91
    assert result.scores.skills_match_score == 100
    assert result.scores.experience_match_score == 50
    assert result.scores.confidence == 0.8
    assert result.scores.certifications_score is None
    assert result.scores.missing_skills == ["Kubernetes"]


def test_openrouter_falls_back_to_second_model(openrouter, monkeypatch):
    models = []

    def fake_post(url, headers, data, timeout):
        model = json.loads(data)["model"]
        models.append(model)
        if model == "primary/model":
            return FakeResponse(status_code=500)
        return FakeResponse(_completion(json.dumps(AI_JSON)))

    monkeypatch.setattr(openrouter_module.requests, "post", fake_post)
    result = openrouter.analyze_resume(_input("resume"))

    assert models == ["primary/model", "fallback/model"]
    assert result.model_version == "openrouter-fallback/model"


def test_openrouter_raises_when_all_models_fail(openrouter, monkeypatch):
    monkeypatch.setattr(openrouter_module.requests, "post", lambda **kwargs: FakeResponse(status_code=500))
    with pytest.raises(AnalysisError):
        openrouter.analyze_resume(_input("resume"))


def test_openrouter_rejects_non_json_answer(openrouter, monkeypatch):
    monkeypatch.setattr(
        openrouter_module.requests, "post", lambda **kwargs: FakeResponse(_completion("I cannot help with that."))
    )
    with pytest.raises(AnalysisError):
        openrouter.analyze_resume(_input("resume"))


def test_openrouter_kill_switch(openrouter, monkeypatch):
    monkeypatch.setattr(settings.ai, "kill_switch", True)
    with pytest.raises(AIKillSwitchError):
        openrouter.analyze_resume(_input("resume"))
    assert openrouter.health_check().status == "degraded"


def test_openrouter_without_key(monkeypatch):
    provider = OpenRouterAIProvider(api_key="")
    with pytest.raises(AIError):
        provider.analyze_resume(_input("resume"))
    assert provider.health_check().status == "error"


def test_openrouter_parses_docx(openrouter):
    document = docx.Document()
    document.add_paragraph("Jane Doe")
    document.add_paragraph("Senior Engineer")
    buffer = io.BytesIO()
    document.save(buffer)

    result = openrouter.parse_document(
        buffer.getvalue(),
        "jane.docx",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    )
    assert result.text == "Jane Doe\nSenior Engineer"
    assert result.confidence == 0.95


def test_openrouter_parses_plain_text(openrouter, sample_resume):
    result = openrouter.parse_document(sample_resume, "jane.txt", "text/plain")
    assert result.text.startswith("Jane Doe")
    assert result.confidence == 1.0


def test_openrouter_rejects_corrupt_pdf(openrouter):
    with pytest.raises(ParseError):
        openrouter.parse_document(b"not really a pdf", "broken.pdf", "application/pdf")
