"""
Mock AI Provider.

Simulates parsing and scoring for development and tests. All randomness comes
from a random.Random seeded with a hash of the call's inputs, so identical
inputs always produce identical output. Never touches the network.
"""
import hashlib
import logging
import random
import re
import time
from typing import Dict, List, Optional

from hirefit.core.exceptions import ParseError
from hirefit.schemas.ai import (
    DocumentParseResult,
    EducationEntry,
    ExperienceEntry,
    JobContext,
    ParsedCandidateData,
    ProviderHealth,
    ResumeAnalysisInput,
    ResumeAnalysisResult,
    ResumeScores,
)
from hirefit.services.ai.base import AIProvider

logger = logging.getLogger(__name__)

SKILLS = [
    "Product Management", "Agile", "Scrum", "JIRA", "Data Analysis",
    "User Research", "A/B Testing", "SQL", "Python", "Stakeholder Management",
    "Roadmap Planning", "PRDs", "OKRs", "Project Management", "Leadership",
    "JavaScript", "TypeScript", "React", "Node.js", "AWS", "Azure",
    "Machine Learning", "Data Science", "Communication", "Problem Solving",
]

COMPANIES = [
    "Google", "Amazon", "Microsoft", "Meta", "Apple", "Netflix", "Uber",
    "Airbnb", "Stripe", "Salesforce", "Adobe", "LinkedIn", "Twitter", "Snap",
]

TITLES = [
    "Product Manager", "Senior PM", "Associate PM", "Project Manager",
    "Program Manager", "Software Engineer", "Senior Engineer", "Tech Lead",
    "Data Analyst", "UX Designer", "Marketing Manager", "Sales Manager",
]

UNIVERSITIES = [
    "Stanford University", "MIT", "UC Berkeley", "Harvard", "Columbia",
    "Northwestern", "Carnegie Mellon", "University of Michigan", "UCLA",
    "Georgia Tech", "University of Texas", "Cornell", "NYU", "USC",
]

CERTIFICATIONS = ["PMP", "AWS Certified", "Scrum Master", "Google Analytics", "Six Sigma"]

CITIES = [
    ("San Francisco", "CA"), ("New York", "NY"), ("Seattle", "WA"), ("Austin", "TX"),
    ("Boston", "MA"), ("Los Angeles", "CA"), ("Chicago", "IL"), ("Denver", "CO"),
]

# Reference year for synthesized career histories
BASE_YEAR = 2024

EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
PHONE_RE = re.compile(r"\+?\d[\d\-() ]{7,}\d")
NAME_RE = re.compile(r"^[ \t]*([A-Z][a-z]+)[ \t]+([A-Z][a-z]+)", re.MULTILINE)
YEARS_RE = re.compile(r"(\d{1,2})\+?\s+years", re.IGNORECASE)
SKILLS_LINE_RE = re.compile(r"^[ \t]*(?:technical[ \t]+)?skills[ \t]*(?::[ \t]*(.*))?$", re.IGNORECASE | re.MULTILINE)


def _seeded_rng(*parts: str) -> random.Random:
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return random.Random(int(digest[:16], 16))


def _skill_matches(skill: str, requirement: str) -> bool:
    s, r = skill.lower(), requirement.lower()
    return s in r or r in s


class MockAIProvider(AIProvider):
    name = "mock"
    model_version = "mock-ai-v1.0"

    def __init__(self, latency_ms: int = 0):
        self.latency_ms = latency_ms

    def _delay(self):
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000)

    # --- Parsing ---

    def parse_document(self, content: bytes, file_name: str, mime_type: str) -> DocumentParseResult:
        if not content:
            raise ParseError(f"Document {file_name} is empty")

        self._delay()
        rng = _seeded_rng(hashlib.sha256(content).hexdigest(), mime_type)

        if mime_type == "text/plain":
            text = content.decode("utf-8", errors="replace").strip()
            if not text:
                raise ParseError(f"Document {file_name} contains no text")
            pages = 1 + len(text) // 3000
            confidence = 0.99
        else:
            text = self._generate_resume_text(rng, self._name_from_filename(file_name))
            pages = 1 + rng.randint(0, 1)
            confidence = round(0.92 + rng.random() * 0.05, 4)

        return DocumentParseResult(
            text=text,
            page_count=pages,
            confidence=confidence,
            metadata={"file_name": file_name, "file_type": mime_type, "parser_version": "mock-v1.0"},
        )

    @staticmethod
    def _name_from_filename(file_name: str) -> Dict[str, str]:
        stem = re.sub(r"\.(pdf|docx?|txt)$", "", file_name, flags=re.IGNORECASE)
        parts = [
            p for p in re.split(r"\s+", re.sub(r"[-_]", " ", stem))
            if len(p) > 1 and not re.search(r"resume|cv|curriculum|vitae", p, re.IGNORECASE)
        ]
        if len(parts) >= 2:
            return {"first_name": parts[0].capitalize(), "last_name": parts[-1].capitalize()}
        return {}

    @staticmethod
    def _generate_resume_text(rng: random.Random, name: Dict[str, str]) -> str:
        first = name.get("first_name", "John")
        last = name.get("last_name", "Doe")
        skills = rng.sample(SKILLS, 6)
        return "\n".join([
            f"{first} {last}",
            f"{first.lower()}.{last.lower()}@email.com | +1-555-1234 | San Francisco, CA",
            "",
            "SUMMARY",
            f"Experienced professional with expertise in {', '.join(skills[:3])}.",
            "",
            "EXPERIENCE",
            f"{rng.choice(TITLES)} at {rng.choice(COMPANIES)}",
            "2020 - Present",
            f"- Led initiatives in {skills[0]} and {skills[1]}",
            "- Collaborated with cross-functional teams",
            "",
            f"{rng.choice(TITLES)} at {rng.choice(COMPANIES)}",
            "2017 - 2020",
            f"- Managed projects involving {skills[2]} and {skills[3]}",
            "- Delivered results exceeding targets",
            "",
            "EDUCATION",
            rng.choice(UNIVERSITIES),
            "Bachelor of Science in Computer Science",
            "2013 - 2017",
            "",
            "SKILLS",
            ", ".join(skills),
        ])

    # --- Analysis ---

    def analyze_resume(self, analysis_input: ResumeAnalysisInput) -> ResumeAnalysisResult:
        start = time.monotonic()
        job = analysis_input.job
        logger.debug(f"Mock analyzing resume for job: {job.title}")
        self._delay()

        rng = _seeded_rng(analysis_input.resume_text, str(job.id), job.title, "|".join(job.requirements))
        candidate = self._extract_candidate_data(rng, analysis_input.resume_text, analysis_input.parsed_data_hint)
        scores = self._generate_scores(rng, candidate, job)

        return ResumeAnalysisResult(
            candidate_data=candidate,
            scores=scores,
            model_version=self.model_version,
            processing_time_ms=int((time.monotonic() - start) * 1000),
        )

    @staticmethod
    def _extract_skills(rng: random.Random, text: str) -> List[str]:
        found: List[str] = []

        def add(skill: str):
            skill = skill.strip(" .-\t")
            if skill and skill.lower() not in (s.lower() for s in found):
                found.append(skill)

        # Explicit "SKILLS" section: same line or the next non-empty one
        match = SKILLS_LINE_RE.search(text)
        if match:
            line = (match.group(1) or "").strip()
            if not line:
                following = [l for l in text[match.end():].splitlines() if l.strip()]
                line = following[0] if following else ""
            for item in re.split(r"[,;|•]", line):
                add(item)

        for skill in SKILLS:
            if re.search(rf"(?<![\w]){re.escape(skill)}(?![\w])", text, re.IGNORECASE):
                add(skill)

        if not found:
            found = rng.sample(SKILLS, rng.randint(5, 10))
        return found

    def _extract_candidate_data(
        self, rng: random.Random, text: str, hint: Optional[Dict] = None
    ) -> ParsedCandidateData:
        hint = hint or {}

        name_match = NAME_RE.search(text)
        first_name = hint.get("first_name") or (name_match.group(1) if name_match else rng.choice(
            ["James", "Sarah", "Michael", "Emily", "David", "Jessica"]))
        last_name = hint.get("last_name") or (name_match.group(2) if name_match else rng.choice(
            ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia"]))

        email_match = EMAIL_RE.search(text)
        email = hint.get("email") or (email_match.group(0) if email_match else
            f"{first_name.lower()}.{last_name.lower()}{rng.randint(0, 99)}@"
            f"{rng.choice(['gmail.com', 'outlook.com', 'yahoo.com', 'email.com'])}")

        phone_match = PHONE_RE.search(text)
        phone = phone_match.group(0).strip() if phone_match else f"+1-555-{rng.randint(0, 9999):04d}"

        skills = self._extract_skills(rng, text)

        years_match = YEARS_RE.search(text)
        experience_years = int(years_match.group(1)) if years_match else 2 + rng.randint(0, 9)
        experience_years = max(1, experience_years)
        num_jobs = min(4, max(1, -(-experience_years * 2 // 5)))  # ceil(years / 2.5)
        years_at_job = -(-experience_years // num_jobs)
        experience = []
        for i in range(num_jobs):
            start_year = BASE_YEAR - experience_years + i * years_at_job
            experience.append(ExperienceEntry(
                company=rng.choice(COMPANIES),
                title=rng.choice(TITLES),
                start_date=f"{start_year}-01",
                end_date="Present" if i == num_jobs - 1 else f"{start_year + years_at_job}-01",
                years=years_at_job,
                description=f"Led cross-functional initiatives in {rng.choice(skills)} and {rng.choice(skills)}.",
            ))

        education = [EducationEntry(
            institution=rng.choice(UNIVERSITIES),
            degree=rng.choice(["Bachelor of Science", "Bachelor of Arts", "Master of Science", "MBA"]),
            field=rng.choice(["Computer Science", "Business Administration", "Engineering", "Economics", "Data Science"]),
            graduation_year=BASE_YEAR - experience_years - 4,
        )]

        certifications = [c for c in CERTIFICATIONS if c.lower() in text.lower()]
        if not certifications and rng.random() > 0.5:
            certifications = [rng.choice(CERTIFICATIONS)]

        city, state = rng.choice(CITIES)
        focus = skills[2] if len(skills) > 2 else "project delivery"

        return ParsedCandidateData(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            city=city,
            state=state,
            country="USA",
            skills=skills,
            experience=experience,
            education=education,
            certifications=certifications,
            summary=(
                f"Experienced professional with {experience_years}+ years in {' and '.join(skills[:2])}. "
                f"Proven track record in {focus} and cross-functional collaboration."
            ),
            raw_text=text,
        )

    def _generate_scores(self, rng: random.Random, candidate: ParsedCandidateData, job: JobContext) -> ResumeScores:
        requirements = job.requirements
        title = job.title.lower()

        matched = [
            skill for skill in candidate.skills
            if any(_skill_matches(skill, req) for req in requirements) or skill.lower() in title
        ]
        missing = [req for req in requirements if not any(_skill_matches(skill, req) for skill in candidate.skills)]

        skills_score = min(100.0, 40 + len(matched) / max(1, len(requirements)) * 60)

        total_years = sum(e.years for e in candidate.experience)
        experience_score = min(100.0, 30 + total_years * 7)
        education_score = 60 + rng.randint(0, 29)
        certifications_score = 70 + rng.randint(0, 24) if candidate.certifications else 50

        overall_fit = round(
            skills_score * 0.35
            + experience_score * 0.30
            + education_score * 0.20
            + certifications_score * 0.15
        )
        overall = min(100, max(40, overall_fit + rng.randint(0, 9) - 5))

        highlights, concerns = [], []
        if len(matched) >= 3:
            highlights.append(f"Strong alignment with {len(matched)} key skills")
        if total_years >= 5:
            highlights.append(f"Solid {total_years:g}+ years of relevant experience")
        if candidate.certifications:
            highlights.append(f"Professional certifications: {', '.join(candidate.certifications)}")
        if len(missing) > 2:
            concerns.append(f"Missing {len(missing)} required skills")
        if total_years < 3:
            concerns.append("Limited professional experience")

        return ResumeScores(
            overall_score=overall,
            confidence=round(0.75 + rng.random() * 0.2, 4),
            skills_match_score=round(skills_score),
            experience_match_score=round(experience_score),
            education_match_score=education_score,
            certifications_score=certifications_score,
            overall_fit_score=overall_fit,
            explanation=self._explain(candidate, job, skills_score, overall, total_years, matched),
            matched_skills=matched,
            missing_skills=missing[:5],
            highlights=highlights,
            concerns=concerns,
        )

    @staticmethod
    def _explain(candidate, job, skills_score, overall, total_years, matched) -> str:
        parts = [f"{candidate.first_name} {candidate.last_name} scored {overall}% for the {job.title} position."]

        if skills_score >= 70:
            parts.append(f"Strong skills alignment with {', '.join(matched[:3])}.")
        elif skills_score >= 50:
            parts.append(f"Partial skills match including {', '.join(matched[:2])}.")
        else:
            parts.append("Limited skills overlap with job requirements.")

        if total_years >= 7:
            parts.append(f"Extensive experience with {total_years:g}+ years in the field.")
        elif total_years >= 4:
            parts.append(f"Good experience level with {total_years:g} years in similar roles.")
        else:
            parts.append(f"Earlier career stage with {total_years:g} years of experience.")

        if overall >= 80:
            parts.append("Highly recommended for interview.")
        elif overall >= 65:
            parts.append("Recommended for phone screen.")
        elif overall >= 50:
            parts.append("Consider for further review.")
        else:
            parts.append("May not be the best fit for this role.")

        return " ".join(parts)

    def health_check(self) -> ProviderHealth:
        return ProviderHealth(
            status="ok",
            details={"provider": "mock", "message": "Mock AI provider is always healthy"},
        )
