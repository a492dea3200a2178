import os
import logging
from pydantic import BaseModel, Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class AISettings(BaseModel):
    provider: str = Field(default=os.getenv("AI_PROVIDER", "mock").lower())
    openrouter_api_key: Optional[str] = Field(default=os.getenv("OPENROUTER_API_KEY"))
    model_name: str = Field(default=os.getenv("AI_MODEL_NAME", "google/gemini-2.0-flash-001"))
    fallback_model: str = Field(default=os.getenv("AI_FALLBACK_MODEL", "google/gemini-2.0-flash-lite-preview-02-05:free"))
    kill_switch: bool = Field(default=os.getenv("AI_KILL_SWITCH", "false").lower() == "true")
    temperature: float = 0.3
    request_timeout_seconds: int = int(os.getenv("AI_REQUEST_TIMEOUT_SECONDS", "30"))
    mock_latency_ms: int = int(os.getenv("AI_MOCK_LATENCY_MS", "0"))


class QueueSettings(BaseModel):
    # Empty broker URL disables the queue and resumes are processed inline.
    broker_url: str = os.getenv("QUEUE_BROKER_URL", "")
    processing_queue: str = os.getenv("RESUME_QUEUE_NAME", "resume-processing")
    results_queue: str = os.getenv("RESUME_RESULTS_QUEUE_NAME", "resume-results")
    concurrency: int = int(os.getenv("QUEUE_CONCURRENCY", "3"))
    max_attempts: int = int(os.getenv("QUEUE_MAX_ATTEMPTS", "5"))
    receive_timeout_seconds: int = int(os.getenv("QUEUE_RECEIVE_TIMEOUT_SECONDS", "5"))
    # Unsettled deliveries are redelivered once their lock is this old
    visibility_timeout_seconds: int = int(os.getenv("QUEUE_VISIBILITY_TIMEOUT_SECONDS", "300"))
    run_consumer_in_api: bool = os.getenv("QUEUE_CONSUMER_IN_API", "true").lower() == "true"


class StorageSettings(BaseModel):
    upload_dir: str = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads", "resumes"))
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))


class Config(BaseModel):
    app_name: str = "HireFit API"
    environment: str = os.getenv("APP_ENV", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./hirefit.db")

    # Pipeline components
    ai: AISettings = AISettings()
    queue: QueueSettings = QueueSettings()
    storage: StorageSettings = StorageSettings()

    # Resumes stuck in "processing" longer than this are swept to "failed"
    stale_processing_minutes: int = int(os.getenv("STALE_PROCESSING_MINUTES", "30"))
    reaper_interval_seconds: int = int(os.getenv("REAPER_INTERVAL_SECONDS", "300"))

    version: str = "1.0.0"
    build_id: str = os.getenv("BUILD_ID", "local")
    request_id_header: str = "X-Request-ID"

    # CORS: comma-separated origins loaded from env.
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://localhost:3001,"
                "http://127.0.0.1:3000,http://127.0.0.1:3001",
            ).split(",")
            if o.strip()
        ]
    )


settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if settings.ai.provider == "openrouter" and not settings.ai.openrouter_api_key:
        raise RuntimeError(
            "FATAL: AI_PROVIDER=openrouter requires OPENROUTER_API_KEY to be set "
            "for non-development environments."
        )
elif settings.ai.provider == "mock":
    _logger.info("Using mock AI provider; resume scores are synthetic.")
