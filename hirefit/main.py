"""
HireFit API - FastAPI Application

1. /docs and /openapi.json at root level (no API prefix)
2. Middleware order: CORS -> CorrelationId -> Logging
3. init_db() and feature catalog seeding only at startup
4. Queue consumer and stale-resume reaper run in-process when a broker is configured
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

# Core imports (leaf modules - safe for circular imports)
import hirefit.models  # Force model registration with SQLAlchemy
from hirefit.core.config import settings
from hirefit.core.exceptions import AppException
from hirefit.core.logging import setup_logging
from hirefit.core.middleware import CorrelationIdMiddleware, LoggingMiddleware
from hirefit.core.init_system import init_system_data
from hirefit.database import init_db, SessionLocal
from hirefit.dependencies import get_blob_store
from hirefit.routers.api_router import api_router
from hirefit.services.ai import get_ai_provider
from hirefit.services.queue import get_queue_publisher
from hirefit.services.queue_consumer import QueueConsumer, StaleResumeReaper

# ============================================================================
# LOGGING SETUP
# ============================================================================
setup_logging()
logger = logging.getLogger(__name__)

def start_background_workers(app: FastAPI):
    """Start the in-process consumer and reaper when the queue is enabled."""
    publisher = get_queue_publisher()
    if not publisher.is_enabled or not settings.queue.run_consumer_in_api:
        logger.info("In-process queue consumer disabled")
        return

    consumer = QueueConsumer(
        broker=publisher.broker,
        provider=get_ai_provider(),
        blob_store=get_blob_store(),
        publisher=publisher,
    )
    reaper = StaleResumeReaper(provider=get_ai_provider())
    consumer.start()
    reaper.start()
    app.state.consumer = consumer
    app.state.reaper = reaper

def stop_background_workers(app: FastAPI):
    consumer = getattr(app.state, "consumer", None)
    reaper = getattr(app.state, "reaper", None)
    if consumer:
        consumer.stop()
    if reaper:
        reaper.stop()

# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle manager.
    - Startup: Initialize database, seed the feature catalog, start workers
    - Shutdown: Stop workers
    """
    # === STARTUP ===
    logger.info(f"Starting {settings.app_name} v{settings.version} ({settings.environment})")

    try:
        init_db()
        logger.info("Database initialized successfully")

        init_system_data()
        logger.info("System initialization check complete")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    start_background_workers(app)

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Gracefully shutting down...")
    stop_background_workers(app)

# ============================================================================
# FASTAPI INSTANCE
# ============================================================================
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="HireFit - Multi-tenant applicant tracking with AI resume screening",
    docs_url="/docs",
    redoc_url=None,
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# ============================================================================
# MIDDLEWARE STACK
# Add in REVERSE order (last added runs first)
# ============================================================================
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

# CORS (outermost - runs first on requests, last on responses)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.request_id_header, "X-Process-Time"],
)

# ============================================================================
# EXCEPTION HANDLERS
# Every error leaves as {"success": false, "errors": [...]}
# ============================================================================
def error_response(status_code: int, errors: List[Dict[str, Any]]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "errors": errors})

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # loc is ('body', 'file') or ('header', 'x-tenant-id')
    errors = [
        {
            "field": str(err["loc"][-1]) if err["loc"] else "unknown",
            "msg": err["msg"],
            "code": "VALIDATION_ERROR",
        }
        for err in exc.errors()
    ]
    logger.warning(f"Rejected {request.method} {request.url.path}: {errors}")
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, errors)

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Domain errors carry their own status code and error code."""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"{exc.error_code}: {exc.message}", extra={"code": exc.error_code, "path": request.url.path})
    error = {"msg": exc.message, "code": exc.error_code}
    if exc.details:
        error["details"] = exc.details
    return error_response(exc.status_code, [error])

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, [{"msg": msg}])

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled server error", extra={"path": request.url.path})
    return error_response(500, [{"msg": "An unexpected server error occurred.", "code": "INTERNAL_ERROR"}])

# ============================================================================
# ROUTER INCLUSION
# API prefix applied ONLY to routers, not to docs
# ============================================================================
app.include_router(api_router, prefix=settings.api_prefix)

# ============================================================================
# OPERATIONAL ENDPOINTS (at root level)
# ============================================================================
@app.get("/", tags=["Health"])
def root():
    """API root endpoint."""
    return {
        "message": settings.app_name,
        "version": settings.version,
        "docs": "/docs",
    }

@app.get("/health", tags=["Health"])
def health_check():
    """Liveness probe for load balancers and orchestrators."""
    return {
        "status": "up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.version,
        "environment": settings.environment,
    }

@app.get("/readiness", tags=["Health"])
def readiness_check():
    """Readiness probe - verifies database connectivity and reports the queue."""
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=503, detail="Service not ready")

    queue = get_queue_publisher().health_check()
    if queue.status == "error":
        logger.error(f"Readiness check failed: queue {queue.error}")
        raise HTTPException(status_code=503, detail="Service not ready")

    return {
        "status": "ready",
        "components": {"database": "connected", "queue": queue.status},
    }

@app.get("/liveness", tags=["Health"])
def liveness_check():
    """Alias for health check."""
    return health_check()
