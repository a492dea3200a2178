"""
Request-scoped dependencies.

Authentication happens upstream; the gateway forwards the tenant and user
as X-Tenant-ID / X-User-ID headers. They are still checked against the
database so a request can never act on another tenant's data.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from hirefit.core.config import settings
from hirefit.core.exceptions import AccessDeniedError, NotFoundError
from hirefit.database import SessionLocal, get_db
from hirefit.models.tenant import Tenant
from hirefit.models.user import User
from hirefit.services.ai import AIProvider, get_ai_provider
from hirefit.services.queue import QueuePublisher, get_queue_publisher
from hirefit.services.resume_processing import ResumeProcessingService
from hirefit.services.resumes import ResumeService
from hirefit.services.storage import LocalBlobStore


@dataclass
class TenantContext:
    tenant_id: int
    user_id: int


def get_tenant_context(
    x_tenant_id: int = Header(...),
    x_user_id: int = Header(...),
    db: Session = Depends(get_db),
) -> TenantContext:
    tenant = db.query(Tenant).filter(Tenant.id == x_tenant_id).first()
    if not tenant or not tenant.is_active:
        raise NotFoundError("Tenant not found")

    user = db.query(User).filter(User.id == x_user_id, User.tenant_id == x_tenant_id).first()
    if not user or not user.is_active:
        raise AccessDeniedError("User does not belong to this tenant")

    return TenantContext(tenant_id=tenant.id, user_id=user.id)


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


@lru_cache()
def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore(settings.storage.upload_dir)


def get_provider() -> AIProvider:
    return get_ai_provider()


def get_publisher() -> QueuePublisher:
    return get_queue_publisher()


def get_resume_processing_service(
    db: Session = Depends(get_db),
    provider: AIProvider = Depends(get_provider),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    publisher: QueuePublisher = Depends(get_publisher),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> ResumeProcessingService:
    return ResumeProcessingService(db, provider, blob_store, publisher, session_factory)


def get_resume_service(
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
) -> ResumeService:
    return ResumeService(db, blob_store)
