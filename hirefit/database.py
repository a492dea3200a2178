from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from hirefit.core.config import settings


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # Sessions cross threads: request handlers, background tasks, queue workers
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Request-scoped session. Services own their commits and rollbacks.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: Callable[[], Session] = SessionLocal) -> Iterator[Session]:
    """Session for work that runs outside a request (background tasks, queue workers)."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create tables for every registered model. Called from the startup lifespan."""
    from hirefit.models import (  # noqa: F401
        tenant, user, job, candidate, application, resume, feature
    )
    Base.metadata.create_all(bind=engine)
