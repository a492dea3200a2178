import pytest
import os
import uuid
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["QUEUE_BROKER_URL"] = ""
os.environ["AI_PROVIDER"] = "mock"

from hirefit.database import Base, get_db
from hirefit.main import app
from hirefit.core.init_system import seed_feature_definitions
from hirefit.dependencies import get_blob_store, get_provider, get_publisher, get_session_factory
from hirefit.models.job import Job
from hirefit.models.tenant import Tenant
from hirefit.models.user import User
from hirefit.services.ai.mock import MockAIProvider
from hirefit.services.queue import InMemoryBroker, QueuePublisher
from hirefit.services.resume_processing import ResumeProcessingService
from hirefit.services.storage import LocalBlobStore
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PROCESSING_QUEUE = "resume-processing"
RESULTS_QUEUE = "resume-results"

SAMPLE_RESUME = b"""Jane Doe
jane.doe@example.com | +1-555-0100 | Seattle, WA

SUMMARY
Backend engineer with 6 years of experience building data platforms.

EXPERIENCE
Senior Engineer at Stripe
- Built payment pipelines in Python and SQL on AWS

SKILLS
Python, SQL, AWS, Docker, Leadership
"""


@pytest.fixture(scope="function", autouse=True)
def setup_database():
    """Services commit their own transactions, so every test gets a fresh schema."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """A session with the feature catalog already seeded."""
    session = TestingSessionLocal()
    seed_feature_definitions(session)
    yield session
    session.close()


@pytest.fixture(scope="function")
def tenant_factory(db_session):
    def _create(**overrides):
        values = {
            "name": "Alpha Corp",
            "slug": f"alpha-corp-{uuid.uuid4()}",
            "subscription_tier": "free",
            "max_jobs": 3,
            "max_candidates": 50,
            "max_team_members": 1,
            "max_ai_scores_per_month": 20,
        }
        values.update(overrides)
        tenant = Tenant(**values)
        db_session.add(tenant)
        db_session.commit()
        return tenant
    return _create


@pytest.fixture(scope="function")
def tenant(tenant_factory):
    return tenant_factory()


@pytest.fixture(scope="function")
def user(db_session, tenant):
    user = User(tenant_id=tenant.id, email="recruiter@alphacorp.com", full_name="Riley Recruiter")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope="function")
def job_factory(db_session):
    def _create(tenant_id, **overrides):
        values = {
            "tenant_id": tenant_id,
            "title": "Backend Engineer",
            "description": "Build and operate our data services.",
            "requirements": ["Python", "SQL", "AWS", "Kubernetes"],
            "department": "Engineering",
            "location": "Remote",
        }
        values.update(overrides)
        job = Job(**values)
        db_session.add(job)
        db_session.commit()
        return job
    return _create


@pytest.fixture(scope="function")
def job(job_factory, tenant):
    return job_factory(tenant.id)


@pytest.fixture(scope="function")
def provider():
    return MockAIProvider()


@pytest.fixture(scope="function")
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture(scope="function")
def broker():
    return InMemoryBroker()


@pytest.fixture(scope="function")
def publisher(broker):
    return QueuePublisher(broker, PROCESSING_QUEUE, RESULTS_QUEUE)


@pytest.fixture(scope="function")
def make_service(db_session, blob_store):
    """Build a ResumeProcessingService; inline tasks use sessions on the test engine."""
    def _make(provider=None, publisher=None):
        return ResumeProcessingService(
            db_session,
            provider or MockAIProvider(),
            blob_store,
            publisher,
            TestingSessionLocal,
        )
    return _make


@pytest.fixture(scope="function")
def run_background():
    """Run queued BackgroundTasks synchronously, the way the response cycle would."""
    def _run(background_tasks):
        for task in background_tasks.tasks:
            task.func(*task.args, **task.kwargs)
    return _run


@pytest.fixture(scope="function")
def client(db_session, blob_store):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_provider] = lambda: MockAIProvider()
    app.dependency_overrides[get_publisher] = lambda: QueuePublisher(None, PROCESSING_QUEUE, RESULTS_QUEUE)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def auth_headers(tenant, user):
    return {"X-Tenant-ID": str(tenant.id), "X-User-ID": str(user.id)}


@pytest.fixture(scope="function")
def sample_resume():
    return SAMPLE_RESUME


@pytest.fixture(scope="function")
def session_factory():
    return TestingSessionLocal
