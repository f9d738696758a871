import pytest
import os
import uuid
from typing import Optional

# Point the app at the test database and print metrics to stdout before anything imports it
TEST_DATABASE_URL = "sqlite:///./job-board-test.db"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")
os.environ.setdefault("LOG_FORMAT", "console")

import httpx
from sqlalchemy.orm import Session, sessionmaker
from fastapi.testclient import TestClient

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

# Import app and dependency functions first
import main
from main import app, get_db, get_current_user, get_scoring_service, get_settings, get_storage

# Import database components needed for setup
import database
from database import Base, build_engine
import logic
import models
import schemas
from scoring import ScoringService
from settings import Settings
from storage import ResumeStorage

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    database.engine.dispose()
    for path in (db_path, f"{db_path}-wal", f"{db_path}-shm"):
        if os.path.exists(path):
            try:
                os.unlink(path)
                print(f"\nRemoved existing test database file: {path}")
            except OSError as e:
                print(f"Error removing existing test database file {path}: {e}")

    print(f"Creating test database tables from models at {db_path}")
    # --- Create schema directly from models --- #
    Base.metadata.create_all(bind=test_engine)
    # --- End schema creation --- #

    print("Stamping database with Alembic head revision")
    # --- Stamp the database with the latest Alembic revision --- #
    alembic_cfg = Config("alembic.ini") # Load base config
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL) # Point to test DB
    command.stamp(alembic_cfg, "head") # Mark DB as up-to-date
    # --- End Alembic stamp --- #

    yield  # Tests run here

    test_engine.dispose()
    database.engine.dispose()
    for path in (db_path, f"{db_path}-wal", f"{db_path}-shm"):
        if os.path.exists(path):
            try:
                os.unlink(path)
                print(f"Removed test database file: {path}")
            except OSError as e:
                print(f"Error removing test database file {path}: {e}")


@pytest.fixture(scope="function") # Function scope for session
def db_session(setup_test_database): # Depends on DB setup
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


# --- Services --- #
@pytest.fixture(scope="function")
def test_settings(tmp_path) -> Settings:
    """Settings with scoring disabled and storage in a temp dir."""
    return Settings(
        ats_api_url=None,
        storage_dir=str(tmp_path / "storage"),
        storage_signing_key="test-signing-key",
        app_base_url="http://testserver",
        auth_enabled=False,
    )


@pytest.fixture(scope="function")
def storage(test_settings) -> ResumeStorage:
    return ResumeStorage.from_settings(test_settings)


def build_scoring_service(
    settings: Settings,
    storage: ResumeStorage,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ScoringService:
    return ScoringService(
        settings=settings,
        storage=storage,
        session_factory=TestSessionLocal,
        session_registry=main.session_registry,
        notifier=main.manager,
        transport=transport,
    )


@pytest.fixture(scope="function")
def scoring_service(test_settings, storage) -> ScoringService:
    return build_scoring_service(test_settings, storage)


# Override dependencies to use our test database and services
@pytest.fixture(scope="function")
def override_get_db():
    """Override the get_db dependency to use our test database.

    This creates a new session for each API call, allowing proper
    transaction handling within FastAPI endpoints.
    """

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def override_services(test_settings, storage, scoring_service):
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_scoring_service] = lambda: scoring_service

    yield

    for dependency in (get_settings, get_storage, get_scoring_service, get_current_user):
        app.dependency_overrides.pop(dependency, None)


@pytest.fixture(scope="function")
def test_client(override_get_db, override_services):
    """Provides a test client configured with our test database session."""
    return TestClient(app)


# --- Data helpers --- #
def create_test_profile(
    db: Session, user_type: str = "jobseeker", email: Optional[str] = None
) -> models.Profile:
    """Helper to create a profile directly in the test database."""
    email = email or f"{user_type}-{uuid.uuid4().hex[:8]}@example.com"
    profile = models.Profile(
        auth_subject=f"sub-for-{email.replace('@', '-')}",
        first_name="Test",
        last_name=user_type.title(),
        user_type=user_type,
        email=email,
        phone="555-1234",
        company="TestCorp" if user_type == "hr" else None,
        position="Recruiter" if user_type == "hr" else None,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def create_test_job(db: Session, poster: models.Profile, **overrides) -> models.Job:
    fields = {
        "title": "Frontend Engineer",
        "company": "TestCorp",
        "location": "Remote",
        "type": "full-time",
        "salary": "$120k",
        "description": "Need React+TS dev",
        "requirements": ["React", "TypeScript"],
    }
    fields.update(overrides)
    job = models.Job(posted_by=poster.id, **fields)
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def create_test_resume(
    db: Session,
    storage: ResumeStorage,
    owner: models.Profile,
    content: bytes = b"%PDF-1.4 React TypeScript resume",
) -> models.Resume:
    key = f"{owner.id}/{uuid.uuid4().hex}.pdf"
    storage.upload(key, content)
    resume = models.Resume(
        user_id=owner.id, file_name="resume.pdf", file_path=key, content_type="application/pdf"
    )
    db.add(resume)
    db.commit()
    db.refresh(resume)
    return resume


def login_as(profile: models.Profile) -> schemas.Profile:
    """Make ``profile`` the authenticated caller for subsequent requests."""
    snapshot = schemas.Profile.model_validate(profile)
    app.dependency_overrides[get_current_user] = lambda: snapshot
    return snapshot


def make_context(
    db: Session,
    profile: models.Profile,
    settings: Settings,
    storage: ResumeStorage,
    scoring: ScoringService,
) -> logic.RequestContext:
    """Build the per-request context the routes build, for calling ``logic`` directly."""
    user = schemas.Profile.model_validate(profile)
    return logic.RequestContext(
        db=db,
        user=user,
        session=main.session_registry.establish(user.id, user.user_type.value),
        settings=settings,
        storage=storage,
        scoring=scoring,
        notifier=main.manager,
        sessions=main.session_registry,
    )
