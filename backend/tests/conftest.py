import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

_TEST_DB_DIR = tempfile.mkdtemp(prefix="glovebrand-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DB_DIR}/test.db")
os.environ.setdefault("ARTIFACT_STORAGE_BACKEND", "local")
os.environ.setdefault("ARTIFACT_LOCAL_DIR", f"{_TEST_DB_DIR}/artifacts")
os.environ.setdefault("JOB_QUEUE_ENABLED", "true")

from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import delete

from glovebrand.db.base import SessionLocal
from glovebrand.db.deps import get_session
from glovebrand.db.models import BrandingJob, QueueMessage
from glovebrand.db.repositories.branding_jobs import BrandingJobsRepository
from glovebrand.db.repositories.queue_messages import QueueMessagesRepository
from glovebrand.main import app
from glovebrand.routers import branding_jobs as branding_jobs_router
from glovebrand.routers import debug as debug_router
from glovebrand.services.artifact_storage import LocalArtifactStorage


@pytest.fixture(scope="session", autouse=True)
def apply_migrations() -> None:
    alembic_cfg = Config(str(ROOT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(ROOT_DIR / "alembic"))
    command.upgrade(alembic_cfg, "head")


class FakeTemporalHandle:
    def __init__(self, workflow_id: str, client: "FakeTemporalClient"):
        self.id = workflow_id
        self.first_execution_run_id = f"{workflow_id}-run"
        self._client = client

    async def terminate(self, reason: str | None = None) -> None:
        if self._client.terminate_error is not None:
            raise self._client.terminate_error
        self._client.terminated.append((self.id, reason))


class FakeTemporalClient:
    def __init__(self) -> None:
        self.started: list[str] = []
        self.start_kwargs: list[dict] = []
        self.terminated: list[tuple[str, str | None]] = []
        self.start_error: Exception | None = None
        self.terminate_error: Exception | None = None

    async def start_workflow(self, *args, **kwargs) -> FakeTemporalHandle:
        if self.start_error is not None:
            raise self.start_error
        workflow_id = kwargs.get("id") or "test-workflow"
        self.started.append(workflow_id)
        self.start_kwargs.append({"args": args, **kwargs})
        return FakeTemporalHandle(workflow_id, self)

    def get_workflow_handle(self, workflow_id: str, **_kwargs) -> FakeTemporalHandle:
        return FakeTemporalHandle(workflow_id, self)


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.execute(delete(QueueMessage))
        session.execute(delete(BrandingJob))
        session.commit()
        session.close()


@pytest.fixture()
def store(db_session) -> BrandingJobsRepository:
    return BrandingJobsRepository(db_session)


@pytest.fixture()
def queue(db_session) -> QueueMessagesRepository:
    return QueueMessagesRepository(db_session, queue_name="glovejobs-test", max_delivery_count=3)


@pytest.fixture()
def artifact_storage(tmp_path) -> LocalArtifactStorage:
    return LocalArtifactStorage(tmp_path / "artifacts")


@pytest.fixture()
def override_dependencies(db_session):
    def get_session_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_session] = get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def fake_temporal(monkeypatch):
    client = FakeTemporalClient()

    async def _get_temporal_client():
        return client

    monkeypatch.setattr(branding_jobs_router, "get_temporal_client", _get_temporal_client)
    monkeypatch.setattr(debug_router, "get_temporal_client", _get_temporal_client)
    return client


@pytest.fixture()
def api_client(override_dependencies):
    with TestClient(app) as client:
        yield client
