"""
Pytest configuration and fixtures.
"""

import os
import sys
from typing import Callable, Optional

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from clipworker.config import get_settings  # noqa: E402
from clipworker.database import create_db_engine, create_session_factory, create_tables  # noqa: E402
from clipworker.services.job_queue import JobQueue  # noqa: E402
from clipworker.services.project_service import ProjectService  # noqa: E402

TEST_ENV = {
    "KLAP_API_KEY": "test-klap-key",
    "KLAP_API_URL": "https://klap.test/v2",
    "WORKER_SECRET": "worker-secret",
    "S3_BUCKET": "test-bucket",
    "AWS_REGION": "us-east-1",
    "STORAGE_PREFIX": "videos",
    "POLL_INTERVAL_SECONDS": "0",
    "MAX_POLL_ATTEMPTS": "10",
    "RATE_LIMIT_COOLDOWN_SECONDS": "0",
    "RATE_LIMIT_ATTEMPT_COST": "3",
    "MAX_INVOCATION_SECONDS": "30",
    "EXTRACTION_HEADROOM_SECONDS": "10",
}

UNSET_ENV = [
    "API_KEY",
    "DATABASE_URL",
    "NOTIFICATION_WEBHOOK_URL",
    "WEBHOOK_SECRET",
    "STORAGE_PUBLIC_BASE_URL",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
]


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Fast, deterministic settings for every test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    for key in UNSET_ENV:
        monkeypatch.delenv(key, raising=False)

    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'clipworker-test.db'}"


@pytest.fixture
def engine(db_url):
    engine = create_db_engine(db_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def queue(session_factory):
    return JobQueue(session_factory, stale_after_seconds=300)


@pytest.fixture
def projects(session_factory):
    return ProjectService(session_factory)


@pytest.fixture
def project(projects):
    """A freshly created project with empty folders."""
    return projects.create_project("proj_1", title="Episode 42")


@pytest.fixture
def mock_s3_client(mocker):
    """Mock boto3 S3 client for testing."""
    mock = mocker.MagicMock()
    mock.put_object.return_value = {"ETag": '"abc123"'}
    return mock


@pytest.fixture
def storage(mock_s3_client):
    from clipworker.services.storage_service import StorageService

    service = StorageService()
    service._client = mock_s3_client
    return service


class FakeKlapAPI:
    """
    In-memory stand-in for the Klap HTTP API, served through httpx.MockTransport.

    Tests script task statuses and per-clip behaviour, then hand
    ``transport`` to the clients under test.
    """

    def __init__(self, base_url: str = "https://klap.test/v2"):
        self.base_url = base_url
        self.task_statuses: list = []  # dicts, or ints for HTTP error codes
        self.clips: list[str] = []
        self.clip_details: dict[str, dict] = {}
        self.failing_exports: set[str] = set()
        self.failing_downloads: set[str] = set()
        self.empty_downloads: set[str] = set()
        self.create_status = 200
        self.retry_after: Optional[str] = None  # Retry-After header sent with 429s
        self.on_status_poll: Optional[Callable[[], None]] = None
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.startswith("https://cdn.klap.test/"):
            clip_id = url.rsplit("/", 1)[-1].removesuffix(".mp4")
            if clip_id in self.failing_downloads:
                return httpx.Response(404)
            if clip_id in self.empty_downloads:
                return httpx.Response(200, content=b"")
            return httpx.Response(200, content=f"video-bytes-{clip_id}".encode())

        path = url[len(self.base_url):]
        parts = [p for p in path.split("/") if p]

        if request.method == "POST" and path == "/tasks/video-to-shorts":
            if self.create_status != 200:
                return httpx.Response(self.create_status, json={"message": "bad source"})
            return httpx.Response(200, json={"id": "task_1", "status": "processing"})

        if request.method == "GET" and parts[:1] == ["tasks"]:
            if self.on_status_poll is not None:
                self.on_status_poll()
            status = self.task_statuses.pop(0) if len(self.task_statuses) > 1 else self.task_statuses[0]
            if isinstance(status, int):
                headers = {"Retry-After": self.retry_after} if status == 429 and self.retry_after else {}
                return httpx.Response(status, json={"message": "error"}, headers=headers)
            return httpx.Response(200, json=status)

        if parts[:1] == ["projects"]:
            if len(parts) == 2:
                return httpx.Response(200, json=[{"id": c} for c in self.clips])
            clip_id = parts[2]
            if len(parts) == 3:
                return httpx.Response(200, json=self.clip_details.get(clip_id, {}))
            if request.method == "POST":
                return httpx.Response(200, json={"id": f"export_{clip_id}"})
            if clip_id in self.failing_exports:
                return httpx.Response(200, json={"status": "error", "error": "render failed"})
            return httpx.Response(
                200,
                json={"status": "ready", "src_url": f"https://cdn.klap.test/exports/{clip_id}.mp4"},
            )

        return httpx.Response(404, json={"message": f"no route for {request.method} {path}"})


@pytest.fixture
def klap_api():
    return FakeKlapAPI()
