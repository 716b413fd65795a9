"""Shared pytest fixtures for Emoji Forge tests."""

from __future__ import annotations

import io
import shutil
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from emojiforge.core.blob_store import LocalBlobStore
from emojiforge.core.config import EmojiForgeConfig
from emojiforge.core.database import CreditLedger, Database, EmojiRepository, ProfileRepository
from emojiforge.core.orchestrator import GenerationOrchestrator
from emojiforge.core.provider import GenerationJob, JobStatus

PROVIDER_IMAGE_URL = "https://x/img.png"


def pending(job_id: str = "job-1") -> GenerationJob:
    return GenerationJob(id=job_id, status=JobStatus.PENDING)


def succeeded(output=None, job_id: str = "job-1") -> GenerationJob:
    if output is None:
        output = [PROVIDER_IMAGE_URL]
    return GenerationJob(id=job_id, status=JobStatus.SUCCEEDED, output=output)


def failed(error: str = "CUDA out of memory", job_id: str = "job-1") -> GenerationJob:
    return GenerationJob(id=job_id, status=JobStatus.FAILED, error=error)


def make_png(size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, (255, 200, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeProvider:
    """In-memory inference provider.

    ``get_job`` returns the scripted jobs in order and keeps returning the
    last one once the script is exhausted.

    Attributes:
        submitted: Job inputs passed to ``submit``, in call order.
        polls: Number of ``get_job`` calls.
        fetched: URLs passed to ``fetch_artifact``.
    """

    def __init__(
        self,
        jobs: Iterable[GenerationJob] | None = None,
        artifact: bytes | None = None,
        artifact_error: Exception | None = None,
    ):
        self.jobs = list(jobs) if jobs is not None else [succeeded()]
        self.artifact = artifact if artifact is not None else make_png()
        self.artifact_error = artifact_error
        self.submitted: list[dict] = []
        self.polls = 0
        self.fetched: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.submitted) + self.polls + len(self.fetched)

    async def submit(self, job_input: dict) -> str:
        self.submitted.append(job_input)
        return "job-1"

    async def get_job(self, job_id: str) -> GenerationJob:
        index = min(self.polls, len(self.jobs) - 1)
        self.polls += 1
        return self.jobs[index]

    async def fetch_artifact(self, url: str) -> bytes:
        self.fetched.append(url)
        if self.artifact_error is not None:
            raise self.artifact_error
        return self.artifact


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> EmojiForgeConfig:
    """Create a test configuration with temporary storage and no poll delay.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        EmojiForgeConfig instance for testing
    """
    return EmojiForgeConfig(
        _env_file=None,
        database_path=str(temp_dir / "data" / "test.db"),
        media_dir=str(temp_dir / "media"),
        media_url_prefix="/media",
        replicate_api_token="test-token",
        poll_interval_seconds=0.0,
        poll_timeout_seconds=5.0,
        default_credits=3,
    )


@pytest.fixture
def database(test_config: EmojiForgeConfig) -> Database:
    return Database(test_config.database_path, busy_timeout=test_config.database_busy_timeout_seconds)


@pytest.fixture
def ledger(database: Database) -> CreditLedger:
    return CreditLedger(database)


@pytest.fixture
def profiles(database: Database) -> ProfileRepository:
    return ProfileRepository(database)


@pytest.fixture
def emojis(database: Database) -> EmojiRepository:
    return EmojiRepository(database)


@pytest.fixture
def blob_store(test_config: EmojiForgeConfig) -> LocalBlobStore:
    return LocalBlobStore(test_config.media_dir, test_config.media_url_prefix)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def orchestrator(
    fake_provider: FakeProvider,
    blob_store: LocalBlobStore,
    ledger: CreditLedger,
    emojis: EmojiRepository,
    test_config: EmojiForgeConfig,
) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        provider=fake_provider,
        blob_store=blob_store,
        ledger=ledger,
        emojis=emojis,
        settings=test_config,
    )


@pytest.fixture
def test_client(
    test_config: EmojiForgeConfig, fake_provider: FakeProvider
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient backed by the fake provider and temp storage.

    The client is entered as a context manager so the lifespan handler runs
    and the collaborators are available on ``app.state``.
    """
    from emojiforge.api.main import create_app

    app = create_app(test_config, provider=fake_provider)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-User-Id": "user_alice"}
