"""pytest fixtures for mediagen backend tests.

Provides:
- settings: Test settings (no waits between stage invocations)
- session_factory: Function-scoped throwaway SQLite database with all tables
- session: Database session on that database
- uow_factory: Function-scoped UnitOfWork factory
- backend / storage / scheduler: In-memory fakes for the external collaborators
- stage_context: StageContext wired to the fakes
"""

import os
from typing import Any, AsyncGenerator, Optional
from uuid import UUID, uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

import mediagen.models  # noqa: F401  (registers tables on SQLModel.metadata)
from mediagen.core.config import Settings
from mediagen.core.database import setup_db_session
from mediagen.models.credit_account import CreditAccount
from mediagen.models.generation_job import GenerationJob, GenerationMode, JobStatus
from mediagen.services.compute.base import RunState, RunStatus
from mediagen.services.generation.modes import build_mode_catalogue
from mediagen.uow import create_uow_factory
from mediagen.workers.stage_context import Stage, StageContext

ARTIFACT_BYTES = b"\x89PNG\r\n\x1a\nfake-image-bytes"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'mediagen-test.db'}"


@pytest.fixture
def settings(db_url) -> Settings:
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        APP_ENV="test",
        DATABASE_URL=db_url,
        POLL_INTERVAL_SECONDS=0,
        POLL_ERROR_INTERVAL_SECONDS=0,
        POLL_MAX_ATTEMPTS=120,
        POLL_MAX_CONSECUTIVE_ERRORS=10,
        INTERNAL_API_KEY="test-internal-key",
        SUPABASE_URL="https://storage.test",
        SUPABASE_SERVICE_ROLE_KEY="service-key",
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_url) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory bound to a fresh SQLite file with all tables created."""
    factory = setup_db_session(db_url, pool_size=5)
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


class FakeComputeBackend:
    """Scripted compute backend.

    `statuses` is consumed one entry per get_status call; an entry may be a
    RunStatus or an exception to raise. The last entry repeats.
    """

    name = "fake"

    def __init__(self):
        self.run_id = "run-123"
        self.start_error: Optional[Exception] = None
        self.statuses: list[Any] = []
        self.start_calls: list[tuple[GenerationMode, dict]] = []
        self.status_calls: list[str] = []

    async def start(self, mode: GenerationMode, inputs: dict) -> str:
        self.start_calls.append((mode, inputs))
        if self.start_error is not None:
            raise self.start_error
        return self.run_id

    async def get_status(self, run_id: str) -> RunStatus:
        self.status_calls.append(run_id)
        if not self.statuses:
            raise AssertionError("get_status called without scripted statuses")
        entry = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(entry, Exception):
            raise entry
        return entry


def running() -> RunStatus:
    return RunStatus(state=RunState.RUNNING, raw_status="running")


def succeeded(url: Optional[str] = "https://cdn.backend.test/out/result.png") -> RunStatus:
    return RunStatus(state=RunState.SUCCEEDED, raw_status="success", output_url=url)


def failed(error: Optional[str] = "GPU exploded") -> RunStatus:
    return RunStatus(state=RunState.FAILED, raw_status="failed", error=error)


class FakeStorage:
    """In-memory object storage."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.deleted: list[str] = []
        self.upload_error: Optional[Exception] = None

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        if self.upload_error is not None:
            raise self.upload_error
        self.objects[key] = (data, content_type)
        return f"https://storage.test/public/{key}"

    async def delete(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)


class RecordingScheduler:
    """Scheduler that records invocations instead of running them."""

    def __init__(self):
        self.calls: list[tuple[Stage, dict, float]] = []

    def schedule(self, stage: Stage, payload: dict, delay: float = 0.0) -> None:
        self.calls.append((Stage(stage), payload, delay))

    def stages(self) -> list[Stage]:
        return [stage for stage, _, _ in self.calls]


def artifact_transport(status_code: int = 200, content: bytes = ARTIFACT_BYTES) -> httpx.MockTransport:
    """Download transport answering every GET with the given body."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=content)

    return httpx.MockTransport(handler)


@pytest.fixture
def backend() -> FakeComputeBackend:
    return FakeComputeBackend()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def stage_context(settings, uow_factory, backend, storage, scheduler) -> StageContext:
    return StageContext(
        settings=settings,
        uow_factory=uow_factory,
        backend=backend,
        storage=storage,
        scheduler=scheduler,
        modes=build_mode_catalogue(settings),
        http_transport=artifact_transport(),
    )


@pytest_asyncio.fixture
async def make_account(uow_factory):
    """Create a credit account with the given balances."""

    async def _make(owner_id: UUID, subscription: int = 0, purchased: int = 0) -> CreditAccount:
        async with await uow_factory() as uow:
            return await uow.credit_accounts.add(
                CreditAccount(
                    owner_id=owner_id,
                    subscription_balance=subscription,
                    purchased_balance=purchased,
                )
            )

    return _make


@pytest_asyncio.fixture
async def make_job(uow_factory):
    """Create a generation job row directly (bypassing submission)."""

    async def _make(
        owner_id: Optional[UUID] = None,
        mode: GenerationMode = GenerationMode.IMAGE,
        status: JobStatus = JobStatus.PENDING,
        external_run_id: Optional[str] = None,
        auxiliary_inputs: Optional[list[str]] = None,
        **fields: Any,
    ) -> GenerationJob:
        async with await uow_factory() as uow:
            return await uow.jobs.add(
                GenerationJob(
                    owner_id=owner_id or uuid4(),
                    prompt="a lighthouse in a storm",
                    mode=mode,
                    credit_cost=10,
                    status=status,
                    external_run_id=external_run_id,
                    auxiliary_inputs=auxiliary_inputs or [],
                    **fields,
                )
            )

    return _make


async def load_job(uow_factory, job_id: UUID) -> GenerationJob:
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
    assert job is not None
    return job
