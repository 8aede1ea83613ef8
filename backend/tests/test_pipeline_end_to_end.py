"""End-to-end pipeline test: submission through dispatch, polling and
materialization, with stages chained by the in-process scheduler."""

from functools import partial

import pytest

from conftest import failed, load_job, running, succeeded
from mediagen.models.generation_job import JobStatus
from mediagen.services.credits import CreditLedger
from mediagen.services.jobs import JobService
from mediagen.workers.scheduler import InProcessScheduler
from mediagen.workers.stages import run_stage


@pytest.fixture
def pipeline(stage_context):
    """Wire the stage context to a real in-process scheduler."""
    scheduler = InProcessScheduler()
    stage_context.scheduler = scheduler
    scheduler.handler = partial(run_stage, stage_context)
    service = JobService(
        stage_context.uow_factory,
        CreditLedger(stage_context.uow_factory),
        scheduler,
        stage_context.modes,
    )
    return service, scheduler


@pytest.mark.asyncio
class TestPipeline:
    async def test_submission_reaches_completed(
        self, pipeline, uow_factory, make_account, owner_id, backend, storage
    ):
        service, scheduler = pipeline
        await make_account(owner_id, subscription=5, purchased=20)
        backend.statuses = [running(), running(), succeeded()]

        job_id = await service.submit(owner_id, "a red fox", "image")
        await scheduler.drain()

        view = await service.get_status(job_id, owner_id)
        assert view.status == JobStatus.COMPLETED
        assert view.result_url is not None
        assert view.result_url.startswith(f"https://storage.test/public/{owner_id}/images/")
        assert len(backend.status_calls) == 3
        assert len(storage.objects) == 1

        job = await load_job(uow_factory, job_id)
        assert job.external_run_id == "run-123"
        assert job.job_metadata["last_poll_attempt"] == 3

        balance = await service.ledger.get_balance(owner_id)
        assert (balance.subscription, balance.purchased) == (0, 15)

    async def test_backend_failure_reaches_failed_without_refund(
        self, pipeline, make_account, owner_id, backend, storage
    ):
        service, scheduler = pipeline
        await make_account(owner_id, subscription=100)
        backend.statuses = [running(), failed("NSFW content detected")]

        job_id = await service.submit(owner_id, "a red fox", "video")
        await scheduler.drain()

        view = await service.get_status(job_id, owner_id)
        assert view.status == JobStatus.FAILED
        assert view.error == "NSFW content detected"
        assert view.result_url is None
        assert storage.objects == {}

        balance = await service.ledger.get_balance(owner_id)
        assert balance.total == 0

    async def test_poll_timeout_with_small_attempt_cap(
        self, pipeline, stage_context, make_account, owner_id, backend
    ):
        service, scheduler = pipeline
        stage_context.settings.poll_max_attempts = 3
        await make_account(owner_id, subscription=100)
        backend.statuses = [running()]

        job_id = await service.submit(owner_id, "a red fox", "image")
        await scheduler.drain()

        view = await service.get_status(job_id, owner_id)
        assert view.status == JobStatus.FAILED
        assert len(backend.status_calls) == 3
