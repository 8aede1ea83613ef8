"""Tests for the poll stage.

The poller is driven invocation by invocation: each test feeds the payload the
previous invocation scheduled back into poll_job, the way the scheduler would.
"""

from uuid import UUID

import pytest
import pytest_asyncio

from conftest import failed, load_job, running, succeeded
from mediagen.models.generation_job import JobStatus
from mediagen.services.compute.base import RunState, RunStatus
from mediagen.services.exceptions import PermanentError, TransientPollError
from mediagen.workers.poller import poll_job
from mediagen.workers.stage_context import PollPayload, Stage


async def drive_polls(ctx, scheduler, job_id: UUID, run_id="run-123", limit=1000) -> int:
    """Run poll invocations until one schedules something other than a poll.

    Returns:
        Number of poll invocations executed
    """
    payload = PollPayload(job_id=job_id, run_id=run_id, attempt=1)
    for invocations in range(1, limit + 1):
        before = len(scheduler.calls)
        await poll_job(ctx, payload)
        new_calls = scheduler.calls[before:]
        if not new_calls or new_calls[-1][0] != Stage.POLL:
            return invocations
        payload = PollPayload.model_validate(new_calls[-1][1])
    raise AssertionError("poll chain did not terminate")


@pytest_asyncio.fixture
async def processing_job(make_job):
    return await make_job(status=JobStatus.PROCESSING, external_run_id="run-123")


@pytest.mark.asyncio
class TestPollOutcomes:
    async def test_success_on_last_allowed_attempt_schedules_materialize(
        self, stage_context, uow_factory, make_job, backend, scheduler
    ):
        """119 running reads then success on attempt 120 → materialize, job still processing."""
        job = await make_job(status=JobStatus.PROCESSING, external_run_id="run-123")
        backend.statuses = [running()] * 119 + [succeeded()]

        invocations = await drive_polls(stage_context, scheduler, job.id)

        assert invocations == 120
        stage, payload, _ = scheduler.calls[-1]
        assert stage == Stage.MATERIALIZE
        assert payload == {
            "job_id": str(job.id),
            "run_id": "run-123",
            "output_url": "https://cdn.backend.test/out/result.png",
        }
        reloaded = await load_job(uow_factory, job.id)
        assert reloaded.status == JobStatus.PROCESSING
        assert reloaded.job_metadata["last_poll_attempt"] == 120
        assert reloaded.job_metadata["last_external_status"] == "success"

    async def test_running_at_attempt_cap_times_out(
        self, stage_context, uow_factory, make_job, backend, scheduler
    ):
        """Still running on attempt 120 → failed with timeout, nothing further scheduled."""
        job = await make_job(status=JobStatus.PROCESSING, external_run_id="run-123")
        backend.statuses = [running()]

        invocations = await drive_polls(stage_context, scheduler, job.id)

        assert invocations == 120
        assert len(backend.status_calls) == 120
        assert scheduler.stages() == [Stage.POLL] * 119
        reloaded = await load_job(uow_factory, job.id)
        assert reloaded.status == JobStatus.FAILED
        assert "timed out after 120 attempts" in reloaded.job_metadata["error"]
        assert reloaded.job_metadata["error_type"] == "GenerationTimeoutError"
        assert reloaded.job_metadata["final_api_status"] == "running"

    async def test_running_reschedules_with_poll_interval(
        self, stage_context, processing_job, backend, scheduler
    ):
        stage_context.settings.poll_interval_seconds = 5
        backend.statuses = [running()]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id, run_id="run-123", attempt=7))

        assert scheduler.calls == [
            (
                Stage.POLL,
                {
                    "job_id": str(processing_job.id),
                    "run_id": "run-123",
                    "attempt": 8,
                    "consecutive_errors": 0,
                },
                5,
            )
        ]

    async def test_backend_failure_marks_failed_with_error(
        self, stage_context, uow_factory, processing_job, backend, scheduler
    ):
        backend.statuses = [failed("Out of memory")]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id, run_id="run-123"))

        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.status == JobStatus.FAILED
        assert reloaded.job_metadata["error"] == "Out of memory"
        assert reloaded.job_metadata["final_api_status"] == "failed"
        assert reloaded.job_metadata["external_run_id"] == "run-123"
        assert scheduler.calls == []

    async def test_backend_failure_without_message(
        self, stage_context, uow_factory, processing_job, backend
    ):
        backend.statuses = [failed(None)]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id, run_id="run-123"))

        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.job_metadata["error"] == "Generation failed according to backend"

    async def test_unknown_status_marks_failed(
        self, stage_context, uow_factory, processing_job, backend, scheduler
    ):
        backend.statuses = [RunStatus(state=RunState.UNKNOWN, raw_status="exploded")]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id, run_id="run-123"))

        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.status == JobStatus.FAILED
        assert "exploded" in reloaded.job_metadata["error"]
        assert scheduler.calls == []

    async def test_success_without_output_url_marks_failed(
        self, stage_context, uow_factory, processing_job, backend, scheduler
    ):
        backend.statuses = [succeeded(url=None)]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id, run_id="run-123"))

        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.status == JobStatus.FAILED
        assert "no output file" in reloaded.job_metadata["error"]
        assert scheduler.calls == []

    async def test_permanent_error_marks_failed(
        self, stage_context, uow_factory, processing_job, backend, scheduler
    ):
        backend.statuses = [PermanentError("Invalid API token")]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id, run_id="run-123"))

        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.status == JobStatus.FAILED
        assert reloaded.job_metadata["error"] == "Invalid API token"
        assert scheduler.calls == []


@pytest.mark.asyncio
class TestTransportErrors:
    async def test_consecutive_error_cap_fails_job(
        self, stage_context, uow_factory, processing_job, backend, scheduler
    ):
        """Ten unreachable reads in a row → failed after the tenth invocation."""
        backend.statuses = [TransientPollError("connection refused")]

        invocations = await drive_polls(stage_context, scheduler, processing_job.id)

        assert invocations == 10
        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.status == JobStatus.FAILED
        assert "after 10 consecutive errors" in reloaded.job_metadata["error"]
        assert reloaded.job_metadata["consecutive_errors"] == 10

    async def test_error_reschedule_uses_error_interval(
        self, stage_context, processing_job, backend, scheduler
    ):
        stage_context.settings.poll_interval_seconds = 5
        stage_context.settings.poll_error_interval_seconds = 10
        backend.statuses = [TransientPollError("503")]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id, run_id="run-123", attempt=3))

        stage, payload, delay = scheduler.calls[0]
        assert stage == Stage.POLL
        assert payload["attempt"] == 4
        assert payload["consecutive_errors"] == 1
        assert delay == 10

    async def test_successful_read_resets_error_counter(
        self, stage_context, uow_factory, processing_job, backend, scheduler
    ):
        """9 errors, one running read, 9 errors, then success: never hits the cap."""
        error = TransientPollError("timeout")
        backend.statuses = [error] * 9 + [running()] + [error] * 9 + [succeeded()]

        invocations = await drive_polls(stage_context, scheduler, processing_job.id)

        assert invocations == 20
        assert scheduler.calls[-1][0] == Stage.MATERIALIZE
        poll_payloads = [payload for stage, payload, _ in scheduler.calls if stage == Stage.POLL]
        assert max(p["consecutive_errors"] for p in poll_payloads) == 9
        assert poll_payloads[9]["consecutive_errors"] == 0
        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.status == JobStatus.PROCESSING

    async def test_errors_count_toward_attempt_cap(
        self, stage_context, uow_factory, processing_job, backend, scheduler
    ):
        backend.statuses = [TransientPollError("timeout")]

        await poll_job(
            stage_context,
            PollPayload(job_id=processing_job.id, run_id="run-123", attempt=120, consecutive_errors=2),
        )

        reloaded = await load_job(uow_factory, processing_job.id)
        assert reloaded.status == JobStatus.FAILED
        assert reloaded.job_metadata["error_type"] == "GenerationTimeoutError"
        assert scheduler.calls == []


@pytest.mark.asyncio
class TestPollPreconditions:
    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
    async def test_terminal_job_is_noop(
        self, stage_context, uow_factory, make_job, backend, scheduler, status
    ):
        job = await make_job(status=status, external_run_id="run-123")
        backend.statuses = [running()]

        await poll_job(stage_context, PollPayload(job_id=job.id, run_id="run-123"))

        assert backend.status_calls == []
        assert scheduler.calls == []
        assert (await load_job(uow_factory, job.id)).status == status

    async def test_run_id_falls_back_to_job_row(
        self, stage_context, processing_job, backend, scheduler
    ):
        backend.statuses = [running()]

        await poll_job(stage_context, PollPayload(job_id=processing_job.id))

        assert backend.status_calls == ["run-123"]
        assert scheduler.calls[0][1]["run_id"] == "run-123"

    async def test_missing_run_id_reschedules(self, stage_context, make_job, backend, scheduler):
        job = await make_job(status=JobStatus.PROCESSING)

        await poll_job(stage_context, PollPayload(job_id=job.id, attempt=4))

        assert backend.status_calls == []
        stage, payload, _ = scheduler.calls[0]
        assert stage == Stage.POLL
        assert payload["attempt"] == 5
        assert payload["run_id"] is None

    async def test_missing_run_id_at_cap_times_out(
        self, stage_context, uow_factory, make_job, scheduler
    ):
        job = await make_job(status=JobStatus.PROCESSING)

        await poll_job(stage_context, PollPayload(job_id=job.id, attempt=120))

        reloaded = await load_job(uow_factory, job.id)
        assert reloaded.status == JobStatus.FAILED
        assert reloaded.job_metadata["error_type"] == "GenerationTimeoutError"
        assert scheduler.calls == []


@pytest.mark.asyncio
class TestDuplicateDelivery:
    async def test_redelivered_poll_schedules_one_follow_up(
        self, stage_context, processing_job, backend, scheduler
    ):
        backend.statuses = [running()]
        payload = PollPayload(job_id=processing_job.id, run_id="run-123", attempt=5)

        await poll_job(stage_context, payload)
        await poll_job(stage_context, payload)

        assert len(backend.status_calls) == 1
        assert [p["attempt"] for stage, p, _ in scheduler.calls if stage == Stage.POLL] == [6]

    async def test_stale_attempt_is_dropped(
        self, stage_context, uow_factory, make_job, backend, scheduler
    ):
        job = await make_job(
            status=JobStatus.PROCESSING,
            external_run_id="run-123",
            job_metadata={"last_poll_attempt": 7},
        )
        backend.statuses = [running()]

        await poll_job(stage_context, PollPayload(job_id=job.id, run_id="run-123", attempt=3))

        assert backend.status_calls == []
        assert scheduler.calls == []
        assert (await load_job(uow_factory, job.id)).job_metadata["last_poll_attempt"] == 7

    async def test_duplicate_success_does_not_materialize_twice(
        self, stage_context, processing_job, backend, scheduler
    ):
        backend.statuses = [succeeded()]
        payload = PollPayload(job_id=processing_job.id, run_id="run-123", attempt=2)

        await poll_job(stage_context, payload)
        await poll_job(stage_context, payload)

        assert scheduler.stages() == [Stage.MATERIALIZE]
