"""Poller stage: one status check per invocation, then reschedule or hand off.

Each invocation reads the backend status once and decides:

- running (queued, processing, ...): schedule attempt+1 after the poll
  interval, or fail with a timeout once the attempt cap is reached
- succeeded: schedule the Materializer with the artifact URL (the job stays
  processing; the Materializer owns the completed transition)
- failed: mark failed with the backend's error
- unrecognized status: mark failed
- transport error: count a consecutive error and reschedule after the longer
  error interval; fail once the consecutive-error cap is reached

A successful status read resets the consecutive-error counter. Transport
errors still consume attempts, so the attempt cap bounds every job.

Once a run id is known, each invocation first claims its attempt number on
the job row. A delivery whose attempt is not newer than the last claimed one
is a duplicate (a redelivered message, or a resumed chain racing a live one)
and is dropped, so a job never has more than one live poll chain.
"""

import structlog

from mediagen.models.job_metadata import PollInfo
from mediagen.services.compute.base import RunState
from mediagen.services.exceptions import (
    GenerationFailedError,
    GenerationTimeoutError,
    PermanentError,
    TransientPollError,
)
from mediagen.workers.stage_context import (
    MaterializePayload,
    PollPayload,
    Stage,
    StageContext,
    fail_job,
)

logger = structlog.get_logger(__name__)


async def poll_job(ctx: StageContext, payload: PollPayload) -> None:
    """Run one poll invocation. Never raises for job-level failures."""
    settings = ctx.settings
    max_attempts = settings.poll_max_attempts
    attempt = payload.attempt
    log = logger.bind(job_id=str(payload.job_id), attempt=attempt, max_attempts=max_attempts)

    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_for_update(payload.job_id)
        if job is None:
            log.warning("job.poll.job_missing")
            return
        if job.is_terminal:
            log.info("job.poll.skipped_terminal", status=job.status.value)
            return
        run_id = payload.run_id or job.external_run_id
        if run_id:
            last_attempt = int((job.job_metadata or {}).get("last_poll_attempt") or 0)
            if attempt <= last_attempt:
                log.info("job.poll.duplicate_dropped", last_attempt=last_attempt)
                return
            # Claim this attempt before touching the backend
            await uow.jobs.record_poll(
                job,
                PollInfo(last_poll_attempt=attempt, consecutive_errors=payload.consecutive_errors),
            )

    if not run_id:
        # Dispatch has not recorded a run id yet
        if attempt >= max_attempts:
            await fail_job(
                ctx,
                payload.job_id,
                GenerationTimeoutError(f"No run id recorded after {max_attempts} poll attempts"),
            )
            return
        log.info("job.poll.not_ready")
        _reschedule(ctx, payload, run_id=None, consecutive_errors=0, delay=settings.poll_interval_seconds)
        return

    log = log.bind(run_id=run_id)

    try:
        status = await ctx.backend.get_status(run_id)
    except TransientPollError as e:
        consecutive_errors = payload.consecutive_errors + 1
        await _record_poll(ctx, payload, None, consecutive_errors)
        log.warning(
            "job.poll.transport_error",
            error=str(e),
            consecutive_errors=consecutive_errors,
        )
        if consecutive_errors >= settings.poll_max_consecutive_errors:
            await fail_job(
                ctx,
                payload.job_id,
                TransientPollError(
                    f"Polling backend unreachable after {consecutive_errors} consecutive errors: {e}"
                ),
                run_id=run_id,
            )
        elif attempt >= max_attempts:
            await fail_job(
                ctx,
                payload.job_id,
                GenerationTimeoutError(f"Polling failed {max_attempts} times"),
                run_id=run_id,
            )
        else:
            _reschedule(
                ctx,
                payload,
                run_id=run_id,
                consecutive_errors=consecutive_errors,
                delay=settings.poll_error_interval_seconds,
            )
        return
    except PermanentError as e:
        log.error("job.poll.permanent_error", error=str(e))
        await fail_job(ctx, payload.job_id, e, run_id=run_id)
        return

    await _record_poll(ctx, payload, status.raw_status, 0)
    log = log.bind(external_status=status.raw_status)

    if status.state == RunState.RUNNING:
        if attempt < max_attempts:
            log.info("job.poll.rescheduled")
            _reschedule(ctx, payload, run_id=run_id, consecutive_errors=0, delay=settings.poll_interval_seconds)
        else:
            log.warning("job.poll.timed_out")
            await fail_job(
                ctx,
                payload.job_id,
                GenerationTimeoutError(f"Polling timed out after {max_attempts} attempts"),
                run_id=run_id,
                final_api_status=status.raw_status,
            )

    elif status.state == RunState.SUCCEEDED:
        if not status.output_url:
            await fail_job(
                ctx,
                payload.job_id,
                GenerationFailedError("Success reported by backend but no output file found"),
                run_id=run_id,
                final_api_status=status.raw_status,
            )
            return
        log.info("job.poll.succeeded", output_url=status.output_url)
        ctx.schedule(
            Stage.MATERIALIZE,
            MaterializePayload(job_id=payload.job_id, run_id=run_id, output_url=status.output_url),
        )

    elif status.state == RunState.FAILED:
        await fail_job(
            ctx,
            payload.job_id,
            GenerationFailedError(status.error or "Generation failed according to backend"),
            run_id=run_id,
            final_api_status=status.raw_status,
        )

    else:
        await fail_job(
            ctx,
            payload.job_id,
            GenerationFailedError(f"Unknown backend status received: {status.raw_status}"),
            run_id=run_id,
            final_api_status=status.raw_status,
        )


def _reschedule(
    ctx: StageContext,
    payload: PollPayload,
    *,
    run_id: str | None,
    consecutive_errors: int,
    delay: float,
) -> None:
    ctx.schedule(
        Stage.POLL,
        PollPayload(
            job_id=payload.job_id,
            run_id=run_id,
            attempt=payload.attempt + 1,
            consecutive_errors=consecutive_errors,
        ),
        delay=delay,
    )


async def _record_poll(
    ctx: StageContext, payload: PollPayload, raw_status: str | None, consecutive_errors: int
) -> None:
    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_for_update(payload.job_id)
        if job is None:
            return
        await uow.jobs.record_poll(
            job,
            PollInfo(
                last_external_status=raw_status,
                last_poll_attempt=payload.attempt,
                consecutive_errors=consecutive_errors,
            ),
        )
