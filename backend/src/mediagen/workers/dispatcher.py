"""Dispatcher stage: start the external run and schedule the first poll.

Workflow:
1. Claim the dispatch with one conditional UPDATE (pending → processing);
   skip if the job is terminal, already dispatched, or claimed by another
   delivery whose claim is still fresh
2. Build mode-specific inputs and call the backend's start endpoint
3. On failure: mark failed, no poll is ever scheduled
4. On success: record the run id and schedule poll attempt 1 immediately

A claim older than `dispatch_claim_ttl_seconds` counts as abandoned, so a
dispatcher that died mid-call can be replaced by workers.recovery.
"""

from datetime import timedelta

import structlog

from mediagen.core.timezone import utcnow
from mediagen.models.generation_job import InvalidStateTransition
from mediagen.models.job_metadata import DispatchInfo
from mediagen.services.exceptions import DispatchError
from mediagen.services.generation.modes import build_backend_inputs
from mediagen.workers.stage_context import (
    DispatchPayload,
    PollPayload,
    Stage,
    StageContext,
    fail_job,
)

logger = structlog.get_logger(__name__)


async def dispatch_job(ctx: StageContext, payload: DispatchPayload) -> None:
    """Run one dispatch invocation. Never raises for job-level failures."""
    log = logger.bind(job_id=str(payload.job_id))
    now = utcnow()
    stale_before = now - timedelta(seconds=ctx.settings.dispatch_claim_ttl_seconds)

    async with await ctx.uow_factory() as uow:
        claimed = await uow.jobs.claim_dispatch(payload.job_id, now, stale_before)
        job = await uow.jobs.get_by_id(payload.job_id)
        if job is None:
            log.warning("job.dispatch.job_missing")
            return
        if not claimed:
            if job.is_terminal:
                log.info("job.dispatch.skipped_terminal", status=job.status.value)
            elif job.external_run_id:
                log.info("job.dispatch.already_dispatched", run_id=job.external_run_id)
            else:
                log.info("job.dispatch.claimed_elsewhere", claimed_at=str(job.dispatch_claimed_at))
            return
        mode = job.mode
        prompt = job.prompt
        auxiliary_inputs = list(job.auxiliary_inputs or [])

    spec = ctx.modes[mode]
    inputs = build_backend_inputs(spec, prompt, auxiliary_inputs)
    log.info("job.dispatch.started", mode=mode.value, backend=ctx.backend.name)

    try:
        run_id = await ctx.backend.start(mode, inputs)
    except DispatchError as e:
        log.error("job.dispatch.failed", error=str(e))
        await fail_job(ctx, payload.job_id, e)
        return
    except Exception as e:
        log.error("job.dispatch.unexpected_error", error=str(e), error_type=type(e).__name__)
        await fail_job(ctx, payload.job_id, DispatchError(f"Unexpected dispatch error: {e}"))
        return

    log = log.bind(run_id=run_id)
    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_for_update(payload.job_id)
        if job is None or job.is_terminal:
            log.warning("job.dispatch.job_gone_after_start")
            return
        try:
            await uow.jobs.record_dispatch(job, DispatchInfo(external_run_id=run_id, mode=mode.value))
        except InvalidStateTransition:
            # An expired claim was taken over and the other run was recorded first
            log.warning("job.dispatch.superseded", recorded_run_id=job.external_run_id)
            return

    log.info("job.dispatch.succeeded")
    ctx.schedule(Stage.POLL, PollPayload(job_id=payload.job_id, run_id=run_id, attempt=1))
