"""Resume in-flight jobs after a restart.

The in-process scheduler keeps pending invocations in memory only, so a
restart drops every scheduled poll. On startup this module finds jobs that
are still in flight and schedules the next stage for each of them:

- processing with a run id: poll again, continuing from the last recorded attempt
- processing without a run id, or pending, older than the resume threshold:
  dispatch again (recent ones most likely still have a dispatch in flight)

Re-scheduling next to a chain that is still alive does not fork it: the
poller drops any attempt that was already claimed, and the dispatcher skips
jobs whose dispatch claim is still fresh.
"""

from dataclasses import dataclass, field
from datetime import timedelta

import structlog

from mediagen.core.timezone import utcnow
from mediagen.models.generation_job import JobStatus
from mediagen.workers.stage_context import DispatchPayload, PollPayload, Stage, StageContext

logger = structlog.get_logger(__name__)


@dataclass
class ResumeResult:
    """Result of a resume pass."""

    polls_scheduled: int = 0
    dispatches_scheduled: int = 0
    skipped: int = 0
    job_ids: list[str] = field(default_factory=list)


async def resume_in_flight_jobs(ctx: StageContext, limit: int = 500) -> ResumeResult:
    """Schedule the next stage for every job whose chain may have been lost."""
    settings = ctx.settings
    cutoff = utcnow() - timedelta(seconds=settings.resume_pending_after_seconds)

    async with await ctx.uow_factory() as uow:
        jobs = await uow.jobs.list_in_flight(pending_before=cutoff, limit=limit)

    result = ResumeResult()
    for job in jobs:
        if job.status == JobStatus.PROCESSING and job.external_run_id:
            last_attempt = int((job.job_metadata or {}).get("last_poll_attempt") or 0)
            # The poller drops this if a live chain claims the same attempt first.
            # Past the cap it makes one final status check before timing out.
            ctx.schedule(
                Stage.POLL,
                PollPayload(job_id=job.id, run_id=job.external_run_id, attempt=last_attempt + 1),
            )
            result.polls_scheduled += 1
        elif job.status == JobStatus.PENDING or job.updated_at < cutoff:
            ctx.schedule(Stage.DISPATCH, DispatchPayload(job_id=job.id))
            result.dispatches_scheduled += 1
        else:
            result.skipped += 1
            continue
        result.job_ids.append(str(job.id))

    if result.polls_scheduled or result.dispatches_scheduled:
        logger.info(
            "recovery.jobs_resumed",
            polls=result.polls_scheduled,
            dispatches=result.dispatches_scheduled,
            skipped=result.skipped,
        )
    else:
        logger.debug("recovery.nothing_to_resume", skipped=result.skipped)
    return result
