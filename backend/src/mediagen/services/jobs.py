"""Job submission and status reads.

`submit` is the only synchronous, user-facing entry into the pipeline: it
validates, debits, creates the pending job and triggers the Dispatcher
without waiting for it. `get_status` and `list_jobs` are side-effect free
reads filtered by owner.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from mediagen.models.generation_job import GenerationJob, GenerationMode, JobStatus
from mediagen.services.credits import CreditLedger
from mediagen.services.exceptions import ForbiddenError, InsufficientCreditsError, NotFoundError
from mediagen.services.generation.modes import ModeSpec
from mediagen.services.generation.validation import (
    validate_auxiliary_inputs,
    validate_mode,
    validate_prompt,
)
from mediagen.workers.stage_context import DispatchPayload, Stage, StageScheduler

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class JobStatusView:
    """Read-only projection of a job for its owner."""

    job_id: UUID
    status: JobStatus
    mode: GenerationMode
    created_at: datetime
    result_url: Optional[str] = None
    error: Optional[str] = None


def to_status_view(job: GenerationJob) -> JobStatusView:
    """Project a job row to its consumer-facing status.

    A processing job without a run id has not really started yet and is
    reported as pending.
    """
    status = job.status
    if status == JobStatus.PROCESSING and not job.external_run_id:
        status = JobStatus.PENDING
    return JobStatusView(
        job_id=job.id,
        status=status,
        mode=job.mode,
        created_at=job.created_at,
        result_url=job.result_url if job.status == JobStatus.COMPLETED else None,
        error=job.error if job.status == JobStatus.FAILED else None,
    )


class JobService:
    """Submission Service and Status Observer."""

    def __init__(
        self,
        uow_factory: Callable,
        ledger: CreditLedger,
        scheduler: StageScheduler,
        modes: dict[GenerationMode, ModeSpec],
    ):
        self.uow_factory = uow_factory
        self.ledger = ledger
        self.scheduler = scheduler
        self.modes = modes

    async def submit(
        self,
        owner_id: UUID,
        prompt: str,
        mode: str | GenerationMode,
        auxiliary_inputs: Optional[list[str]] = None,
    ) -> UUID:
        """Create a generation job and trigger its dispatch.

        Returns as soon as the job row exists; never waits on the backend.

        Args:
            owner_id: Requesting user
            prompt: Non-empty prompt text
            mode: Generation mode name
            auxiliary_inputs: Input URLs, one per slot the mode requires

        Returns:
            New job id

        Raises:
            ValidationError: Invalid prompt, mode or inputs (nothing mutated)
            InsufficientCreditsError: Balance does not cover the mode's cost
                (nothing mutated)
        """
        prompt = validate_prompt(prompt)
        spec = validate_mode(mode, self.modes)
        inputs = validate_auxiliary_inputs(spec, auxiliary_inputs)

        log = logger.bind(owner_id=str(owner_id), mode=spec.mode.value)

        debited = await self.ledger.debit(
            owner_id, spec.credit_cost, description=f"Generate {spec.mode.value}"
        )
        if not debited:
            balance = await self.ledger.get_balance(owner_id)
            log.info("job.submit.insufficient_credits", required=spec.credit_cost, available=balance.total)
            raise InsufficientCreditsError(required=spec.credit_cost, available=balance.total)

        # An insert failure here leaves the debit in place (no compensation)
        async with await self.uow_factory() as uow:
            job = await uow.jobs.add(
                GenerationJob(
                    owner_id=owner_id,
                    prompt=prompt,
                    mode=spec.mode,
                    credit_cost=spec.credit_cost,
                    status=JobStatus.PENDING,
                    auxiliary_inputs=inputs,
                )
            )
            job_id = job.id

        log.info("job.submitted", job_id=str(job_id), credit_cost=spec.credit_cost)

        try:
            self.scheduler.schedule(
                Stage.DISPATCH, DispatchPayload(job_id=job_id).model_dump(mode="json")
            )
        except Exception as e:
            log.error(
                "job.submit.dispatch_trigger_failed",
                job_id=str(job_id),
                error=str(e),
                error_type=type(e).__name__,
            )

        return job_id

    async def get_status(self, job_id: UUID, owner_id: UUID) -> JobStatusView:
        """Read a job's status on behalf of its owner.

        Raises:
            NotFoundError: No such job
            ForbiddenError: Job belongs to another owner
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(job_id)

        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if job.owner_id != owner_id:
            raise ForbiddenError(f"Job {job_id} belongs to another owner")
        return to_status_view(job)

    async def list_jobs(
        self,
        owner_id: UUID,
        status: Optional[JobStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[JobStatusView], int]:
        """List an owner's jobs, newest first.

        Returns:
            (page of status views, total count for the filter)
        """
        async with await self.uow_factory() as uow:
            jobs = await uow.jobs.list_by_owner(owner_id, status=status, limit=limit, offset=offset)
            total = await uow.jobs.count_by_owner(owner_id, status=status)
        return [to_status_view(job) for job in jobs], total
