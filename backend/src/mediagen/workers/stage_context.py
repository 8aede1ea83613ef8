"""Shared pieces of the pipeline stages: stage names, payloads, context.

Every stage invocation carries everything it needs to resume in its payload;
the rest is read from the job row. Nothing is held in memory between
invocations.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

import httpx
import structlog
from pydantic import BaseModel

from mediagen.core.config import Settings
from mediagen.models.generation_job import GenerationMode
from mediagen.models.job_metadata import FailureInfo
from mediagen.services.compute.base import ComputeBackend
from mediagen.services.generation.modes import ModeSpec

logger = structlog.get_logger(__name__)


class Stage(str, Enum):
    """Pipeline stage names (also the /internal/stages/{stage} path segment)."""

    DISPATCH = "dispatch"
    POLL = "poll"
    MATERIALIZE = "materialize"


class DispatchPayload(BaseModel):
    job_id: UUID


class PollPayload(BaseModel):
    job_id: UUID
    run_id: Optional[str] = None
    attempt: int = 1
    consecutive_errors: int = 0


class MaterializePayload(BaseModel):
    job_id: UUID
    run_id: str
    output_url: str


STAGE_PAYLOADS: dict[Stage, type[BaseModel]] = {
    Stage.DISPATCH: DispatchPayload,
    Stage.POLL: PollPayload,
    Stage.MATERIALIZE: MaterializePayload,
}


class StageScheduler(Protocol):
    """Fire-and-forget trigger for the next stage invocation."""

    def schedule(self, stage: Stage, payload: dict[str, Any], delay: float = 0.0) -> None: ...


class ObjectStorage(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> str: ...

    async def delete(self, key: str) -> None: ...


@dataclass
class StageContext:
    """Collaborators shared by all stage handlers."""

    settings: Settings
    uow_factory: Callable
    backend: ComputeBackend
    storage: ObjectStorage
    scheduler: StageScheduler
    modes: dict[GenerationMode, ModeSpec]
    # Transport for artifact downloads (tests inject a MockTransport)
    http_transport: Optional[httpx.AsyncBaseTransport] = None

    def schedule(self, stage: Stage, payload: BaseModel, delay: float = 0.0) -> None:
        self.scheduler.schedule(stage, payload.model_dump(mode="json"), delay)


async def fail_job(
    ctx: StageContext,
    job_id: UUID,
    error: Exception | str,
    *,
    run_id: Optional[str] = None,
    final_api_status: Optional[str] = None,
) -> bool:
    """Mark a job failed with error details merged into its metadata.

    No-op (returns False) when the job is missing or already terminal.
    """
    info = FailureInfo(
        error=str(error),
        error_type=type(error).__name__ if isinstance(error, Exception) else None,
        final_api_status=final_api_status,
        external_run_id=run_id,
    )
    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_for_update(job_id)
        if job is None:
            logger.warning("job.fail_skipped_missing", job_id=str(job_id))
            return False
        failed = await uow.jobs.mark_failed(job, info)

    if failed:
        logger.warning(
            "job.failed",
            job_id=str(job_id),
            run_id=run_id,
            error=info.error,
            error_type=info.error_type,
        )
    return failed
