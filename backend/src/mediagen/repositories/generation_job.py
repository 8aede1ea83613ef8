"""GenerationJob repository for the mediagen backend.

Provides data access methods for GenerationJob entities. Terminal writes are
guarded here: once a job is completed or failed, further status/result writes
are logged no-ops so that stage handlers can be re-delivered safely.
"""

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.models.generation_job import GenerationJob, JobStatus
from mediagen.models.job_metadata import CompletionInfo, DispatchInfo, FailureInfo, PollInfo

logger = structlog.get_logger(__name__)


class GenerationJobRepository:
    """Repository for GenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new generation job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve generation job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve generation job with a row lock held until commit.

        Stage handlers load the job through this method so that two deliveries
        of the same stage message serialize on the row.
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def claim_dispatch(self, job_id: UUID, claimed_at: datetime, stale_before: datetime) -> bool:
        """Claim the right to start the backend run for a job.

        One conditional UPDATE, so concurrent dispatch deliveries cannot both
        win: the claim succeeds only while no run id is recorded, the job is
        not terminal, and no other claim newer than `stale_before` exists.
        A successful claim also moves the job to processing.

        Returns:
            True if this caller now owns the dispatch, False otherwise
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status.in_((JobStatus.PENDING, JobStatus.PROCESSING)))  # type: ignore[attr-defined]
            .where(GenerationJob.external_run_id.is_(None))  # type: ignore[union-attr]
            .where(
                or_(
                    GenerationJob.dispatch_claimed_at.is_(None),  # type: ignore[union-attr]
                    GenerationJob.dispatch_claimed_at < stale_before,  # type: ignore[operator]
                )
            )
            .values(
                status=JobStatus.PROCESSING,
                dispatch_claimed_at=claimed_at,
                updated_at=claimed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def list_by_owner(
        self,
        owner_id: UUID,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[GenerationJob]:
        """Retrieve an owner's jobs, newest first.

        Args:
            owner_id: Owner whose jobs are listed
            status: Optional filter on the reported status (see to_status_view)
            limit: Maximum number of jobs to return (default: 20)
            offset: Number of jobs to skip (default: 0)

        Returns:
            List of jobs ordered by created_at (newest first)
        """
        stmt = select(GenerationJob).where(GenerationJob.owner_id == owner_id)  # type: ignore[arg-type]
        if status is not None:
            stmt = stmt.where(_reported_status_is(status))
        stmt = (
            stmt.order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_owner(self, owner_id: UUID, status: JobStatus | None = None) -> int:
        """Count an owner's jobs, optionally filtered by status."""
        stmt = select(func.count(GenerationJob.id)).where(  # type: ignore[arg-type]
            GenerationJob.owner_id == owner_id  # type: ignore[arg-type]
        )
        if status is not None:
            stmt = stmt.where(_reported_status_is(status))
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def list_in_flight(self, pending_before: datetime, limit: int = 500) -> list[GenerationJob]:
        """Retrieve jobs whose stage chain may have been lost.

        Returns processing jobs plus pending jobs created before `pending_before`
        (recent pending jobs most likely have a dispatch message in flight).
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(
                (GenerationJob.status == JobStatus.PROCESSING)  # type: ignore[arg-type]
                | (
                    (GenerationJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
                    & (GenerationJob.created_at < pending_before)  # type: ignore[arg-type,operator]
                )
            )
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def record_dispatch(self, job: GenerationJob, info: DispatchInfo) -> None:
        """Store the external run id and merge dispatch metadata."""
        job.record_dispatch(info)
        self.session.add(job)
        await self.session.flush()

    async def record_poll(self, job: GenerationJob, info: PollInfo) -> None:
        """Merge the poller's last observation into metadata (status untouched)."""
        if job.is_terminal:
            return
        job.merge_metadata(info)
        self.session.add(job)
        await self.session.flush()

    async def mark_completed(self, job: GenerationJob, info: CompletionInfo) -> bool:
        """Mark job completed with its permanent URL.

        Returns:
            True if the job transitioned, False if it was already terminal
        """
        if job.is_terminal:
            logger.info("job.write_skipped_terminal", job_id=str(job.id), status=job.status.value)
            return False
        job.mark_completed(info)
        self.session.add(job)
        await self.session.flush()
        return True

    async def mark_failed(self, job: GenerationJob, info: FailureInfo) -> bool:
        """Mark job failed with error details.

        Args:
            job: GenerationJob entity to update
            info: Failure details (error message truncated to 1000 characters)

        Returns:
            True if the job transitioned, False if it was already terminal
        """
        if job.is_terminal:
            logger.info("job.write_skipped_terminal", job_id=str(job.id), status=job.status.value)
            return False
        info.error = info.error[:1000]
        job.mark_failed(info)
        self.session.add(job)
        await self.session.flush()
        return True


def _reported_status_is(status: JobStatus):
    """Filter on the status owners see: processing without a run id reads as pending."""
    not_started = and_(
        GenerationJob.status == JobStatus.PROCESSING,  # type: ignore[arg-type]
        GenerationJob.external_run_id.is_(None),  # type: ignore[union-attr]
    )
    if status == JobStatus.PENDING:
        return or_(GenerationJob.status == JobStatus.PENDING, not_started)  # type: ignore[arg-type]
    if status == JobStatus.PROCESSING:
        return and_(
            GenerationJob.status == JobStatus.PROCESSING,  # type: ignore[arg-type]
            GenerationJob.external_run_id.is_not(None),  # type: ignore[union-attr]
        )
    return GenerationJob.status == status  # type: ignore[arg-type]
