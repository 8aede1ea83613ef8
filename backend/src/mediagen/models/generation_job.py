"""GenerationJob entity - one prompt-driven generation request and its lifecycle."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel

from mediagen.core.timezone import UTCDateTime, utcnow

from mediagen.models.job_metadata import (
    CompletionInfo,
    DispatchInfo,
    FailureInfo,
    MetadataShape,
    merge_metadata,
)


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class GenerationMode(str, Enum):
    """Generation variants. Each maps to one external deployment."""

    IMAGE = "image"
    VIDEO = "video"
    FIRST_LAST_FRAME_VIDEO = "first_last_frame_video"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks a single generation attempt from submission to result."""

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: UUID = Field(index=True)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    mode: GenerationMode
    credit_cost: int = Field(ge=0)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    external_run_id: Optional[str] = Field(default=None, max_length=255)
    result_url: Optional[str] = Field(default=None)
    storage_key: Optional[str] = Field(default=None, max_length=1024)
    auxiliary_inputs: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    job_metadata: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    # Set while a dispatcher owns the backend start call
    dispatch_claimed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(UTCDateTime, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False, index=True)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def error(self) -> Optional[str]:
        return (self.job_metadata or {}).get("error")

    def merge_metadata(self, shape: MetadataShape) -> None:
        """Overlay a typed metadata fragment without dropping existing keys."""
        self.job_metadata = merge_metadata(self.job_metadata, shape)
        self.updated_at = utcnow()

    def mark_processing(self) -> bool:
        """Transition from pending to processing.

        Idempotent: returns False when the job is already processing.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        if self.status == JobStatus.PROCESSING:
            return False
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Job must be pending."
            )
        self.status = JobStatus.PROCESSING
        self.updated_at = utcnow()
        return True

    def record_dispatch(self, info: DispatchInfo) -> None:
        """Store the backend run identifier. Written at most once.

        Raises:
            InvalidStateTransition: If a different run id was already recorded
        """
        if self.external_run_id and self.external_run_id != info.external_run_id:
            raise InvalidStateTransition(
                f"Job {self.id} already has run id {self.external_run_id}, "
                f"refusing to overwrite with {info.external_run_id}."
            )
        self.external_run_id = info.external_run_id
        self.merge_metadata(info)

    def mark_completed(self, info: CompletionInfo) -> None:
        """Transition from processing to completed, setting result fields together.

        Raises:
            InvalidStateTransition: If current status is not processing
            ValueError: If result_url or storage_key is empty
        """
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Job must be processing."
            )
        if not info.result_url or not info.storage_key:
            raise ValueError("result_url and storage_key are required")
        self.result_url = info.result_url
        self.storage_key = info.storage_key
        self.status = JobStatus.COMPLETED
        self.merge_metadata(info)

    def mark_failed(self, info: FailureInfo) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.status = JobStatus.FAILED
        self.merge_metadata(info)
