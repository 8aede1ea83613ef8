"""Typed shapes merged into GenerationJob.job_metadata by each pipeline stage.

The metadata column is an open JSON object. Stages never write it directly;
they build one of these shapes and merge it over the previous value, so keys
written by an earlier stage are never dropped.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from mediagen.core.timezone import utcnow


class MetadataShape(BaseModel):
    """Base for metadata fragments. Unset (None) fields are never written."""

    def to_metadata(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DispatchInfo(MetadataShape):
    """Written once the external backend accepted the start request."""

    external_run_id: str
    mode: str
    dispatched_at: datetime = Field(default_factory=utcnow)


class PollInfo(MetadataShape):
    """Last observation made by the poller."""

    last_external_status: Optional[str] = None
    last_poll_attempt: int
    consecutive_errors: int = 0
    last_polled_at: datetime = Field(default_factory=utcnow)


class FailureInfo(MetadataShape):
    """Terminal failure details."""

    error: str
    error_type: Optional[str] = None
    final_api_status: Optional[str] = None
    external_run_id: Optional[str] = None
    failed_at: datetime = Field(default_factory=utcnow)


class CompletionInfo(MetadataShape):
    """Terminal success details written together with status=completed."""

    result_url: str
    storage_key: str
    original_url: str
    file_size: int
    content_type: str
    completed_at: datetime = Field(default_factory=utcnow)


def merge_metadata(previous: Optional[dict[str, Any]], shape: MetadataShape) -> dict[str, Any]:
    """Return a new metadata dict: previous keys overlaid with the shape's set fields."""
    merged = dict(previous or {})
    merged.update(shape.to_metadata())
    return merged
