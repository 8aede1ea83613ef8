"""External compute backend contract.

A backend starts a long-running generation run and reports its status. The
wire format is backend specific; the pipeline only sees `start` and
`get_status` and the normalized `RunStatus` they return.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from mediagen.models.generation_job import GenerationMode


class RunState(str, Enum):
    """Normalized run state used by the poller."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RunStatus:
    """One status observation of an external run.

    Attributes:
        state: Normalized state
        raw_status: Status string exactly as reported by the backend
        output_url: Ephemeral artifact URL (success only)
        error: Backend-supplied error message (failure only)
    """

    state: RunState
    raw_status: Optional[str]
    output_url: Optional[str] = None
    error: Optional[str] = None


class ComputeBackend(Protocol):
    """Start/poll contract implemented by every compute backend client."""

    name: str

    async def start(self, mode: GenerationMode, inputs: dict) -> str:
        """Start a run for `mode` and return the backend's run id.

        Raises:
            DispatchError: Backend rejected the request or returned no run id
        """
        ...

    async def get_status(self, run_id: str) -> RunStatus:
        """Read the current status of a run.

        Raises:
            TransientPollError: Backend unreachable or answered with an error
        """
        ...
