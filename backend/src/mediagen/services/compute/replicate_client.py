"""Replicate deployments client with error classification."""

import asyncio
from typing import Any, Optional

import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from mediagen.models.generation_job import GenerationMode
from mediagen.services.compute.base import RunState, RunStatus
from mediagen.services.exceptions import (
    DispatchError,
    PermanentError,
    ServiceError,
    TransientError,
    TransientPollError,
)

logger = structlog.get_logger(__name__)

STATUS_MAP = {
    "starting": RunState.RUNNING,
    "processing": RunState.RUNNING,
    "succeeded": RunState.SUCCEEDED,
    "failed": RunState.FAILED,
    "canceled": RunState.FAILED,
}


def classify_error(exception: Exception) -> ServiceError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        TransientError or PermanentError instance

    Classification rules:
        - Timeout errors → TransientError
        - 429 (rate limit) → TransientError
        - 5xx (service unavailable) → TransientError
        - 401/403 (authentication) → PermanentError
        - Content policy violations → PermanentError
        - Connection errors → TransientError
        - Anything else → PermanentError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or isinstance(exception, TimeoutError):
        return TransientError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return TransientError(f"Rate limit exceeded: {error_message}")

    if (
        "500" in error_message
        or "502" in error_message
        or "503" in error_message
        or "service unavailable" in error_message_lower
    ):
        return TransientError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return PermanentError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
    ):
        return PermanentError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return TransientError(f"Connection error: {error_message}")

    return PermanentError(f"Permanent error: {error_message}")


def extract_output_url(output: Any) -> Optional[str]:
    """Pull the first URL out of a prediction output (format varies by model)."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, list):
        for item in output:
            url = extract_output_url(item)
            if url:
                return url
        return None
    if isinstance(output, dict):
        for value in output.values():
            url = extract_output_url(value)
            if url:
                return url
        return None
    url = getattr(output, "url", None)
    return str(url) if url else None


class ReplicateBackend:
    """Compute backend running generation on Replicate deployments.

    The Replicate SDK is synchronous, so calls run in a worker thread.
    """

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        deployments: dict[GenerationMode, str],
        client: Optional[replicate.Client] = None,
    ):
        """Initialize Replicate backend.

        Args:
            api_token: Replicate API token (from REPLICATE_API_TOKEN env var)
            deployments: "owner/name" deployment per generation mode
            client: Optional preconfigured SDK client
        """
        self.deployments = deployments
        self.client = client or replicate.Client(api_token=api_token)

    async def start(self, mode: GenerationMode, inputs: dict) -> str:
        """Create a prediction on the mode's deployment and return its id.

        Raises:
            DispatchError: Unknown mode or any SDK/network failure
        """
        deployment_name = self.deployments.get(mode)
        if not deployment_name:
            raise DispatchError(f"No deployment configured for mode {mode.value!r}")

        def _create() -> Any:
            deployment = self.client.deployments.get(deployment_name)
            return deployment.predictions.create(input=inputs)

        try:
            prediction = await asyncio.to_thread(_create)
        except (ReplicateAPIError, ConnectionError, OSError, TimeoutError) as e:
            raise DispatchError(str(classify_error(e))) from e

        run_id = getattr(prediction, "id", None)
        if not run_id:
            raise DispatchError("Replicate did not return a prediction id")

        logger.debug("replicate.prediction_created", run_id=run_id, deployment=deployment_name)
        return str(run_id)

    async def get_status(self, run_id: str) -> RunStatus:
        """Read a prediction's status.

        Raises:
            TransientPollError: Timeout, rate limit, 5xx or connection failure
            PermanentError: Authentication or other non-retryable SDK failure
        """
        try:
            prediction = await asyncio.to_thread(self.client.predictions.get, run_id)
        except (ReplicateAPIError, ConnectionError, OSError, TimeoutError) as e:
            classified = classify_error(e)
            if isinstance(classified, TransientError):
                raise TransientPollError(str(classified)) from e
            raise classified from e

        raw_status = getattr(prediction, "status", None)
        state = STATUS_MAP.get(raw_status or "", RunState.UNKNOWN)
        error = getattr(prediction, "error", None)
        return RunStatus(
            state=state,
            raw_status=raw_status,
            output_url=(
                extract_output_url(getattr(prediction, "output", None))
                if state == RunState.SUCCEEDED
                else None
            ),
            error=str(error) if state == RunState.FAILED and error else None,
        )
