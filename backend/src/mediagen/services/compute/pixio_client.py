"""Pixio (ComfyDeploy-compatible) run API client."""

from typing import Any, Optional

import httpx
import structlog

from mediagen.models.generation_job import GenerationMode
from mediagen.services.compute.base import RunState, RunStatus
from mediagen.services.exceptions import DispatchError, TransientPollError

logger = structlog.get_logger(__name__)

RUNNING_STATUSES = frozenset({"processing", "not-started", "running", "uploading", "queued"})
SUCCESS_STATUSES = frozenset({"success", "complete"})
FAILED_STATUSES = frozenset({"failed"})

# Keys under outputs[*].data that may carry artifact files, in lookup order
OUTPUT_KINDS = ("images", "gifs", "videos", "files")


def map_status(raw_status: Optional[str]) -> RunState:
    """Map a Pixio status string to a RunState."""
    if raw_status in RUNNING_STATUSES:
        return RunState.RUNNING
    if raw_status in SUCCESS_STATUSES:
        return RunState.SUCCEEDED
    if raw_status in FAILED_STATUSES:
        return RunState.FAILED
    return RunState.UNKNOWN


def extract_output_url(payload: dict[str, Any]) -> Optional[str]:
    """Return the first artifact URL in a run status payload.

    Walks outputs[*].data.{images,gifs,videos,files}[*].url; first hit wins.
    """
    for output in payload.get("outputs") or []:
        data = (output or {}).get("data") or {}
        for kind in OUTPUT_KINDS:
            for item in data.get(kind) or []:
                url = item.get("url") if isinstance(item, dict) else None
                if url:
                    return url
    return None


class PixioClient:
    """Compute backend client for the Pixio run endpoint."""

    name = "pixio"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        deployments: dict[GenerationMode, str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Pixio client.

        Args:
            api_url: Run endpoint (POST to start, GET ?run_id= to poll)
            api_key: Bearer token (from PIXIO_API_KEY env var)
            deployments: Deployment id per generation mode
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.api_url = api_url
        self.deployments = deployments
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def start(self, mode: GenerationMode, inputs: dict) -> str:
        """Start a run on the mode's deployment.

        Args:
            mode: Generation mode (selects deployment id)
            inputs: Mode-specific inputs ({"prompt": ...} plus image slots)

        Returns:
            External run id

        Raises:
            DispatchError: Unknown mode, non-2xx response, transport failure,
                or a response without run_id
        """
        deployment_id = self.deployments.get(mode)
        if not deployment_id:
            raise DispatchError(f"No deployment configured for mode {mode.value!r}")

        body = {"deployment_id": deployment_id, "inputs": inputs}
        try:
            async with self._client() as client:
                response = await client.post(self.api_url, headers=self.headers, json=body)
        except httpx.TimeoutException as e:
            raise DispatchError(f"Start request timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise DispatchError(f"Start request network error: {e}") from e

        if not response.is_success:
            raise DispatchError(
                f"Backend start failed: {response.status_code} {response.reason_phrase} - {response.text}"
            )

        try:
            run_id = response.json().get("run_id")
        except ValueError as e:
            raise DispatchError(f"Backend start returned invalid JSON: {response.text}") from e

        if not run_id:
            raise DispatchError("Backend did not return a run_id")

        logger.debug("pixio.run_started", run_id=run_id, deployment_id=deployment_id)
        return str(run_id)

    async def get_status(self, run_id: str) -> RunStatus:
        """Read the run status.

        Raises:
            TransientPollError: Transport failure, non-2xx response or invalid JSON
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    self.api_url,
                    params={"run_id": run_id},
                    headers={"Authorization": self.headers["Authorization"]},
                )
        except httpx.TimeoutException as e:
            raise TransientPollError(f"Status request timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise TransientPollError(f"Status request network error: {e}") from e

        if not response.is_success:
            raise TransientPollError(f"Status check failed: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientPollError(f"Status check returned invalid JSON: {response.text}") from e

        raw_status = payload.get("status") or None
        state = map_status(raw_status)
        return RunStatus(
            state=state,
            raw_status=raw_status,
            output_url=extract_output_url(payload) if state == RunState.SUCCEEDED else None,
            error=payload.get("error") if state == RunState.FAILED else None,
        )
