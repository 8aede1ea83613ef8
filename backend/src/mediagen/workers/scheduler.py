"""Self-invocation schedulers for pipeline stages.

A stage never waits for the stage it triggers: `schedule` returns
immediately and the delayed invocation runs on its own.

- InProcessScheduler: asyncio task in this process (development, tests,
  single-instance deployments; not durable, see workers.recovery)
- HttpScheduler: POSTs to this service's /internal/stages/{stage} endpoint so
  each stage runs as its own short request (serverless deployments)
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from mediagen.workers.stage_context import Stage

logger = structlog.get_logger(__name__)

StageHandler = Callable[[Stage, dict[str, Any]], Awaitable[None]]


class InProcessScheduler:
    """Run stage invocations as background asyncio tasks."""

    def __init__(self, handler: Optional[StageHandler] = None):
        """Initialize scheduler.

        Args:
            handler: Coroutine function receiving (stage, payload). May be
                assigned after construction since handlers need the scheduler.
        """
        self.handler = handler
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, stage: Stage, payload: dict[str, Any], delay: float = 0.0) -> None:
        if self.handler is None:
            raise RuntimeError("InProcessScheduler has no handler attached")
        task = asyncio.create_task(self._run(Stage(stage), payload, delay))
        # Keep a strong reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, stage: Stage, payload: dict[str, Any], delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            if self.handler is None:
                raise RuntimeError("InProcessScheduler handler was detached")
            await self.handler(stage, payload)
        except Exception as e:
            logger.exception(
                "stage.invocation_failed",
                stage=stage.value,
                job_id=payload.get("job_id"),
                error=str(e),
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no invocation is scheduled, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding invocations (application shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class HttpScheduler:
    """Trigger stages by calling this service's internal stage endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize scheduler.

        Args:
            base_url: Public base URL of this service (from STAGE_BASE_URL env var)
            api_key: Shared secret (from INTERNAL_API_KEY env var)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, stage: Stage, payload: dict[str, Any], delay: float = 0.0) -> None:
        task = asyncio.create_task(self._post(Stage(stage), payload, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, stage: Stage, payload: dict[str, Any], delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        url = f"{self.base_url}/internal/stages/{stage.value}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, headers=self.headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "stage.trigger_failed", stage=stage.value, job_id=payload.get("job_id"), error=str(e)
            )
            return

        if not response.is_success:
            logger.error(
                "stage.trigger_rejected",
                stage=stage.value,
                job_id=payload.get("job_id"),
                status_code=response.status_code,
            )
        else:
            logger.debug("stage.trigger_acknowledged", stage=stage.value, job_id=payload.get("job_id"))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
