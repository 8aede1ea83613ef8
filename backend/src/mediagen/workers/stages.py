"""Stage registry: route one stage invocation to its handler."""

from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError as PayloadValidationError

from mediagen.workers.dispatcher import dispatch_job
from mediagen.workers.materializer import materialize_job
from mediagen.workers.poller import poll_job
from mediagen.workers.stage_context import STAGE_PAYLOADS, Stage, StageContext

logger = structlog.get_logger(__name__)

STAGE_HANDLERS: dict[Stage, Callable[[StageContext, Any], Awaitable[None]]] = {
    Stage.DISPATCH: dispatch_job,
    Stage.POLL: poll_job,
    Stage.MATERIALIZE: materialize_job,
}

__all__ = ["STAGE_HANDLERS", "Stage", "StageContext", "run_stage"]


async def run_stage(ctx: StageContext, stage: Stage | str, payload: dict[str, Any]) -> None:
    """Validate the payload and run one bounded stage invocation.

    Raises:
        ValueError: Unknown stage or malformed payload
    """
    stage = Stage(stage)
    try:
        parsed = STAGE_PAYLOADS[stage].model_validate(payload)
    except PayloadValidationError as e:
        raise ValueError(f"Invalid {stage.value} payload: {e}") from e

    await STAGE_HANDLERS[stage](ctx, parsed)
