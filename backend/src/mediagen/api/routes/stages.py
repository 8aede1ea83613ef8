"""Internal stage endpoint, the target of the HTTP self-invocation scheduler.

POST /internal/stages/{stage} runs exactly one bounded stage invocation and
returns. Job-level failures are recorded on the job, never returned here;
only a malformed request or a bad key produces an error response.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, status

from mediagen.api.dependencies import get_stage_context, verify_internal_key
from mediagen.workers.stages import Stage, StageContext, run_stage

logger = structlog.get_logger()
router = APIRouter(
    prefix="/internal/stages",
    tags=["internal"],
    dependencies=[Depends(verify_internal_key)],
)


@router.post("/{stage}", status_code=status.HTTP_200_OK)
async def run_stage_invocation(
    stage: Stage,
    payload: dict[str, Any] = Body(...),
    ctx: StageContext = Depends(get_stage_context),
) -> dict:
    """Run one stage invocation for the job in the payload."""
    try:
        await run_stage(ctx, stage, payload)
    except ValueError as e:
        logger.warning("stage_payload_rejected", stage=stage.value, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"status": "ok", "stage": stage.value}
