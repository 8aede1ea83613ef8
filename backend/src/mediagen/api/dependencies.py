"""FastAPI dependencies for request context and shared services.

Services are created once in the application lifespan and stored on
app.state; these dependencies only hand them to the routes.
"""

import hmac
from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from mediagen.core.config import Settings
from mediagen.services.credits import CreditLedger
from mediagen.services.jobs import JobService
from mediagen.uow import UnitOfWork
from mediagen.workers.stage_context import StageContext


def get_settings(request: Request) -> Settings:
    """Get the settings instance the application was started with."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_job_service(request: Request) -> JobService:
    return request.app.state.job_service


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_stage_context(request: Request) -> StageContext:
    return request.app.state.stage_context


def get_current_owner_id(x_owner_id: Annotated[str | None, Header()] = None) -> UUID:
    """Resolve the requesting owner from the X-Owner-Id header.

    The header is set by the upstream authenticator after it verified the
    caller; this service does not authenticate users itself.

    Raises:
        HTTPException: 401 if the header is missing or not a UUID
    """
    if not x_owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Owner-Id header"
        )
    try:
        return UUID(x_owner_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-Owner-Id header"
        )


def verify_internal_key(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Check the bearer secret on internal stage calls.

    Uses constant-time comparison. An unset INTERNAL_API_KEY rejects every call.

    Raises:
        HTTPException: 401 if the key is missing or wrong
    """
    expected = settings.internal_api_key
    provided = (authorization or "").removeprefix("Bearer ").strip()
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
