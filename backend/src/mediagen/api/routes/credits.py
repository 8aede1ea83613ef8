"""Credit balance API endpoint."""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from mediagen.api.dependencies import get_current_owner_id, get_ledger
from mediagen.services.credits import CreditLedger

router = APIRouter(prefix="/api/credits", tags=["credits"])


class CreditBalanceResponse(BaseModel):
    subscription: int = Field(..., description="Subscription credits (consumed first)")
    purchased: int = Field(..., description="Purchased credits")
    total: int


@router.get("", response_model=CreditBalanceResponse, status_code=status.HTTP_200_OK)
async def get_credit_balance(
    owner_id: UUID = Depends(get_current_owner_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditBalanceResponse:
    """Return the caller's credit balances (zeros when no account exists)."""
    balance = await ledger.get_balance(owner_id)
    return CreditBalanceResponse(
        subscription=balance.subscription, purchased=balance.purchased, total=balance.total
    )
