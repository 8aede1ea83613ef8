"""Credit Ledger: two-bucket balances with an append-only usage log.

Subscription credits are always consumed before purchased credits. The job
pipeline only debits; the replenishment operations exist for billing-cycle
logic and operators. There is no refund operation.
"""

from dataclasses import dataclass
from typing import Callable
from uuid import UUID

import structlog

from mediagen.core.timezone import utcnow
from mediagen.models.credit_account import CreditAccount, CreditUsageRecord
from mediagen.services.exceptions import NotFoundError

logger = structlog.get_logger(__name__)

# Monthly subscription allowance per tier
SUBSCRIPTION_TIER_CREDITS = {
    "free": 500,
    "pro": 3000,
    "business": 6000,
}


@dataclass(frozen=True)
class CreditBalance:
    subscription: int
    purchased: int

    @property
    def total(self) -> int:
        return self.subscription + self.purchased


class CreditLedger:
    """Debit and replenish owner credit balances."""

    def __init__(self, uow_factory: Callable):
        """Initialize ledger.

        Args:
            uow_factory: Factory returning UnitOfWork instances
        """
        self.uow_factory = uow_factory

    async def get_balance(self, owner_id: UUID) -> CreditBalance:
        """Return the owner's balances (zero for owners without an account)."""
        async with await self.uow_factory() as uow:
            account = await uow.credit_accounts.get_by_owner(owner_id)
        if account is None:
            return CreditBalance(subscription=0, purchased=0)
        return CreditBalance(
            subscription=account.subscription_balance, purchased=account.purchased_balance
        )

    async def debit(self, owner_id: UUID, amount: int, description: str = "") -> bool:
        """Deduct `amount` credits, subscription bucket first.

        The balance update is one conditional UPDATE and is authoritative once
        committed. The usage record is written afterwards in its own
        transaction; if that write fails the error is logged and the debit
        still stands.

        Args:
            owner_id: Owner to charge
            amount: Positive number of credits
            description: Free text stored on the usage record

        Returns:
            True if the debit was applied, False if the combined balance is
            insufficient (no mutation in that case)

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")

        async with await self.uow_factory() as uow:
            balances = await uow.credit_accounts.debit(owner_id, amount)

        if balances is None:
            logger.info("credits.debit_refused", owner_id=str(owner_id), amount=amount)
            return False

        subscription, purchased = balances
        logger.info(
            "credits.debited",
            owner_id=str(owner_id),
            amount=amount,
            subscription_balance=subscription,
            purchased_balance=purchased,
        )

        try:
            async with await self.uow_factory() as uow:
                await uow.credit_usage.add(
                    CreditUsageRecord(
                        owner_id=owner_id, amount=amount, description=description[:500]
                    )
                )
        except Exception as e:
            logger.error(
                "credits.usage_record_failed",
                owner_id=str(owner_id),
                amount=amount,
                error=str(e),
                error_type=type(e).__name__,
            )

        return True

    async def initialize_account(self, owner_id: UUID, tier: str = "free") -> CreditBalance:
        """Create the owner's account at the tier allowance (no-op if it exists)."""
        allowance = _tier_allowance(tier)
        async with await self.uow_factory() as uow:
            account = await uow.credit_accounts.get_by_owner(owner_id)
            if account is None:
                account = await uow.credit_accounts.add(
                    CreditAccount(
                        owner_id=owner_id,
                        subscription_balance=allowance,
                        purchased_balance=0,
                        last_reset_at=utcnow(),
                    )
                )
                logger.info(
                    "credits.account_initialized",
                    owner_id=str(owner_id),
                    tier=tier,
                    credits=allowance,
                )
            return CreditBalance(
                subscription=account.subscription_balance, purchased=account.purchased_balance
            )

    async def reset_subscription(self, owner_id: UUID, tier: str) -> CreditBalance:
        """Set the subscription bucket to the tier allowance (billing-cycle reset)."""
        allowance = _tier_allowance(tier)
        now = utcnow()
        async with await self.uow_factory() as uow:
            if await uow.credit_accounts.set_subscription(owner_id, allowance, now):
                account = await uow.credit_accounts.get_by_owner(owner_id)
            else:
                account = await uow.credit_accounts.add(
                    CreditAccount(
                        owner_id=owner_id, subscription_balance=allowance, last_reset_at=now
                    )
                )
            balance = _to_balance(owner_id, account)

        logger.info("credits.subscription_reset", owner_id=str(owner_id), tier=tier, credits=allowance)
        return balance

    async def add_purchased(self, owner_id: UUID, amount: int) -> CreditBalance:
        """Increment the purchased bucket (credit pack purchase)."""
        if amount <= 0:
            raise ValueError(f"Purchased amount must be positive, got {amount}")

        async with await self.uow_factory() as uow:
            if await uow.credit_accounts.add_purchased(owner_id, amount):
                account = await uow.credit_accounts.get_by_owner(owner_id)
            else:
                account = await uow.credit_accounts.add(
                    CreditAccount(owner_id=owner_id, purchased_balance=amount)
                )
            balance = _to_balance(owner_id, account)

        logger.info("credits.purchased_added", owner_id=str(owner_id), amount=amount)
        return balance


def _to_balance(owner_id: UUID, account: CreditAccount | None) -> CreditBalance:
    if account is None:
        raise NotFoundError(f"Credit account for owner {owner_id} not found after update")
    return CreditBalance(
        subscription=account.subscription_balance, purchased=account.purchased_balance
    )


def _tier_allowance(tier: str) -> int:
    try:
        return SUBSCRIPTION_TIER_CREDITS[tier]
    except KeyError:
        raise ValueError(
            f"Unknown subscription tier {tier!r}. Expected one of: "
            + ", ".join(SUBSCRIPTION_TIER_CREDITS)
        )
