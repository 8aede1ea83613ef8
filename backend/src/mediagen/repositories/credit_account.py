"""CreditAccount repository for the mediagen backend.

Balance mutations are single UPDATE statements so concurrent debits for the
same owner cannot lose updates: every SET expression is evaluated against the
row as it was before the statement, and the WHERE clause re-checks the total.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.core.timezone import utcnow
from mediagen.models.credit_account import CreditAccount


class CreditAccountRepository:
    """Repository for CreditAccount entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_owner(self, owner_id: UUID) -> CreditAccount | None:
        """Retrieve an owner's credit account.

        Args:
            owner_id: Owner's unique identifier

        Returns:
            CreditAccount if found, None otherwise
        """
        result = await self.session.execute(
            select(CreditAccount)
            .where(CreditAccount.owner_id == owner_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, account: CreditAccount) -> CreditAccount:
        """Persist new credit account to database."""
        self.session.add(account)
        await self.session.flush()
        return account

    async def debit(self, owner_id: UUID, amount: int) -> tuple[int, int] | None:
        """Atomically deduct `amount`, subscription bucket first.

        Query explanation:
        - WHERE subscription + purchased >= amount: refuse when the total is short
        - subscription: drained down to zero at most
        - purchased: pays whatever the subscription bucket could not cover

        Args:
            owner_id: Owner to charge
            amount: Positive number of credits

        Returns:
            (subscription_balance, purchased_balance) after the debit, or None if
            the account is missing or the combined balance is insufficient
        """
        covered_by_subscription = CreditAccount.subscription_balance >= amount  # type: ignore[operator]
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.owner_id == owner_id)  # type: ignore[arg-type]
            .where(
                CreditAccount.subscription_balance + CreditAccount.purchased_balance >= amount  # type: ignore[operator]
            )
            .values(
                subscription_balance=case(
                    (covered_by_subscription, CreditAccount.subscription_balance - amount),
                    else_=0,
                ),
                purchased_balance=case(
                    (covered_by_subscription, CreditAccount.purchased_balance),
                    else_=CreditAccount.purchased_balance
                    - (amount - CreditAccount.subscription_balance),
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            return None

        result = await self.session.execute(
            select(CreditAccount.subscription_balance, CreditAccount.purchased_balance).where(
                CreditAccount.owner_id == owner_id  # type: ignore[arg-type]
            )
        )
        subscription, purchased = result.one()
        return subscription, purchased

    async def add_purchased(self, owner_id: UUID, amount: int) -> bool:
        """Atomically increment the purchased bucket.

        Returns:
            True if an account row was updated, False if the owner has no account
        """
        result = await self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.owner_id == owner_id)  # type: ignore[arg-type]
            .values(
                purchased_balance=CreditAccount.purchased_balance + amount,  # type: ignore[operator]
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def set_subscription(self, owner_id: UUID, amount: int, reset_at: datetime) -> bool:
        """Overwrite the subscription bucket (billing-cycle reset).

        Returns:
            True if an account row was updated, False if the owner has no account
        """
        result = await self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.owner_id == owner_id)  # type: ignore[arg-type]
            .values(
                subscription_balance=amount,
                last_reset_at=reset_at,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
