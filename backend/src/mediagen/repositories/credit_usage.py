"""CreditUsageRecord repository for the mediagen backend.

Append-only: records are inserted and listed, never updated or deleted.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.models.credit_account import CreditUsageRecord


class CreditUsageRepository:
    """Repository for CreditUsageRecord entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, record: CreditUsageRecord) -> CreditUsageRecord:
        """Persist new usage record to database."""
        self.session.add(record)
        await self.session.flush()
        return record

    async def list_by_owner(self, owner_id: UUID, limit: int = 50) -> list[CreditUsageRecord]:
        """Retrieve an owner's usage records, newest first."""
        result = await self.session.execute(
            select(CreditUsageRecord)
            .where(CreditUsageRecord.owner_id == owner_id)  # type: ignore[arg-type]
            .order_by(CreditUsageRecord.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
