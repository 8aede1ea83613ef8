"""Credit entities - per-owner two-bucket balance and its usage audit log."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Column
from sqlmodel import Field, SQLModel

from mediagen.core.timezone import UTCDateTime, utcnow


class CreditAccount(SQLModel, table=True):
    """CreditAccount holds subscription and purchased credits for one owner.

    Subscription credits are always consumed before purchased credits.
    """

    __tablename__ = "credit_accounts"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("subscription_balance >= 0", name="ck_credit_accounts_subscription"),
        CheckConstraint("purchased_balance >= 0", name="ck_credit_accounts_purchased"),
    )

    owner_id: UUID = Field(primary_key=True)
    subscription_balance: int = Field(default=0, ge=0)
    purchased_balance: int = Field(default=0, ge=0)
    last_reset_at: Optional[datetime] = Field(
        default=None, sa_column=Column(UTCDateTime, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )

    @property
    def total(self) -> int:
        return self.subscription_balance + self.purchased_balance


class CreditUsageRecord(SQLModel, table=True):
    """Immutable audit entry written after each successful debit."""

    __tablename__ = "credit_usage"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: UUID = Field(index=True)
    amount: int = Field(ge=0)
    description: str = Field(default="", max_length=500)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )
