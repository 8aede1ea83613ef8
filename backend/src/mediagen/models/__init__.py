"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from mediagen.models.credit_account import CreditAccount, CreditUsageRecord
from mediagen.models.generation_job import (
    GenerationJob,
    GenerationMode,
    InvalidStateTransition,
    JobStatus,
)

__all__ = [
    "CreditAccount",
    "CreditUsageRecord",
    "GenerationJob",
    "GenerationMode",
    "InvalidStateTransition",
    "JobStatus",
]
