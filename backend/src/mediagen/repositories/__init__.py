"""Repository layer for the mediagen backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from mediagen.repositories.credit_account import CreditAccountRepository
from mediagen.repositories.credit_usage import CreditUsageRepository
from mediagen.repositories.generation_job import GenerationJobRepository

__all__ = [
    "CreditAccountRepository",
    "CreditUsageRepository",
    "GenerationJobRepository",
]
