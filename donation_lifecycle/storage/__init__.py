"""Storage package - repositories and units of work."""

from .memory_store import InMemoryStore
from .repository_base import (
    ClaimRepository,
    ConcurrencyConflict,
    OfferRepository,
    TimelineRecorder,
    UnitOfWork,
    UnitOfWorkFactory,
)

__all__ = [
    "ClaimRepository",
    "ConcurrencyConflict",
    "InMemoryStore",
    "OfferRepository",
    "TimelineRecorder",
    "UnitOfWork",
    "UnitOfWorkFactory",
]
