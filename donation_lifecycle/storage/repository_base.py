"""Repository interfaces and the unit-of-work contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import AsyncContextManager, Callable, Generic, Iterable, Optional, TypeVar
from uuid import UUID

from donation_lifecycle.models.claim import Claim
from donation_lifecycle.models.offer import Offer, OfferStatus
from donation_lifecycle.models.timeline import TimelineEvent, TimelineEventType

T = TypeVar("T")


class ConcurrencyConflict(Exception):
    """Raised when a write loses a race against a concurrent transaction."""


class RepositoryBase(ABC, Generic[T]):
    """Base repository interface for CRUD operations."""

    @abstractmethod
    async def get_by_id(self, id: UUID) -> Optional[T]:
        """Retrieve entity by ID."""
        pass

    @abstractmethod
    async def create(self, entity: T) -> T:
        """Create new entity."""
        pass

    @abstractmethod
    async def update(self, entity: T) -> T:
        """Update existing entity."""
        pass


class OfferRepository(RepositoryBase[Offer]):
    """Offer persistence."""

    @abstractmethod
    async def get_for_update(self, id: UUID) -> Optional[Offer]:
        """Retrieve offer and lock it until the unit of work ends."""
        pass

    @abstractmethod
    async def list_by_status(self, statuses: Iterable[OfferStatus]) -> list[Offer]:
        """List offers whose status is one of ``statuses``."""
        pass

    @abstractmethod
    async def list_expired(
        self, today: date, statuses: Iterable[OfferStatus]
    ) -> list[Offer]:
        """List offers in ``statuses`` whose expiry date is before ``today``."""
        pass


class ClaimRepository(RepositoryBase[Claim]):
    """Claim persistence.

    ``create`` raises ConcurrencyConflict when the offer already has an
    ACTIVE claim.
    """

    @abstractmethod
    async def get_for_update(self, id: UUID) -> Optional[Claim]:
        """Retrieve claim and lock it until the unit of work ends."""
        pass

    @abstractmethod
    async def get_active_for_offer(self, offer_id: UUID) -> Optional[Claim]:
        """Get the ACTIVE claim of an offer, if any."""
        pass

    @abstractmethod
    async def list_by_offer(self, offer_id: UUID) -> list[Claim]:
        """Get all claims for an offer, newest first."""
        pass


class TimelineRecorder(ABC):
    """Append-only donation timeline."""

    @abstractmethod
    async def record(
        self,
        offer_id: UUID,
        event_type: TimelineEventType,
        actor: str,
        old_status: Optional[str],
        new_status: Optional[str],
        details: Optional[str],
        visible_to_users: bool = True,
        actor_user_id: Optional[int] = None,
    ) -> TimelineEvent:
        """Append an event."""
        pass

    @abstractmethod
    async def list_for_offer(
        self, offer_id: UUID, include_hidden: bool = False
    ) -> list[TimelineEvent]:
        """List events for an offer, oldest first."""
        pass


@dataclass
class UnitOfWork:
    """Repositories sharing one transaction.

    Obtained from a ``UnitOfWorkFactory``; the transaction commits when the
    context exits normally and rolls back on exception.
    """

    offers: OfferRepository
    claims: ClaimRepository
    timeline: TimelineRecorder


UnitOfWorkFactory = Callable[[], AsyncContextManager[UnitOfWork]]
