"""In-process storage backend.

Implements the unit-of-work contract over plain dictionaries for local
runs and tests. Units of work are serialized by a single asyncio lock,
so every unit behaves as a serializable transaction; writes are staged
and only become visible on commit.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.claim import Claim, ClaimStatus
from donation_lifecycle.models.offer import Offer, OfferStatus
from donation_lifecycle.models.timeline import TimelineEvent, TimelineEventType
from donation_lifecycle.storage.repository_base import (
    ClaimRepository,
    ConcurrencyConflict,
    OfferRepository,
    TimelineRecorder,
    UnitOfWork,
)

logger = get_logger(__name__)


class _Staged:
    """Pending writes of one unit of work."""

    def __init__(self):
        self.offers: dict[UUID, Offer] = {}
        self.claims: dict[UUID, Claim] = {}
        self.events: list[TimelineEvent] = []


class InMemoryOfferRepository(OfferRepository):
    """Offer repository over an InMemoryStore."""

    def __init__(self, store: "InMemoryStore", staged: _Staged):
        self.store = store
        self.staged = staged

    def _current(self) -> dict[UUID, Offer]:
        return {**self.store.offers, **self.staged.offers}

    async def get_by_id(self, id: UUID) -> Optional[Offer]:
        offer = self._current().get(id)
        return offer.model_copy(deep=True) if offer else None

    async def get_for_update(self, id: UUID) -> Optional[Offer]:
        # The store lock is already held for the whole unit of work
        return await self.get_by_id(id)

    async def create(self, entity: Offer) -> Offer:
        if entity.id in self._current():
            raise ConcurrencyConflict(f"Offer already exists: {entity.id}")
        self.staged.offers[entity.id] = entity.model_copy(deep=True)
        return entity

    async def update(self, entity: Offer) -> Offer:
        if entity.id not in self._current():
            raise ValueError(f"Offer not found: {entity.id}")
        self.staged.offers[entity.id] = entity.model_copy(deep=True)
        return entity

    async def list_by_status(self, statuses: Iterable[OfferStatus]) -> list[Offer]:
        wanted = set(statuses)
        offers = [o for o in self._current().values() if o.status in wanted]
        offers.sort(key=lambda o: o.created_at)
        return [o.model_copy(deep=True) for o in offers]

    async def list_expired(
        self, today: date, statuses: Iterable[OfferStatus]
    ) -> list[Offer]:
        return [
            offer
            for offer in await self.list_by_status(statuses)
            if offer.expiry_date < today
        ]


class InMemoryClaimRepository(ClaimRepository):
    """Claim repository over an InMemoryStore."""

    def __init__(self, store: "InMemoryStore", staged: _Staged):
        self.store = store
        self.staged = staged

    def _current(self) -> dict[UUID, Claim]:
        return {**self.store.claims, **self.staged.claims}

    async def get_by_id(self, id: UUID) -> Optional[Claim]:
        claim = self._current().get(id)
        return claim.model_copy(deep=True) if claim else None

    async def get_for_update(self, id: UUID) -> Optional[Claim]:
        return await self.get_by_id(id)

    async def create(self, entity: Claim) -> Claim:
        if entity.status == ClaimStatus.ACTIVE:
            existing = await self.get_active_for_offer(entity.offer_id)
            if existing is not None:
                raise ConcurrencyConflict(
                    f"Offer {entity.offer_id} already has active claim {existing.id}"
                )
        self.staged.claims[entity.id] = entity.model_copy(deep=True)
        return entity

    async def update(self, entity: Claim) -> Claim:
        if entity.id not in self._current():
            raise ValueError(f"Claim not found: {entity.id}")
        self.staged.claims[entity.id] = entity.model_copy(deep=True)
        return entity

    async def get_active_for_offer(self, offer_id: UUID) -> Optional[Claim]:
        for claim in self._current().values():
            if claim.offer_id == offer_id and claim.status == ClaimStatus.ACTIVE:
                return claim.model_copy(deep=True)
        return None

    async def list_by_offer(self, offer_id: UUID) -> list[Claim]:
        claims = [c for c in self._current().values() if c.offer_id == offer_id]
        claims.sort(key=lambda c: c.claimed_at, reverse=True)
        return [c.model_copy(deep=True) for c in claims]


class InMemoryTimelineRecorder(TimelineRecorder):
    """Timeline recorder over an InMemoryStore."""

    def __init__(self, store: "InMemoryStore", staged: _Staged):
        self.store = store
        self.staged = staged

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
        event = TimelineEvent(
            offer_id=offer_id,
            event_type=event_type,
            actor=actor,
            actor_user_id=actor_user_id,
            old_status=old_status,
            new_status=new_status,
            details=details,
            visible_to_users=visible_to_users,
        )
        self.staged.events.append(event)
        return event

    async def list_for_offer(
        self, offer_id: UUID, include_hidden: bool = False
    ) -> list[TimelineEvent]:
        return [
            event
            for event in [*self.store.events, *self.staged.events]
            if event.offer_id == offer_id and (include_hidden or event.visible_to_users)
        ]


class InMemoryStore:
    """Dictionary-backed store with serialized units of work."""

    def __init__(self):
        self.offers: dict[UUID, Offer] = {}
        self.claims: dict[UUID, Claim] = {}
        self.events: list[TimelineEvent] = []
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[UnitOfWork]:
        """
        Open a unit of work.

        Yields:
            UnitOfWork whose writes are committed on normal exit and
            discarded on exception
        """
        async with self._lock:
            staged = _Staged()
            yield UnitOfWork(
                offers=InMemoryOfferRepository(self, staged),
                claims=InMemoryClaimRepository(self, staged),
                timeline=InMemoryTimelineRecorder(self, staged),
            )
            self.offers.update(staged.offers)
            self.claims.update(staged.claims)
            self.events.extend(staged.events)
