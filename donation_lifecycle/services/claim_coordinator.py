"""Claim coordination with race condition prevention.

``claim`` is the one user-facing operation where concurrent callers race
for the same offer. The check-and-set runs under an optional Redis offer
lock and inside a single transaction that holds the offer row lock; the
partial unique index on ACTIVE claims is the last line that turns a lost
race into ``ALREADY_CLAIMED``.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Optional
from uuid import UUID

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.claim import Claim, ClaimStatus
from donation_lifecycle.models.offer import OfferStatus, PickupWindow
from donation_lifecycle.models.timeline import RECEIVER_ACTOR, TimelineEventType
from donation_lifecycle.services.notifications import (
    NotificationDispatcher,
    NotificationEventType,
)
from donation_lifecycle.services.offer_state_machine import OfferStateMachine
from donation_lifecycle.storage.redis_locks import RedisLockHelper
from donation_lifecycle.storage.repository_base import (
    ConcurrencyConflict,
    UnitOfWork,
    UnitOfWorkFactory,
)

logger = get_logger(__name__)


class ClaimError(str, Enum):
    """Error kinds returned by claim operations."""

    OFFER_NOT_FOUND = "OFFER_NOT_FOUND"
    OFFER_NOT_AVAILABLE = "OFFER_NOT_AVAILABLE"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    SELF_CLAIM_FORBIDDEN = "SELF_CLAIM_FORBIDDEN"
    CLAIM_NOT_FOUND = "CLAIM_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_SLOT = "INVALID_SLOT"
    OFFER_BUSY = "OFFER_BUSY"


CLAIM_ERROR_MESSAGES: dict[ClaimError, str] = {
    ClaimError.OFFER_NOT_FOUND: "Donation not found.",
    ClaimError.OFFER_NOT_AVAILABLE: "This donation is no longer available.",
    ClaimError.ALREADY_CLAIMED: "This item was just claimed by someone else.",
    ClaimError.SELF_CLAIM_FORBIDDEN: "You cannot claim your own donation.",
    ClaimError.CLAIM_NOT_FOUND: "Claim not found.",
    ClaimError.UNAUTHORIZED: "You are not allowed to change this claim.",
    ClaimError.INVALID_TRANSITION: "This claim can no longer be changed.",
    ClaimError.INVALID_SLOT: "The selected pickup slot is not offered by the donor.",
    ClaimError.OFFER_BUSY: "This donation is being claimed right now. Please try again.",
}


@dataclass
class ClaimResult:
    """Outcome of a claim operation."""

    success: bool
    claim: Optional[Claim] = None
    error: Optional[ClaimError] = None
    message: str = ""

    @classmethod
    def ok(cls, claim: Claim, message: str = "") -> "ClaimResult":
        return cls(success=True, claim=claim, message=message)

    @classmethod
    def failed(cls, error: ClaimError) -> "ClaimResult":
        return cls(success=False, error=error, message=CLAIM_ERROR_MESSAGES[error])


class ClaimCoordinator:
    """Owns claim creation, cancellation and closing."""

    def __init__(
        self,
        unit_of_work: UnitOfWorkFactory,
        state_machine: OfferStateMachine,
        notifications: NotificationDispatcher,
        redis_locks: Optional[RedisLockHelper] = None,
        lock_wait_seconds: float = 2.0,
    ):
        """
        Initialize claim coordinator.

        Args:
            unit_of_work: Factory opening one transaction per call
            state_machine: Offer state machine applying status changes
            notifications: Dispatcher for donor notifications
            redis_locks: Optional distributed lock helper
            lock_wait_seconds: How long to wait for a busy offer lock
        """
        self.unit_of_work = unit_of_work
        self.state_machine = state_machine
        self.notifications = notifications
        self.redis_locks = redis_locks
        self.lock_wait_seconds = lock_wait_seconds

    async def claim(
        self,
        offer_id: UUID,
        receiver_id: int,
        selected_slot: Optional[PickupWindow] = None,
        now: Optional[datetime] = None,
    ) -> ClaimResult:
        """
        Claim an offer for a receiver.

        Args:
            offer_id: Offer to claim
            receiver_id: Receiver claiming it
            selected_slot: One of the offer's candidate slots, if chosen
            now: Current UTC time (defaults to the system clock)

        Returns:
            ClaimResult with the ACTIVE claim on success
        """
        now = now or datetime.utcnow()

        async with self._offer_lock(offer_id) as acquired:
            if not acquired:
                logger.warning("claim_lock_busy", offer_id=str(offer_id), receiver_id=receiver_id)
                return ClaimResult.failed(ClaimError.OFFER_BUSY)

            try:
                async with self.unit_of_work() as uow:
                    result, donor_id = await self._claim_in_transaction(
                        uow, offer_id, receiver_id, selected_slot, now
                    )
            except ConcurrencyConflict:
                logger.info("claim_lost_race", offer_id=str(offer_id), receiver_id=receiver_id)
                return ClaimResult.failed(ClaimError.ALREADY_CLAIMED)

        if not result.success:
            logger.info(
                "claim_rejected",
                offer_id=str(offer_id),
                receiver_id=receiver_id,
                error=result.error.value,
            )
            return result

        logger.info(
            "claim_created",
            claim_id=str(result.claim.id),
            offer_id=str(offer_id),
            receiver_id=receiver_id,
        )
        self.notifications.dispatch(
            donor_id,
            NotificationEventType.DONATION_CLAIMED,
            {
                "offer_id": str(offer_id),
                "claim_id": str(result.claim.id),
                "receiver_id": receiver_id,
            },
        )
        return result

    async def cancel(self, claim_id: UUID, receiver_id: int) -> ClaimResult:
        """
        Cancel a receiver's ACTIVE claim and make the offer available again.

        Args:
            claim_id: Claim to cancel
            receiver_id: Receiver requesting the cancellation

        Returns:
            ClaimResult with the cancelled claim on success
        """
        async with self.unit_of_work() as uow:
            claim = await uow.claims.get_by_id(claim_id)
            if claim is None:
                return ClaimResult.failed(ClaimError.CLAIM_NOT_FOUND)

            # Lock order is offer then claim, same as the scheduler
            offer = await uow.offers.get_for_update(claim.offer_id)
            claim = await uow.claims.get_for_update(claim_id)

            if claim.receiver_id != receiver_id:
                logger.warning(
                    "claim_cancel_unauthorized",
                    claim_id=str(claim_id),
                    receiver_id=receiver_id,
                )
                return ClaimResult.failed(ClaimError.UNAUTHORIZED)

            if not claim.is_active:
                return ClaimResult.failed(ClaimError.INVALID_TRANSITION)

            transition = await self.state_machine.transition(
                uow,
                offer,
                OfferStatus.AVAILABLE,
                event_type=TimelineEventType.CLAIM_CANCELLED,
                reason=f"Claim cancelled by receiver {receiver_id}",
                actor=RECEIVER_ACTOR,
                actor_user_id=receiver_id,
                expected_from=OfferStatus.CLAIMED,
            )
            if not transition.success:
                return ClaimResult.failed(ClaimError.INVALID_TRANSITION)

            claim.status = ClaimStatus.CANCELLED
            claim.updated_at = datetime.utcnow()
            await uow.claims.update(claim)
            donor_id = offer.donor_id

        logger.info("claim_cancelled", claim_id=str(claim_id), offer_id=str(claim.offer_id))
        self.notifications.dispatch(
            donor_id,
            NotificationEventType.CLAIM_CANCELLED,
            {"offer_id": str(claim.offer_id), "claim_id": str(claim_id)},
        )
        return ClaimResult.ok(claim, "Claim cancelled.")

    async def confirm_slot(
        self, claim_id: UUID, receiver_id: int, slot: PickupWindow
    ) -> ClaimResult:
        """
        Record the pickup slot agreed for an ACTIVE claim.

        Only one of the donor's candidate slots can be confirmed, and only
        while the offer is still CLAIMED (before it becomes ready).
        """
        async with self.unit_of_work() as uow:
            claim = await uow.claims.get_by_id(claim_id)
            if claim is None:
                return ClaimResult.failed(ClaimError.CLAIM_NOT_FOUND)

            offer = await uow.offers.get_for_update(claim.offer_id)
            claim = await uow.claims.get_for_update(claim_id)

            if claim.receiver_id != receiver_id:
                return ClaimResult.failed(ClaimError.UNAUTHORIZED)
            if not claim.is_active or offer.status != OfferStatus.CLAIMED:
                return ClaimResult.failed(ClaimError.INVALID_TRANSITION)
            if slot not in offer.pickup_slots:
                return ClaimResult.failed(ClaimError.INVALID_SLOT)

            claim.confirmed_pickup_window = slot
            claim.updated_at = datetime.utcnow()
            await uow.claims.update(claim)
            await self.state_machine.record_event(
                uow,
                offer,
                event_type=TimelineEventType.PICKUP_SLOT_CONFIRMED,
                actor=RECEIVER_ACTOR,
                actor_user_id=receiver_id,
                details=(
                    f"Pickup slot confirmed for {slot.pickup_date.isoformat()} "
                    f"{slot.start_time.strftime('%H:%M')}-{slot.end_time.strftime('%H:%M')}"
                ),
            )

        logger.info("pickup_slot_confirmed", claim_id=str(claim_id), offer_id=str(claim.offer_id))
        return ClaimResult.ok(claim, "Pickup slot confirmed.")

    async def close_claim(
        self, uow: UnitOfWork, claim: Claim, status: ClaimStatus
    ) -> ClaimResult:
        """
        Close an ACTIVE claim as COMPLETED or NOT_COMPLETED.

        Runs inside the caller's unit of work so the claim changes together
        with its offer.
        """
        if status not in (ClaimStatus.COMPLETED, ClaimStatus.NOT_COMPLETED) or not claim.is_active:
            logger.warning(
                "claim_close_rejected",
                claim_id=str(claim.id),
                current_status=claim.status.value,
                requested_status=status.value,
            )
            return ClaimResult.failed(ClaimError.INVALID_TRANSITION)

        claim.status = status
        claim.updated_at = datetime.utcnow()
        await uow.claims.update(claim)
        return ClaimResult.ok(claim)

    async def _claim_in_transaction(
        self,
        uow: UnitOfWork,
        offer_id: UUID,
        receiver_id: int,
        selected_slot: Optional[PickupWindow],
        now: datetime,
    ) -> tuple[ClaimResult, Optional[int]]:
        offer = await uow.offers.get_for_update(offer_id)
        if offer is None:
            return ClaimResult.failed(ClaimError.OFFER_NOT_FOUND), None

        if offer.donor_id == receiver_id:
            return ClaimResult.failed(ClaimError.SELF_CLAIM_FORBIDDEN), None

        if await uow.claims.get_active_for_offer(offer_id) is not None:
            return ClaimResult.failed(ClaimError.ALREADY_CLAIMED), None

        if offer.status != OfferStatus.AVAILABLE or offer.is_past_expiry(now.date()):
            return ClaimResult.failed(ClaimError.OFFER_NOT_AVAILABLE), None

        if selected_slot is not None and selected_slot not in offer.pickup_slots:
            return ClaimResult.failed(ClaimError.INVALID_SLOT), None

        transition = await self.state_machine.transition(
            uow,
            offer,
            OfferStatus.CLAIMED,
            event_type=TimelineEventType.DONATION_CLAIMED,
            reason=f"Claimed by receiver {receiver_id}",
            actor=RECEIVER_ACTOR,
            actor_user_id=receiver_id,
            expected_from=OfferStatus.AVAILABLE,
        )
        if not transition.success:
            return ClaimResult.failed(ClaimError.OFFER_NOT_AVAILABLE), None

        claim = Claim(
            offer_id=offer_id,
            receiver_id=receiver_id,
            status=ClaimStatus.ACTIVE,
            confirmed_pickup_window=selected_slot,
            claimed_at=now,
            updated_at=now,
        )
        # Raises ConcurrencyConflict if another ACTIVE claim slipped in
        claim = await uow.claims.create(claim)

        return ClaimResult.ok(claim, "Donation claimed!"), offer.donor_id

    @asynccontextmanager
    async def _offer_lock(self, offer_id: UUID) -> AsyncIterator[bool]:
        if self.redis_locks is None:
            yield True
            return
        async with self.redis_locks.acquire_offer_lock(
            offer_id, wait_seconds=self.lock_wait_seconds
        ) as acquired:
            yield acquired
