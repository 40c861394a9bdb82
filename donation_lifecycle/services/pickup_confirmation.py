"""Pickup confirmation by verification code.

The donor enters the code the receiver shows at pickup. A matching code
inside the tolerance window completes both the offer and its claim.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from donation_lifecycle.logging import get_logger
from donation_lifecycle.logging.audit import AuditLogger
from donation_lifecycle.models.claim import ClaimStatus
from donation_lifecycle.models.offer import OfferStatus
from donation_lifecycle.models.timeline import DONOR_ACTOR, TimelineEventType
from donation_lifecycle.services.claim_coordinator import ClaimCoordinator
from donation_lifecycle.services.notifications import (
    NotificationDispatcher,
    NotificationEventType,
)
from donation_lifecycle.services.offer_state_machine import OfferStateMachine
from donation_lifecycle.services.pickup_window import PickupWindowResolver
from donation_lifecycle.services.tolerance import (
    ToleranceDecision,
    ToleranceReason,
    ToleranceValidator,
)
from donation_lifecycle.storage.repository_base import UnitOfWorkFactory

logger = get_logger(__name__)


class PickupError(str, Enum):
    """Error kinds returned by pickup confirmation."""

    OFFER_NOT_FOUND = "OFFER_NOT_FOUND"
    NOT_READY = "NOT_READY"
    INVALID_CODE = "INVALID_CODE"
    TOO_EARLY = "TOO_EARLY"
    TOO_LATE = "TOO_LATE"


@dataclass
class PickupResult:
    """Outcome of a pickup confirmation attempt."""

    success: bool
    error: Optional[PickupError] = None
    message: str = ""
    decision: Optional[ToleranceDecision] = None


class PickupConfirmationService:
    """Verifies pickup codes and completes donations."""

    def __init__(
        self,
        unit_of_work: UnitOfWorkFactory,
        state_machine: OfferStateMachine,
        claim_coordinator: ClaimCoordinator,
        tolerance: ToleranceValidator,
        notifications: NotificationDispatcher,
        resolver: Optional[PickupWindowResolver] = None,
    ):
        self.unit_of_work = unit_of_work
        self.state_machine = state_machine
        self.claim_coordinator = claim_coordinator
        self.tolerance = tolerance
        self.notifications = notifications
        self.resolver = resolver or PickupWindowResolver()

    async def confirm_pickup(
        self, offer_id: UUID, otp_submitted: str, now: Optional[datetime] = None
    ) -> PickupResult:
        """
        Confirm a pickup with the submitted verification code.

        Args:
            offer_id: Offer being picked up
            otp_submitted: Code entered by the donor
            now: Current UTC time (defaults to the system clock)

        Returns:
            PickupResult; on success the offer and its claim are COMPLETED
        """
        now = now or datetime.utcnow()
        submitted = (otp_submitted or "").strip()

        async with self.unit_of_work() as uow:
            offer = await uow.offers.get_for_update(offer_id)
            if offer is None:
                return PickupResult(
                    success=False,
                    error=PickupError.OFFER_NOT_FOUND,
                    message="Donation not found.",
                )

            if offer.status != OfferStatus.READY_FOR_PICKUP:
                return PickupResult(
                    success=False,
                    error=PickupError.NOT_READY,
                    message="This donation is not ready for pickup.",
                )

            if not offer.otp_code or not secrets.compare_digest(
                submitted.encode(), offer.otp_code.encode()
            ):
                AuditLogger.log_pickup_code_rejected(offer.id, "code_mismatch")
                await self.state_machine.record_event(
                    uow,
                    offer,
                    event_type=TimelineEventType.PICKUP_CODE_INVALID,
                    actor=DONOR_ACTOR,
                    details="Invalid pickup code submitted",
                    visible_to_users=False,
                )
                return PickupResult(
                    success=False,
                    error=PickupError.INVALID_CODE,
                    message="The pickup code is not correct.",
                )

            claim = await uow.claims.get_active_for_offer(offer.id)
            decision = self.tolerance.evaluate(now, self.resolver.resolve(offer, claim))
            if not decision.allowed:
                AuditLogger.log_pickup_code_rejected(offer.id, decision.reason.value)
                await self.state_machine.record_event(
                    uow,
                    offer,
                    event_type=TimelineEventType.PICKUP_OUTSIDE_WINDOW,
                    actor=DONOR_ACTOR,
                    details=decision.message,
                    visible_to_users=False,
                )
                error = (
                    PickupError.TOO_EARLY
                    if decision.reason == ToleranceReason.TOO_EARLY
                    else PickupError.TOO_LATE
                )
                return PickupResult(
                    success=False,
                    error=error,
                    message=decision.message,
                    decision=decision,
                )

            transition = await self.state_machine.transition(
                uow,
                offer,
                OfferStatus.COMPLETED,
                event_type=TimelineEventType.PICKUP_CONFIRMED,
                reason=f"Pickup confirmed ({decision.reason.value})",
                actor=DONOR_ACTOR,
                actor_user_id=offer.donor_id,
                expected_from=OfferStatus.READY_FOR_PICKUP,
            )
            if not transition.success:
                return PickupResult(
                    success=False,
                    error=PickupError.NOT_READY,
                    message="This donation is not ready for pickup.",
                )

            receiver_id = None
            if claim is not None:
                await self.claim_coordinator.close_claim(uow, claim, ClaimStatus.COMPLETED)
                receiver_id = claim.receiver_id

        logger.info(
            "pickup_confirmed",
            offer_id=str(offer_id),
            tolerance_reason=decision.reason.value,
        )
        if receiver_id is not None:
            self.notifications.dispatch(
                receiver_id,
                NotificationEventType.PICKUP_COMPLETED,
                {"offer_id": str(offer_id)},
            )
        return PickupResult(
            success=True, message="Pickup confirmed. Thank you!", decision=decision
        )
