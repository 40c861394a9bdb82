"""Offer status state machine.

Every offer status change goes through ``OfferStateMachine.transition``,
which enforces the transition table, issues the pickup code when an offer
becomes ready, persists the offer and appends a timeline event.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from donation_lifecycle.logging import get_logger
from donation_lifecycle.logging.audit import AuditLogger
from donation_lifecycle.models.offer import Offer, OfferStatus
from donation_lifecycle.models.timeline import SYSTEM_ACTOR, TimelineEventType
from donation_lifecycle.services.otp_issuer import OtpIssuer
from donation_lifecycle.storage.repository_base import UnitOfWork

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[OfferStatus, frozenset[OfferStatus]] = {
    OfferStatus.AVAILABLE: frozenset({OfferStatus.CLAIMED, OfferStatus.EXPIRED}),
    OfferStatus.CLAIMED: frozenset(
        {OfferStatus.AVAILABLE, OfferStatus.READY_FOR_PICKUP, OfferStatus.EXPIRED}
    ),
    OfferStatus.READY_FOR_PICKUP: frozenset(
        {OfferStatus.COMPLETED, OfferStatus.NOT_COMPLETED}
    ),
    OfferStatus.COMPLETED: frozenset(),
    OfferStatus.NOT_COMPLETED: frozenset(),
    OfferStatus.EXPIRED: frozenset(),
}


class TransitionError(str, Enum):
    """Why a transition was refused."""

    INVALID_TRANSITION = "INVALID_TRANSITION"


@dataclass
class TransitionResult:
    """Outcome of a requested offer transition."""

    success: bool
    old_status: OfferStatus
    new_status: OfferStatus
    error: Optional[TransitionError] = None
    message: str = ""


class OfferStateMachine:
    """Validates and applies offer status transitions."""

    def __init__(self, otp_issuer: Optional[OtpIssuer] = None):
        self.otp_issuer = otp_issuer or OtpIssuer()

    @staticmethod
    def can_transition(from_status: OfferStatus, to_status: OfferStatus) -> bool:
        return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())

    async def transition(
        self,
        uow: UnitOfWork,
        offer: Offer,
        new_status: OfferStatus,
        *,
        event_type: TimelineEventType,
        reason: str,
        actor: str = SYSTEM_ACTOR,
        actor_user_id: Optional[int] = None,
        expected_from: Optional[OfferStatus] = None,
        visible_to_users: bool = True,
    ) -> TransitionResult:
        """
        Move an offer to ``new_status`` inside an open unit of work.

        The offer is mutated and saved; the caller owns the transaction.

        Args:
            uow: Unit of work the offer was loaded in
            offer: Offer as currently persisted (ideally loaded for update)
            new_status: Target status
            event_type: Timeline event recorded for the change
            reason: Human-readable reason stored on the timeline
            actor: "system", "donor" or "receiver"
            actor_user_id: User driving the change, if any
            expected_from: Refuse unless the offer is still in this status
            visible_to_users: Whether the timeline event is user-visible

        Returns:
            TransitionResult; INVALID_TRANSITION leaves the offer untouched
        """
        old_status = offer.status

        stale = expected_from is not None and old_status != expected_from
        if stale or not self.can_transition(old_status, new_status):
            AuditLogger.log_rejected_transition(
                actor=actor,
                offer_id=offer.id,
                current_status=old_status.value,
                requested_status=new_status.value,
            )
            return TransitionResult(
                success=False,
                old_status=old_status,
                new_status=old_status,
                error=TransitionError.INVALID_TRANSITION,
                message=(
                    f"Cannot move offer from {old_status.value} to {new_status.value}."
                ),
            )

        code_issued = False
        if new_status == OfferStatus.READY_FOR_PICKUP and not offer.otp_code:
            self.otp_issuer.issue_if_absent(offer)
            code_issued = True

        offer.status = new_status
        offer.updated_at = datetime.utcnow()
        await uow.offers.update(offer)

        await self.record_event(
            uow,
            offer,
            event_type=event_type,
            actor=actor,
            actor_user_id=actor_user_id,
            old_status=old_status,
            new_status=new_status,
            details=reason,
            visible_to_users=visible_to_users,
        )
        if code_issued:
            await self.record_event(
                uow,
                offer,
                event_type=TimelineEventType.PICKUP_CODE_GENERATED,
                actor=SYSTEM_ACTOR,
                actor_user_id=None,
                old_status=None,
                new_status=None,
                details="Pickup verification code issued",
                visible_to_users=False,
            )

        AuditLogger.log_transition(
            event_type=event_type,
            actor=actor,
            offer_id=offer.id,
            old_status=old_status.value,
            new_status=new_status.value,
            reason=reason,
            actor_user_id=actor_user_id,
        )

        return TransitionResult(
            success=True, old_status=old_status, new_status=new_status
        )

    async def record_event(
        self,
        uow: UnitOfWork,
        offer: Offer,
        *,
        event_type: TimelineEventType,
        actor: str,
        details: str,
        actor_user_id: Optional[int] = None,
        old_status: Optional[OfferStatus] = None,
        new_status: Optional[OfferStatus] = None,
        visible_to_users: bool = True,
    ) -> None:
        """Append a timeline event; a failed append is logged, not raised."""
        try:
            await uow.timeline.record(
                offer_id=offer.id,
                event_type=event_type,
                actor=actor,
                old_status=old_status.value if old_status else None,
                new_status=new_status.value if new_status else None,
                details=details,
                visible_to_users=visible_to_users,
                actor_user_id=actor_user_id,
            )
        except Exception as e:
            logger.error(
                "timeline_record_failed",
                offer_id=str(offer.id),
                event_type=event_type.value,
                error=str(e),
                exc_info=True,
            )
