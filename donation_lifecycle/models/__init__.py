"""Models package - Pydantic domain models."""

from .claim import Claim, ClaimStatus
from .offer import TERMINAL_OFFER_STATUSES, Offer, OfferInput, OfferStatus, PickupWindow
from .timeline import TimelineEvent, TimelineEventType

__all__ = [
    "Claim",
    "ClaimStatus",
    "Offer",
    "OfferInput",
    "OfferStatus",
    "PickupWindow",
    "TERMINAL_OFFER_STATUSES",
    "TimelineEvent",
    "TimelineEventType",
]
