"""Donation timeline event model."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class TimelineEventType(str, Enum):
    """Events appended to an offer's timeline."""

    DONATION_CLAIMED = "DONATION_CLAIMED"
    CLAIM_CANCELLED = "CLAIM_CANCELLED"
    PICKUP_SLOT_CONFIRMED = "PICKUP_SLOT_CONFIRMED"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    PICKUP_CODE_GENERATED = "PICKUP_CODE_GENERATED"
    PICKUP_CONFIRMED = "PICKUP_CONFIRMED"
    PICKUP_CODE_INVALID = "PICKUP_CODE_INVALID"
    PICKUP_OUTSIDE_WINDOW = "PICKUP_OUTSIDE_WINDOW"
    DONATION_NOT_COMPLETED = "DONATION_NOT_COMPLETED"
    DONATION_EXPIRED = "DONATION_EXPIRED"


SYSTEM_ACTOR = "system"
DONOR_ACTOR = "donor"
RECEIVER_ACTOR = "receiver"


class TimelineEvent(BaseModel):
    """Append-only audit record of something that happened to an offer."""

    id: UUID = Field(default_factory=uuid4)
    offer_id: UUID
    event_type: TimelineEventType
    actor: str = Field(max_length=50)
    actor_user_id: Optional[int] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    details: Optional[str] = None
    visible_to_users: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
