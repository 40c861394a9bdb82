"""Claim domain model."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .offer import PickupWindow


class ClaimStatus(str, Enum):
    """Claim status enumeration."""

    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NOT_COMPLETED = "NOT_COMPLETED"


class Claim(BaseModel):
    """A receiver's reservation against one offer."""

    id: UUID = Field(default_factory=uuid4)
    offer_id: UUID = Field(description="Claimed offer")
    receiver_id: int = Field(gt=0, description="Receiver's user ID")
    status: ClaimStatus = Field(default=ClaimStatus.ACTIVE)
    confirmed_pickup_window: Optional[PickupWindow] = None
    claimed_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == ClaimStatus.ACTIVE
