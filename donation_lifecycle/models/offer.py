"""Offer domain models."""

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


class OfferStatus(str, Enum):
    """Offer lifecycle status."""

    AVAILABLE = "AVAILABLE"
    CLAIMED = "CLAIMED"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    COMPLETED = "COMPLETED"
    NOT_COMPLETED = "NOT_COMPLETED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_OFFER_STATUSES


TERMINAL_OFFER_STATUSES = frozenset(
    {OfferStatus.COMPLETED, OfferStatus.NOT_COMPLETED, OfferStatus.EXPIRED}
)


class PickupWindow(BaseModel):
    """A pickup slot on a given date.

    An end time earlier than the start time means the slot runs past
    midnight and ends on the following day.
    """

    model_config = {"frozen": True}

    pickup_date: date
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def validate_non_empty(self) -> "PickupWindow":
        """Ensure the window has a non-zero duration."""
        if self.start_time == self.end_time:
            raise ValueError("end_time must differ from start_time")
        return self

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time < self.start_time

    def scheduled_start(self) -> datetime:
        return datetime.combine(self.pickup_date, self.start_time)

    def scheduled_end(self) -> datetime:
        end = datetime.combine(self.pickup_date, self.end_time)
        if self.crosses_midnight:
            end += timedelta(days=1)
        return end


class Offer(BaseModel):
    """Donation offer entity."""

    id: UUID = Field(default_factory=uuid4)
    donor_id: int = Field(gt=0, description="Donor's user ID")
    title: str = Field(default="Surplus food", min_length=1, max_length=200)
    quantity: int = Field(gt=0, description="Number of portions offered")
    expiry_date: date = Field(description="Last day the food is safe to use")
    status: OfferStatus = Field(default=OfferStatus.AVAILABLE)
    default_pickup_window: Optional[PickupWindow] = None
    pickup_slots: list[PickupWindow] = Field(default_factory=list)
    otp_code: Optional[str] = Field(default=None, pattern=r"^\d{6}$", repr=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_past_expiry(self, today: date) -> bool:
        """Check if the food expired before the given day."""
        return self.expiry_date < today


class OfferInput(BaseModel):
    """Input model for offer creation."""

    donor_id: int = Field(gt=0)
    title: str = Field(default="Surplus food", min_length=1, max_length=200)
    quantity: int = Field(gt=0)
    expiry_date: date
    default_pickup_window: Optional[PickupWindow] = None
    pickup_slots: list[PickupWindow] = Field(default_factory=list)

    @field_validator("pickup_slots")
    @classmethod
    def validate_slots(cls, v: list[PickupWindow]) -> list[PickupWindow]:
        """Reject overlapping candidate slots."""
        from donation_lifecycle.services.slot_validation import PickupSlotValidator

        result = PickupSlotValidator().validate(v)
        if not result.is_valid:
            raise ValueError("; ".join(result.errors))
        return v
