"""Shared test helpers: fixed clock values and a recording notification gateway."""

from datetime import date, datetime, time
from typing import Any

from donation_lifecycle.models.offer import PickupWindow
from donation_lifecycle.services.notifications import (
    NotificationEventType,
    NotificationGateway,
)

TODAY = date(2026, 3, 10)
DONOR_ID = 1001
RECEIVER_ID = 2001


def at(hour: int, minute: int = 0, day: date = TODAY) -> datetime:
    """Naive UTC datetime on the test day."""
    return datetime.combine(day, time(hour, minute))


def window(start: str, end: str, day: date = TODAY) -> PickupWindow:
    """Pickup window from "HH:MM" strings."""
    return PickupWindow(
        pickup_date=day,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
    )


class RecordingGateway(NotificationGateway):
    """Notification gateway that remembers what it was asked to send."""

    def __init__(self):
        self.sent: list[tuple[int, NotificationEventType, dict[str, Any]]] = []

    async def notify(
        self, user_id: int, event_type: NotificationEventType, payload: dict[str, Any]
    ) -> None:
        self.sent.append((user_id, event_type, payload))

    def events_for(self, user_id: int) -> list[NotificationEventType]:
        return [event for uid, event, _ in self.sent if uid == user_id]
