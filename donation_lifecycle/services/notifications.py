"""Best-effort user notifications.

Delivery channels (email, SMS, push) live behind ``NotificationGateway``.
The dispatcher runs each delivery as a background task so a slow or
failing channel never delays or rolls back a committed transition.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from donation_lifecycle.logging import get_logger

logger = get_logger(__name__)


class NotificationEventType(str, Enum):
    """Notification kinds sent to donors and receivers."""

    DONATION_CLAIMED = "donationClaimed"
    CLAIM_CANCELLED = "claimCancelled"
    READY_FOR_PICKUP = "readyForPickup"
    PICKUP_COMPLETED = "pickupCompleted"
    PICKUP_MISSED = "pickupMissed"
    DONATION_EXPIRED = "donationExpired"


class NotificationGateway(ABC):
    """Outbound notification channel."""

    @abstractmethod
    async def notify(
        self, user_id: int, event_type: NotificationEventType, payload: dict[str, Any]
    ) -> None:
        """Deliver one notification."""
        pass


class LoggingNotificationGateway(NotificationGateway):
    """Gateway that only records notifications in the log."""

    async def notify(
        self, user_id: int, event_type: NotificationEventType, payload: dict[str, Any]
    ) -> None:
        logger.info(
            "notification_sent",
            user_id=user_id,
            event_type=event_type.value,
            payload=payload,
        )


class NotificationDispatcher:
    """Fire-and-forget front for a NotificationGateway."""

    def __init__(self, gateway: NotificationGateway):
        self.gateway = gateway
        self._pending: set[asyncio.Task] = set()

    def dispatch(
        self, user_id: int, event_type: NotificationEventType, payload: dict[str, Any]
    ) -> None:
        """Schedule delivery and return immediately."""
        task = asyncio.create_task(self._deliver(user_id, event_type, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for deliveries already scheduled (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _deliver(
        self, user_id: int, event_type: NotificationEventType, payload: dict[str, Any]
    ) -> None:
        try:
            await self.gateway.notify(user_id, event_type, payload)
        except Exception as e:
            logger.error(
                "notification_failed",
                user_id=user_id,
                event_type=event_type.value,
                error=str(e),
                exc_info=True,
            )
