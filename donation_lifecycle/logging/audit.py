"""Structured audit logging for lifecycle transitions.

Mirrors every timeline event into the structured log stream so that
transitions remain traceable even when the timeline store is unavailable.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.timeline import TimelineEventType

logger = get_logger(__name__)


class AuditLogger:
    """Centralized audit logging service."""

    @staticmethod
    def log_event(
        event_type: TimelineEventType,
        actor: str,
        resource_type: str,
        resource_id: UUID | str,
        action: str,
        success: bool = True,
        actor_user_id: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log an auditable event with structured context.

        Args:
            event_type: Type of audit event
            actor: "system", "donor" or "receiver"
            resource_type: Type of resource (offer, claim)
            resource_id: ID of the affected resource
            action: Human-readable action description
            success: Whether the action succeeded
            actor_user_id: User performing the action, if any
            metadata: Additional context (statuses, reason codes)
            error: Error message if action failed
        """
        audit_entry = {
            "event_type": event_type.value,
            "actor": actor,
            "actor_user_id": actor_user_id,
            "resource_type": resource_type,
            "resource_id": str(resource_id),
            "action": action,
            "success": success,
            "timestamp": datetime.utcnow().isoformat(),
            "metadata": metadata or {},
        }

        if error:
            audit_entry["error"] = error

        logger.info(
            "audit_event",
            **audit_entry,
        )

    @staticmethod
    def log_transition(
        event_type: TimelineEventType,
        actor: str,
        offer_id: UUID,
        old_status: str,
        new_status: str,
        reason: str,
        actor_user_id: Optional[int] = None,
    ) -> None:
        """Log an offer status transition."""
        AuditLogger.log_event(
            event_type=event_type,
            actor=actor,
            actor_user_id=actor_user_id,
            resource_type="offer",
            resource_id=offer_id,
            action=reason,
            metadata={"old_status": old_status, "new_status": new_status},
        )

    @staticmethod
    def log_rejected_transition(
        actor: str,
        offer_id: UUID,
        current_status: str,
        requested_status: str,
    ) -> None:
        """Log a transition refused by the state machine."""
        logger.warning(
            "audit_transition_rejected",
            actor=actor,
            resource_type="offer",
            resource_id=str(offer_id),
            current_status=current_status,
            requested_status=requested_status,
            timestamp=datetime.utcnow().isoformat(),
        )

    @staticmethod
    def log_pickup_code_rejected(offer_id: UUID, reason: str) -> None:
        """Log a failed pickup confirmation attempt."""
        AuditLogger.log_event(
            event_type=TimelineEventType.PICKUP_CODE_INVALID,
            actor="donor",
            resource_type="offer",
            resource_id=offer_id,
            action="Pickup confirmation rejected",
            success=False,
            metadata={"reason": reason},
        )
