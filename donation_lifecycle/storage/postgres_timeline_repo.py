"""PostgreSQL-backed donation timeline."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.timeline import TimelineEvent, TimelineEventType
from donation_lifecycle.storage.db_models import TimelineEventTable
from donation_lifecycle.storage.repository_base import TimelineRecorder

logger = get_logger(__name__)


class PostgresTimelineRepository(TimelineRecorder):
    """Timeline recorder writing to the donation_timeline table."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def record(
        self,
        offer_id: UUID,
        event_type: TimelineEventType,
        actor: str,
        old_status: Optional[str],
        new_status: Optional[str],
        details: Optional[str],
        visible_to_users: bool = True,
        actor_user_id: Optional[int] = None,
    ) -> TimelineEvent:
        """Append an event inside a SAVEPOINT.

        A failed append rolls back only the savepoint, leaving the
        surrounding status transition intact.
        """
        event = TimelineEvent(
            offer_id=offer_id,
            event_type=event_type,
            actor=actor,
            actor_user_id=actor_user_id,
            old_status=old_status,
            new_status=new_status,
            details=details,
            visible_to_users=visible_to_users,
        )

        async with self.session.begin_nested():
            self.session.add(
                TimelineEventTable(
                    id=event.id,
                    offer_id=event.offer_id,
                    event_type=event.event_type.value,
                    actor=event.actor,
                    actor_user_id=event.actor_user_id,
                    old_status=event.old_status,
                    new_status=event.new_status,
                    details=event.details,
                    visible_to_users=event.visible_to_users,
                    created_at=event.created_at,
                )
            )

        return event

    async def list_for_offer(
        self, offer_id: UUID, include_hidden: bool = False
    ) -> list[TimelineEvent]:
        """List events for an offer, oldest first."""
        stmt = select(TimelineEventTable).where(TimelineEventTable.offer_id == offer_id)
        if not include_hidden:
            stmt = stmt.where(TimelineEventTable.visible_to_users.is_(True))
        stmt = stmt.order_by(TimelineEventTable.created_at.asc())

        result = await self.session.execute(stmt)
        return [
            TimelineEvent(
                id=row.id,
                offer_id=row.offer_id,
                event_type=TimelineEventType(row.event_type),
                actor=row.actor,
                actor_user_id=row.actor_user_id,
                old_status=row.old_status,
                new_status=row.new_status,
                details=row.details,
                visible_to_users=row.visible_to_users,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]
