"""PostgreSQL repository for Offer entities."""

from datetime import date, datetime, time
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.offer import Offer, OfferStatus, PickupWindow
from donation_lifecycle.storage.db_models import OfferTable
from donation_lifecycle.storage.repository_base import OfferRepository

logger = get_logger(__name__)


def window_to_json(window: PickupWindow) -> dict[str, str]:
    """Serialize a pickup window for a JSON column."""
    return {
        "pickup_date": window.pickup_date.isoformat(),
        "start_time": window.start_time.isoformat(),
        "end_time": window.end_time.isoformat(),
    }


def window_from_json(data: dict[str, Any]) -> PickupWindow:
    """Deserialize a pickup window from a JSON column."""
    return PickupWindow(
        pickup_date=date.fromisoformat(data["pickup_date"]),
        start_time=time.fromisoformat(data["start_time"]),
        end_time=time.fromisoformat(data["end_time"]),
    )


def window_from_columns(
    pickup_date: Optional[date], start: Optional[time], end: Optional[time]
) -> Optional[PickupWindow]:
    """Build a pickup window from nullable date/start/end columns."""
    if pickup_date is None or start is None or end is None:
        return None
    return PickupWindow(pickup_date=pickup_date, start_time=start, end_time=end)


class PostgresOfferRepository(OfferRepository):
    """Offer repository using PostgreSQL."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, id: UUID) -> Optional[Offer]:
        """Retrieve offer by ID."""
        db_offer = await self._get_row(id)
        return self._to_domain_model(db_offer) if db_offer else None

    async def get_for_update(self, id: UUID) -> Optional[Offer]:
        """Retrieve offer with a row lock held until the transaction ends."""
        db_offer = await self._get_row(id, for_update=True)
        return self._to_domain_model(db_offer) if db_offer else None

    async def create(self, entity: Offer) -> Offer:
        """Create new offer."""
        db_offer = OfferTable(id=entity.id, created_at=entity.created_at)
        self._apply(db_offer, entity)

        self.session.add(db_offer)
        await self.session.flush()

        logger.info("offer_created", offer_id=str(db_offer.id), donor_id=entity.donor_id)

        return self._to_domain_model(db_offer)

    async def update(self, entity: Offer) -> Offer:
        """Update existing offer."""
        db_offer = await self._get_row(entity.id)

        if not db_offer:
            raise ValueError(f"Offer not found: {entity.id}")

        self._apply(db_offer, entity)
        await self.session.flush()

        logger.debug("offer_updated", offer_id=str(entity.id), status=entity.status.value)

        return self._to_domain_model(db_offer)

    async def list_by_status(self, statuses: Iterable[OfferStatus]) -> list[Offer]:
        """Get offers in the given statuses, oldest first."""
        stmt = (
            select(OfferTable)
            .where(OfferTable.status.in_(list(statuses)))
            .order_by(OfferTable.created_at.asc())
        )
        result = await self.session.execute(stmt)
        db_offers = result.scalars().all()

        return [self._to_domain_model(db_offer) for db_offer in db_offers]

    async def list_expired(
        self, today: date, statuses: Iterable[OfferStatus]
    ) -> list[Offer]:
        """Get offers in the given statuses whose expiry date has passed."""
        stmt = (
            select(OfferTable)
            .where(OfferTable.status.in_(list(statuses)))
            .where(OfferTable.expiry_date < today)
            .order_by(OfferTable.expiry_date.asc())
        )
        result = await self.session.execute(stmt)
        db_offers = result.scalars().all()

        return [self._to_domain_model(db_offer) for db_offer in db_offers]

    async def _get_row(self, id: UUID, for_update: bool = False) -> Optional[OfferTable]:
        stmt = select(OfferTable).where(OfferTable.id == id)
        if for_update:
            # Refresh rows already in the identity map once the lock is held
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _apply(self, db_offer: OfferTable, entity: Offer) -> None:
        """Copy mutable domain fields onto the row."""
        window = entity.default_pickup_window
        db_offer.donor_id = entity.donor_id
        db_offer.title = entity.title
        db_offer.quantity = entity.quantity
        db_offer.expiry_date = entity.expiry_date
        db_offer.status = entity.status
        db_offer.pickup_date = window.pickup_date if window else None
        db_offer.pickup_start_time = window.start_time if window else None
        db_offer.pickup_end_time = window.end_time if window else None
        db_offer.pickup_slots = [window_to_json(slot) for slot in entity.pickup_slots]
        db_offer.otp_code = entity.otp_code
        db_offer.updated_at = entity.updated_at or datetime.utcnow()

    def _to_domain_model(self, db_offer: OfferTable) -> Offer:
        """Convert database model to domain model."""
        return Offer(
            id=db_offer.id,
            donor_id=db_offer.donor_id,
            title=db_offer.title,
            quantity=db_offer.quantity,
            expiry_date=db_offer.expiry_date,
            status=db_offer.status,
            default_pickup_window=window_from_columns(
                db_offer.pickup_date,
                db_offer.pickup_start_time,
                db_offer.pickup_end_time,
            ),
            pickup_slots=[window_from_json(slot) for slot in db_offer.pickup_slots or []],
            otp_code=db_offer.otp_code,
            created_at=db_offer.created_at,
            updated_at=db_offer.updated_at,
        )
