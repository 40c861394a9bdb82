"""PostgreSQL repository for Claim entities."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.claim import Claim, ClaimStatus
from donation_lifecycle.storage.db_models import ClaimTable
from donation_lifecycle.storage.postgres_offer_repo import window_from_columns
from donation_lifecycle.storage.repository_base import ClaimRepository, ConcurrencyConflict

logger = get_logger(__name__)


class PostgresClaimRepository(ClaimRepository):
    """Claim repository using PostgreSQL."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, id: UUID) -> Optional[Claim]:
        """Retrieve claim by ID."""
        db_claim = await self._get_row(id)
        return self._to_domain_model(db_claim) if db_claim else None

    async def get_for_update(self, id: UUID) -> Optional[Claim]:
        """Retrieve claim with a row lock held until the transaction ends."""
        db_claim = await self._get_row(id, for_update=True)
        return self._to_domain_model(db_claim) if db_claim else None

    async def create(self, entity: Claim) -> Claim:
        """Create new claim; the partial unique index rejects a second ACTIVE one."""
        db_claim = ClaimTable(
            id=entity.id,
            offer_id=entity.offer_id,
            receiver_id=entity.receiver_id,
            claimed_at=entity.claimed_at,
        )
        self._apply(db_claim, entity)

        self.session.add(db_claim)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(
                "claim_insert_conflict",
                offer_id=str(entity.offer_id),
                receiver_id=entity.receiver_id,
            )
            raise ConcurrencyConflict(
                f"Offer {entity.offer_id} already has an active claim"
            ) from e

        logger.info(
            "claim_row_created",
            claim_id=str(db_claim.id),
            offer_id=str(entity.offer_id),
            receiver_id=entity.receiver_id,
        )

        return self._to_domain_model(db_claim)

    async def update(self, entity: Claim) -> Claim:
        """Update existing claim."""
        db_claim = await self._get_row(entity.id)

        if not db_claim:
            raise ValueError(f"Claim not found: {entity.id}")

        self._apply(db_claim, entity)
        await self.session.flush()

        logger.debug("claim_updated", claim_id=str(entity.id), status=entity.status.value)

        return self._to_domain_model(db_claim)

    async def get_active_for_offer(self, offer_id: UUID) -> Optional[Claim]:
        """Get the ACTIVE claim of an offer."""
        stmt = (
            select(ClaimTable)
            .where(ClaimTable.offer_id == offer_id)
            .where(ClaimTable.status == ClaimStatus.ACTIVE)
        )
        result = await self.session.execute(stmt)
        db_claim = result.scalar_one_or_none()

        return self._to_domain_model(db_claim) if db_claim else None

    async def list_by_offer(self, offer_id: UUID) -> list[Claim]:
        """Get all claims for an offer, newest first."""
        stmt = (
            select(ClaimTable)
            .where(ClaimTable.offer_id == offer_id)
            .order_by(ClaimTable.claimed_at.desc())
        )
        result = await self.session.execute(stmt)
        db_claims = result.scalars().all()

        return [self._to_domain_model(db_claim) for db_claim in db_claims]

    async def _get_row(self, id: UUID, for_update: bool = False) -> Optional[ClaimTable]:
        stmt = select(ClaimTable).where(ClaimTable.id == id)
        if for_update:
            # Refresh rows already in the identity map once the lock is held
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _apply(self, db_claim: ClaimTable, entity: Claim) -> None:
        window = entity.confirmed_pickup_window
        db_claim.status = entity.status
        db_claim.confirmed_pickup_date = window.pickup_date if window else None
        db_claim.confirmed_pickup_start_time = window.start_time if window else None
        db_claim.confirmed_pickup_end_time = window.end_time if window else None
        db_claim.updated_at = entity.updated_at

    def _to_domain_model(self, db_claim: ClaimTable) -> Claim:
        """Convert database model to domain model."""
        return Claim(
            id=db_claim.id,
            offer_id=db_claim.offer_id,
            receiver_id=db_claim.receiver_id,
            status=db_claim.status,
            confirmed_pickup_window=window_from_columns(
                db_claim.confirmed_pickup_date,
                db_claim.confirmed_pickup_start_time,
                db_claim.confirmed_pickup_end_time,
            ),
            claimed_at=db_claim.claimed_at,
            updated_at=db_claim.updated_at,
        )
