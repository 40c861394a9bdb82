"""Lifecycle scheduler for time-gated offer transitions.

Three independent periodic sweeps discover offers whose pickup window or
expiry date has moved them into a new state:

* promote_ready: CLAIMED -> READY_FOR_PICKUP once the early boundary passes
* demote_missed: READY_FOR_PICKUP -> NOT_COMPLETED after the late boundary
* expire_stale: AVAILABLE/CLAIMED -> EXPIRED after the expiry date

Each offer is re-checked under its row lock in its own unit of work, so a
sweep never applies a transition whose source status has already moved
and a failure on one offer does not stop the rest of the pass.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import UUID

from donation_lifecycle.config import SchedulerSettings
from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.claim import Claim, ClaimStatus
from donation_lifecycle.models.offer import Offer, OfferStatus
from donation_lifecycle.models.timeline import TimelineEventType
from donation_lifecycle.services.claim_coordinator import ClaimCoordinator
from donation_lifecycle.services.notifications import (
    NotificationDispatcher,
    NotificationEventType,
)
from donation_lifecycle.services.offer_state_machine import OfferStateMachine
from donation_lifecycle.services.pickup_window import PickupWindowResolver
from donation_lifecycle.services.tolerance import ToleranceReason, ToleranceValidator
from donation_lifecycle.storage.redis_locks import RedisLockHelper
from donation_lifecycle.storage.repository_base import UnitOfWork, UnitOfWorkFactory

logger = get_logger(__name__)

EXPIRABLE_STATUSES = (OfferStatus.AVAILABLE, OfferStatus.CLAIMED)

SweepCounts = dict[str, int]


def _empty_counts() -> SweepCounts:
    return {"transitioned": 0, "skipped": 0, "failed": 0}


class LifecycleScheduler:
    """Background sweeps that advance offers through time-gated states."""

    def __init__(
        self,
        unit_of_work: UnitOfWorkFactory,
        state_machine: OfferStateMachine,
        claim_coordinator: ClaimCoordinator,
        tolerance: ToleranceValidator,
        notifications: NotificationDispatcher,
        settings: Optional[SchedulerSettings] = None,
        resolver: Optional[PickupWindowResolver] = None,
        redis_locks: Optional[RedisLockHelper] = None,
    ):
        """
        Initialize lifecycle scheduler.

        Args:
            unit_of_work: Factory opening one transaction per offer
            state_machine: Offer state machine applying transitions
            claim_coordinator: Closes claims alongside their offers
            tolerance: Early/late tolerance around pickup windows
            notifications: Dispatcher for donor and receiver notifications
            settings: Sweep periods, grace period and auto-expiry switch
            resolver: Pickup window resolver
            redis_locks: Optional lock helper so only one worker runs a sweep
        """
        self.unit_of_work = unit_of_work
        self.state_machine = state_machine
        self.claim_coordinator = claim_coordinator
        self.tolerance = tolerance
        self.notifications = notifications
        self.settings = settings or SchedulerSettings()
        self.resolver = resolver or PickupWindowResolver()
        self.redis_locks = redis_locks
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweeps as independent periodic tasks."""
        if self._running:
            return
        self._running = True

        loops = [
            ("promote_ready", self.promote_ready, self.settings.promote_interval_seconds),
            ("demote_missed", self.demote_missed, self.settings.demote_interval_seconds),
        ]
        if self.settings.enable_auto_expiry:
            loops.append(
                ("expire_stale", self.expire_stale, self.settings.expire_interval_seconds)
            )
        else:
            logger.info("auto_expiry_disabled")

        self._tasks = [
            asyncio.create_task(self._run_periodic(name, sweep, interval), name=name)
            for name, sweep, interval in loops
        ]
        logger.info(
            "scheduler_started",
            sweeps=[name for name, _, _ in loops],
            grace_period_minutes=self.settings.grace_period_minutes,
        )

    async def stop(self) -> None:
        """Stop all sweeps and wait for them to finish."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("scheduler_stopped")

    async def run_once(self, now: Optional[datetime] = None) -> dict[str, SweepCounts]:
        """Run every sweep once (for manual trigger or testing)."""
        now = now or datetime.utcnow()
        results = {
            "promote_ready": await self.promote_ready(now),
            "demote_missed": await self.demote_missed(now),
        }
        if self.settings.enable_auto_expiry:
            results["expire_stale"] = await self.expire_stale(now)
        return results

    async def promote_ready(self, now: Optional[datetime] = None) -> SweepCounts:
        """Promote CLAIMED offers whose pickup window is no longer too early."""
        now = now or datetime.utcnow()
        return await self._sweep(
            "promote_ready",
            lambda uow: uow.offers.list_by_status([OfferStatus.CLAIMED]),
            lambda offer_id: self._promote_one(offer_id, now),
            self.settings.promote_interval_seconds,
        )

    async def demote_missed(self, now: Optional[datetime] = None) -> SweepCounts:
        """Close READY_FOR_PICKUP offers whose late boundary has passed."""
        now = now or datetime.utcnow()
        return await self._sweep(
            "demote_missed",
            lambda uow: uow.offers.list_by_status([OfferStatus.READY_FOR_PICKUP]),
            lambda offer_id: self._demote_one(offer_id, now),
            self.settings.demote_interval_seconds,
        )

    async def expire_stale(self, now: Optional[datetime] = None) -> SweepCounts:
        """Expire unclaimed or claimed offers past their expiry date."""
        today = (now or datetime.utcnow()).date()
        return await self._sweep(
            "expire_stale",
            lambda uow: uow.offers.list_expired(today, EXPIRABLE_STATUSES),
            lambda offer_id: self._expire_one(offer_id, today),
            self.settings.expire_interval_seconds,
        )

    async def _run_periodic(
        self,
        name: str,
        sweep: Callable[[], Awaitable[SweepCounts]],
        interval_seconds: float,
    ) -> None:
        while self._running:
            try:
                await sweep()
            except Exception as e:
                logger.error("sweep_error", sweep=name, error=str(e), exc_info=True)
            await asyncio.sleep(interval_seconds)

    async def _sweep(
        self,
        name: str,
        list_candidates: Callable[[UnitOfWork], Awaitable[list[Offer]]],
        process: Callable[[UUID], Awaitable[bool]],
        lock_ttl_seconds: float,
    ) -> SweepCounts:
        counts = _empty_counts()

        async with self._sweep_lock(name, lock_ttl_seconds) as acquired:
            if not acquired:
                logger.debug("sweep_skipped_locked", sweep=name)
                return counts

            async with self.unit_of_work() as uow:
                candidates = await list_candidates(uow)

            for offer in candidates:
                try:
                    if await process(offer.id):
                        counts["transitioned"] += 1
                    else:
                        counts["skipped"] += 1
                except Exception as e:
                    counts["failed"] += 1
                    logger.error(
                        "sweep_item_failed",
                        sweep=name,
                        offer_id=str(offer.id),
                        error=str(e),
                        exc_info=True,
                    )

        if candidates:
            logger.info("sweep_completed", sweep=name, **counts)
        return counts

    async def _promote_one(self, offer_id: UUID, now: datetime) -> bool:
        async with self.unit_of_work() as uow:
            offer = await uow.offers.get_for_update(offer_id)
            if offer is None or offer.status != OfferStatus.CLAIMED:
                return False

            claim = await uow.claims.get_active_for_offer(offer_id)
            if claim is None:
                logger.warning("claimed_offer_without_active_claim", offer_id=str(offer_id))
                return False
            if self._in_grace_period(offer, claim, now):
                return False

            decision = self.tolerance.evaluate(now, self.resolver.resolve(offer, claim))
            if decision.reason == ToleranceReason.TOO_EARLY:
                return False

            result = await self.state_machine.transition(
                uow,
                offer,
                OfferStatus.READY_FOR_PICKUP,
                event_type=TimelineEventType.READY_FOR_PICKUP,
                reason=f"Pickup window reached ({decision.reason.value})",
                expected_from=OfferStatus.CLAIMED,
            )
            if not result.success:
                return False
            pickup_code = offer.otp_code

        self.notifications.dispatch(
            claim.receiver_id,
            NotificationEventType.READY_FOR_PICKUP,
            {"offer_id": str(offer_id), "pickup_code": pickup_code},
        )
        return True

    async def _demote_one(self, offer_id: UUID, now: datetime) -> bool:
        async with self.unit_of_work() as uow:
            offer = await uow.offers.get_for_update(offer_id)
            if offer is None or offer.status != OfferStatus.READY_FOR_PICKUP:
                return False

            claim = await uow.claims.get_active_for_offer(offer_id)
            if self._in_grace_period(offer, claim, now):
                return False

            if claim is None:
                reason = "Ready for pickup without an active claim"
            else:
                decision = self.tolerance.evaluate(now, self.resolver.resolve(offer, claim))
                if decision.reason != ToleranceReason.TOO_LATE:
                    return False
                reason = f"Pickup window missed ({decision.minutes} minutes past late boundary)"

            result = await self.state_machine.transition(
                uow,
                offer,
                OfferStatus.NOT_COMPLETED,
                event_type=TimelineEventType.DONATION_NOT_COMPLETED,
                reason=reason,
                expected_from=OfferStatus.READY_FOR_PICKUP,
            )
            if not result.success:
                return False
            if claim is not None:
                await self.claim_coordinator.close_claim(uow, claim, ClaimStatus.NOT_COMPLETED)

        payload = {"offer_id": str(offer_id)}
        self.notifications.dispatch(offer.donor_id, NotificationEventType.PICKUP_MISSED, payload)
        if claim is not None:
            self.notifications.dispatch(
                claim.receiver_id, NotificationEventType.PICKUP_MISSED, payload
            )
        return True

    async def _expire_one(self, offer_id: UUID, today: date) -> bool:
        async with self.unit_of_work() as uow:
            offer = await uow.offers.get_for_update(offer_id)
            if (
                offer is None
                or offer.status not in EXPIRABLE_STATUSES
                or not offer.is_past_expiry(today)
            ):
                return False

            claim = await uow.claims.get_active_for_offer(offer_id)
            result = await self.state_machine.transition(
                uow,
                offer,
                OfferStatus.EXPIRED,
                event_type=TimelineEventType.DONATION_EXPIRED,
                reason=f"Expiry date {offer.expiry_date.isoformat()} has passed",
                expected_from=offer.status,
            )
            if not result.success:
                return False
            if claim is not None:
                await self.claim_coordinator.close_claim(uow, claim, ClaimStatus.NOT_COMPLETED)

        payload = {"offer_id": str(offer_id)}
        self.notifications.dispatch(offer.donor_id, NotificationEventType.DONATION_EXPIRED, payload)
        if claim is not None:
            self.notifications.dispatch(
                claim.receiver_id, NotificationEventType.DONATION_EXPIRED, payload
            )
        return True

    def _in_grace_period(
        self, offer: Offer, claim: Optional[Claim], now: datetime
    ) -> bool:
        # Anchor on the most recent write that put the offer in its state
        anchor = offer.created_at
        if claim is not None and claim.claimed_at > anchor:
            anchor = claim.claimed_at
        return now - anchor < timedelta(minutes=self.settings.grace_period_minutes)

    @asynccontextmanager
    async def _sweep_lock(self, name: str, ttl_seconds: float) -> AsyncIterator[bool]:
        if self.redis_locks is None:
            yield True
            return
        async with self.redis_locks.acquire_sweep_lock(
            name, ttl_seconds=max(int(ttl_seconds), 1)
        ) as acquired:
            yield acquired
