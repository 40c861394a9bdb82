"""Lifecycle worker startup and main entry point."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from donation_lifecycle.config import Settings, load_settings
from donation_lifecycle.logging import get_logger, setup_logging
from donation_lifecycle.services.claim_coordinator import ClaimCoordinator
from donation_lifecycle.services.notifications import (
    LoggingNotificationGateway,
    NotificationDispatcher,
    NotificationGateway,
)
from donation_lifecycle.services.offer_state_machine import OfferStateMachine
from donation_lifecycle.services.pickup_confirmation import PickupConfirmationService
from donation_lifecycle.services.scheduler import LifecycleScheduler
from donation_lifecycle.services.tolerance import ToleranceValidator
from donation_lifecycle.storage.database import Database
from donation_lifecycle.storage.memory_store import InMemoryStore
from donation_lifecycle.storage.redis_locks import RedisLockHelper
from donation_lifecycle.storage.repository_base import UnitOfWorkFactory


@dataclass
class LifecycleServices:
    """Wired lifecycle services sharing one storage backend."""

    notifications: NotificationDispatcher
    claim_coordinator: ClaimCoordinator
    pickup_confirmation: PickupConfirmationService
    scheduler: LifecycleScheduler


def build_services(
    settings: Settings,
    unit_of_work: UnitOfWorkFactory,
    gateway: Optional[NotificationGateway] = None,
    redis_locks: Optional[RedisLockHelper] = None,
) -> LifecycleServices:
    """Wire the lifecycle services from settings and a storage backend."""
    tolerance_settings = settings.tolerance
    tolerance = ToleranceValidator(
        early_minutes=tolerance_settings.early_minutes,
        late_minutes=tolerance_settings.late_minutes,
    )
    notifications = NotificationDispatcher(gateway or LoggingNotificationGateway())
    state_machine = OfferStateMachine()

    claim_coordinator = ClaimCoordinator(
        unit_of_work,
        state_machine,
        notifications,
        redis_locks=redis_locks,
        lock_wait_seconds=settings.claim_lock_wait_seconds,
    )
    pickup_confirmation = PickupConfirmationService(
        unit_of_work,
        state_machine,
        claim_coordinator,
        tolerance,
        notifications,
    )
    scheduler = LifecycleScheduler(
        unit_of_work,
        state_machine,
        claim_coordinator,
        tolerance,
        notifications,
        settings=settings.scheduler,
        redis_locks=redis_locks,
    )
    return LifecycleServices(
        notifications=notifications,
        claim_coordinator=claim_coordinator,
        pickup_confirmation=pickup_confirmation,
        scheduler=scheduler,
    )


@asynccontextmanager
async def open_storage(settings: Settings) -> AsyncIterator[UnitOfWorkFactory]:
    """Connect the configured storage backend and yield its unit-of-work factory."""
    if settings.storage_backend == "memory":
        yield InMemoryStore().unit_of_work
        return

    db = Database(settings)
    await db.connect()
    try:
        yield db.unit_of_work
    finally:
        await db.disconnect()


async def main() -> None:
    """Initialize and start the lifecycle worker."""
    settings = load_settings()
    setup_logging(settings.log_level)
    logger = get_logger(__name__)

    logger.info(
        "Starting donation lifecycle worker",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
    )

    redis_locks: Optional[RedisLockHelper] = None
    if settings.redis_url:
        redis_locks = RedisLockHelper(settings.redis_url, ttl_seconds=settings.redis_lock_ttl_seconds)
        await redis_locks.connect()

    async with open_storage(settings) as unit_of_work:
        services = build_services(settings, unit_of_work, redis_locks=redis_locks)

        await services.scheduler.start()
        logger.info("Worker initialization complete")

        # Run until stopped
        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down worker")
        finally:
            await services.scheduler.stop()
            await services.notifications.drain()
            if redis_locks is not None:
                await redis_locks.disconnect()


def cli() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
