"""Unit tests for the lifecycle scheduler sweeps."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from donation_lifecycle.config import SchedulerSettings
from donation_lifecycle.models.claim import ClaimStatus
from donation_lifecycle.models.offer import OfferStatus
from donation_lifecycle.models.timeline import TimelineEventType
from donation_lifecycle.services.notifications import NotificationEventType
from donation_lifecycle.services.scheduler import LifecycleScheduler
from donation_lifecycle.storage.memory_store import InMemoryOfferRepository
from tests.helpers import DONOR_ID, RECEIVER_ID, TODAY, at, window


@pytest.fixture
def claimed_offer(make_offer, make_claim):
    """CLAIMED offer with a 14:00-15:00 default window, claimed at 10:00."""
    offer = make_offer(status=OfferStatus.CLAIMED, default_window=window("14:00", "15:00"))
    claim = make_claim(offer, claimed_at=at(10))
    return offer, claim


@pytest.fixture
def ready_offer(make_offer, make_claim):
    """READY_FOR_PICKUP offer with a 14:00-15:00 default window."""
    offer = make_offer(
        status=OfferStatus.READY_FOR_PICKUP,
        default_window=window("14:00", "15:00"),
        otp_code="246810",
    )
    claim = make_claim(offer, claimed_at=at(10))
    return offer, claim


# Promote to ready


@pytest.mark.asyncio
async def test_promote_waits_for_early_boundary(store, claimed_offer, scheduler):
    """Test an offer is not promoted before the early boundary."""
    offer, _ = claimed_offer

    counts = await scheduler.promote_ready(at(13, 44))

    assert counts == {"transitioned": 0, "skipped": 1, "failed": 0}
    assert store.offers[offer.id].status == OfferStatus.CLAIMED
    assert store.offers[offer.id].otp_code is None


@pytest.mark.asyncio
async def test_promote_at_early_boundary(store, claimed_offer, scheduler, notifications, gateway):
    """Test promotion issues a code and notifies the receiver."""
    offer, _ = claimed_offer

    counts = await scheduler.promote_ready(at(13, 46))
    await notifications.drain()

    saved = store.offers[offer.id]
    assert counts["transitioned"] == 1
    assert saved.status == OfferStatus.READY_FOR_PICKUP
    assert saved.otp_code is not None and len(saved.otp_code) == 6
    assert gateway.events_for(RECEIVER_ID) == [NotificationEventType.READY_FOR_PICKUP]
    assert gateway.sent[0][2]["pickup_code"] == saved.otp_code


@pytest.mark.asyncio
async def test_promote_uses_confirmed_slot(store, make_offer, make_claim, scheduler):
    """Test the receiver-confirmed slot overrides the default window."""
    offer = make_offer(status=OfferStatus.CLAIMED, default_window=window("09:00", "10:00"))
    make_claim(offer, claimed_at=at(8, 30), confirmed_window=window("16:00", "17:00"))

    await scheduler.promote_ready(at(12))

    assert store.offers[offer.id].status == OfferStatus.CLAIMED


@pytest.mark.asyncio
async def test_promote_without_schedule(store, make_offer, make_claim, scheduler):
    """Test an offer without any window is promoted once out of the grace period."""
    offer = make_offer(status=OfferStatus.CLAIMED)
    make_claim(offer, claimed_at=at(10))

    await scheduler.promote_ready(at(10, 5))

    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP


@pytest.mark.asyncio
async def test_grace_period_suppresses_fresh_claim(store, make_offer, make_claim, scheduler):
    """Test a claim younger than the grace period is never promoted."""
    offer = make_offer(status=OfferStatus.CLAIMED, default_window=window("09:00", "18:00"))
    make_claim(offer, claimed_at=at(11, 59))

    await scheduler.promote_ready(at(12, 0))
    assert store.offers[offer.id].status == OfferStatus.CLAIMED

    await scheduler.promote_ready(at(12, 0) + timedelta(seconds=30))
    assert store.offers[offer.id].status == OfferStatus.CLAIMED

    await scheduler.promote_ready(at(12, 1))
    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP


@pytest.mark.asyncio
async def test_grace_period_anchors_on_offer_creation(store, make_offer, make_claim, scheduler):
    """Test a freshly created offer is also protected."""
    offer = make_offer(status=OfferStatus.CLAIMED, created_at=at(12))
    make_claim(offer, claimed_at=at(11))

    await scheduler.promote_ready(at(12, 1))

    assert store.offers[offer.id].status == OfferStatus.CLAIMED


@pytest.mark.asyncio
async def test_promote_skips_claimed_offer_without_active_claim(store, make_offer, scheduler):
    """Test an inconsistent CLAIMED offer is left alone."""
    offer = make_offer(status=OfferStatus.CLAIMED)

    counts = await scheduler.promote_ready(at(12))

    assert counts["skipped"] == 1
    assert store.offers[offer.id].status == OfferStatus.CLAIMED


# Demote to missed


@pytest.mark.asyncio
async def test_demote_inside_late_tolerance_is_noop(store, ready_offer, scheduler):
    """Test no demotion up to the late boundary."""
    offer, claim = ready_offer

    counts = await scheduler.demote_missed(at(15, 15))

    assert counts["transitioned"] == 0
    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP
    assert store.claims[claim.id].status == ClaimStatus.ACTIVE


@pytest.mark.asyncio
async def test_demote_after_late_boundary(store, ready_offer, scheduler, notifications, gateway):
    """Test offer and claim are closed NOT_COMPLETED after the late boundary."""
    offer, claim = ready_offer

    counts = await scheduler.demote_missed(at(15, 20))
    await notifications.drain()

    assert counts["transitioned"] == 1
    assert store.offers[offer.id].status == OfferStatus.NOT_COMPLETED
    assert store.claims[claim.id].status == ClaimStatus.NOT_COMPLETED
    assert store.events[-1].event_type == TimelineEventType.DONATION_NOT_COMPLETED
    assert gateway.events_for(DONOR_ID) == [NotificationEventType.PICKUP_MISSED]
    assert gateway.events_for(RECEIVER_ID) == [NotificationEventType.PICKUP_MISSED]


@pytest.mark.asyncio
async def test_demote_never_applies_without_schedule(store, make_offer, make_claim, scheduler):
    """Test a READY offer without a window is never demoted."""
    offer = make_offer(status=OfferStatus.READY_FOR_PICKUP, otp_code="246810")
    make_claim(offer, claimed_at=at(10))

    await scheduler.demote_missed(at(23, 59))

    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP


@pytest.mark.asyncio
async def test_demote_ready_offer_without_active_claim(store, make_offer, scheduler):
    """Test an inconsistent READY offer without a claim is closed."""
    offer = make_offer(status=OfferStatus.READY_FOR_PICKUP, otp_code="246810")

    counts = await scheduler.demote_missed(at(12))

    assert counts["transitioned"] == 1
    assert store.offers[offer.id].status == OfferStatus.NOT_COMPLETED


# Expire stale


@pytest.mark.asyncio
async def test_expire_available_offer(store, make_offer, scheduler, notifications, gateway):
    """Test an unclaimed offer past its expiry date expires."""
    offer = make_offer(expiry_date=TODAY - timedelta(days=1))

    counts = await scheduler.expire_stale(at(9))
    await notifications.drain()

    assert counts["transitioned"] == 1
    assert store.offers[offer.id].status == OfferStatus.EXPIRED
    assert store.events[-1].event_type == TimelineEventType.DONATION_EXPIRED
    assert gateway.events_for(DONOR_ID) == [NotificationEventType.DONATION_EXPIRED]


@pytest.mark.asyncio
async def test_expire_claimed_offer_closes_claim(store, make_offer, make_claim, scheduler):
    """Test a claimed offer past its expiry date expires and its claim is closed."""
    offer = make_offer(status=OfferStatus.CLAIMED, expiry_date=TODAY - timedelta(days=1))
    claim = make_claim(offer)

    await scheduler.expire_stale(at(9))

    assert store.offers[offer.id].status == OfferStatus.EXPIRED
    assert store.claims[claim.id].status == ClaimStatus.NOT_COMPLETED


@pytest.mark.asyncio
async def test_expire_is_strictly_after_expiry_date(store, make_offer, scheduler):
    """Test an offer expiring today is still valid today."""
    offer = make_offer(expiry_date=TODAY)

    counts = await scheduler.expire_stale(at(23, 59))

    assert counts["transitioned"] == 0
    assert store.offers[offer.id].status == OfferStatus.AVAILABLE


@pytest.mark.asyncio
async def test_expire_ignores_ready_offers(store, make_offer, make_claim, scheduler):
    """Test READY_FOR_PICKUP offers are not expired."""
    offer = make_offer(
        status=OfferStatus.READY_FOR_PICKUP,
        expiry_date=TODAY - timedelta(days=1),
        otp_code="246810",
    )
    make_claim(offer)

    await scheduler.expire_stale(at(9))

    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP


# Sweep properties


@pytest.mark.asyncio
async def test_sweeps_are_idempotent(store, claimed_offer, make_offer, scheduler):
    """Test a second immediate run makes no further transitions."""
    make_offer(expiry_date=TODAY - timedelta(days=1))
    now = at(13, 50)

    first = await scheduler.run_once(now)
    events_after_first = len(store.events)
    second = await scheduler.run_once(now)

    assert first["promote_ready"]["transitioned"] == 1
    assert first["expire_stale"]["transitioned"] == 1
    assert all(counts["transitioned"] == 0 for counts in second.values())
    assert len(store.events) == events_after_first


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "terminal", [OfferStatus.COMPLETED, OfferStatus.NOT_COMPLETED, OfferStatus.EXPIRED]
)
async def test_terminal_offers_never_change(store, make_offer, scheduler, terminal):
    """Test no sweep moves a terminal offer, however often it runs."""
    offer = make_offer(
        status=terminal,
        default_window=window("14:00", "15:00"),
        expiry_date=TODAY - timedelta(days=1),
    )

    for hour in (0, 13, 14, 15, 16, 23):
        await scheduler.run_once(at(hour, 59))

    assert store.offers[offer.id].status == terminal
    assert store.events == []


@pytest.mark.asyncio
async def test_failure_on_one_offer_does_not_stop_sweep(store, make_offer, scheduler):
    """Test a per-offer failure is counted and the sweep continues."""
    broken = make_offer(expiry_date=TODAY - timedelta(days=1), created_at=at(7))
    healthy = make_offer(expiry_date=TODAY - timedelta(days=1), created_at=at(8))
    original_update = InMemoryOfferRepository.update

    async def flaky_update(self, entity):
        if entity.id == broken.id:
            raise RuntimeError("disk full")
        return await original_update(self, entity)

    with patch.object(InMemoryOfferRepository, "update", flaky_update):
        counts = await scheduler.expire_stale(at(9))

    assert counts == {"transitioned": 1, "skipped": 0, "failed": 1}
    assert store.offers[broken.id].status == OfferStatus.AVAILABLE
    assert store.offers[healthy.id].status == OfferStatus.EXPIRED


@pytest.mark.asyncio
async def test_sweep_skipped_when_lock_held(
    store, make_offer, state_machine, claim_coordinator, tolerance, notifications, mock_redis_locks
):
    """Test a sweep held by another worker does nothing."""
    offer = make_offer(expiry_date=TODAY - timedelta(days=1))
    mock_redis_locks.acquire_sweep_lock.return_value.__aenter__ = AsyncMock(return_value=False)
    scheduler = LifecycleScheduler(
        store.unit_of_work,
        state_machine,
        claim_coordinator,
        tolerance,
        notifications,
        redis_locks=mock_redis_locks,
    )

    counts = await scheduler.expire_stale(at(9))

    assert counts == {"transitioned": 0, "skipped": 0, "failed": 0}
    assert store.offers[offer.id].status == OfferStatus.AVAILABLE
    mock_redis_locks.acquire_sweep_lock.assert_called_once_with("expire_stale", ttl_seconds=3600)


@pytest.mark.asyncio
async def test_run_once_without_auto_expiry(
    store, make_offer, state_machine, claim_coordinator, tolerance, notifications
):
    """Test disabling auto-expiry removes the expire sweep."""
    offer = make_offer(expiry_date=TODAY - timedelta(days=1))
    scheduler = LifecycleScheduler(
        store.unit_of_work,
        state_machine,
        claim_coordinator,
        tolerance,
        notifications,
        settings=SchedulerSettings(enable_auto_expiry=False),
    )

    results = await scheduler.run_once(at(9))

    assert "expire_stale" not in results
    assert store.offers[offer.id].status == OfferStatus.AVAILABLE


@pytest.mark.asyncio
async def test_start_and_stop_periodic_sweeps(
    store, make_offer, make_claim, state_machine, claim_coordinator, tolerance, notifications
):
    """Test the periodic tasks run sweeps until stopped."""
    ten_minutes_ago = datetime.utcnow() - timedelta(minutes=10)
    offer = make_offer(
        status=OfferStatus.CLAIMED,
        created_at=ten_minutes_ago,
        expiry_date=ten_minutes_ago.date() + timedelta(days=2),
    )
    make_claim(offer, claimed_at=ten_minutes_ago)
    scheduler = LifecycleScheduler(
        store.unit_of_work,
        state_machine,
        claim_coordinator,
        tolerance,
        notifications,
        settings=SchedulerSettings(
            promote_interval_seconds=0.01,
            demote_interval_seconds=0.01,
            expire_interval_seconds=0.01,
        ),
    )

    await scheduler.start()
    assert scheduler.is_running is True
    await asyncio.sleep(0.1)
    await scheduler.stop()
    await notifications.drain()

    assert scheduler.is_running is False
    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP


# End-to-end scenarios


@pytest.mark.asyncio
async def test_claim_promote_and_miss_pickup(store, make_offer, claim_coordinator, scheduler):
    """Test P1: claimed at 10:00, ready at 13:46, missed at 15:20."""
    offer = make_offer(default_window=window("14:00", "15:00"))

    claimed = await claim_coordinator.claim(offer.id, RECEIVER_ID, now=at(10))
    assert claimed.success is True
    assert store.offers[offer.id].status == OfferStatus.CLAIMED

    await scheduler.promote_ready(at(13, 46))
    ready = store.offers[offer.id]
    assert ready.status == OfferStatus.READY_FOR_PICKUP
    assert ready.otp_code is not None and ready.otp_code.isdigit() and len(ready.otp_code) == 6

    await scheduler.demote_missed(at(15, 20))
    assert store.offers[offer.id].status == OfferStatus.NOT_COMPLETED
    assert store.claims[claimed.claim.id].status == ClaimStatus.NOT_COMPLETED
    assert store.offers[offer.id].otp_code == ready.otp_code


@pytest.mark.asyncio
async def test_expired_offer_recorded_on_timeline(store, make_offer, scheduler):
    """Test P2: an offer that expired yesterday becomes EXPIRED with a timeline entry."""
    offer = make_offer(expiry_date=TODAY - timedelta(days=1))

    await scheduler.expire_stale(at(12))

    assert store.offers[offer.id].status == OfferStatus.EXPIRED
    events = [e for e in store.events if e.offer_id == offer.id]
    assert [e.event_type for e in events] == [TimelineEventType.DONATION_EXPIRED]
    assert events[0].actor == "system"
