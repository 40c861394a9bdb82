"""Unit tests for pickup confirmation by verification code."""

from uuid import uuid4

import pytest

from donation_lifecycle.models.claim import ClaimStatus
from donation_lifecycle.models.offer import OfferStatus
from donation_lifecycle.models.timeline import TimelineEventType
from donation_lifecycle.services.notifications import NotificationEventType
from donation_lifecycle.services.pickup_confirmation import PickupError
from donation_lifecycle.services.tolerance import ToleranceReason
from tests.helpers import RECEIVER_ID, at, window

CODE = "482913"


@pytest.fixture
def ready_offer(make_offer, make_claim):
    """READY_FOR_PICKUP offer with a 14:00-15:00 window and an ACTIVE claim."""
    offer = make_offer(
        status=OfferStatus.READY_FOR_PICKUP,
        default_window=window("14:00", "15:00"),
        otp_code=CODE,
    )
    claim = make_claim(offer)
    return offer, claim


@pytest.mark.asyncio
async def test_confirm_pickup_success(store, ready_offer, pickup_service, notifications, gateway):
    """Test a correct code inside the window completes offer and claim."""
    offer, claim = ready_offer

    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(14, 30))
    await notifications.drain()

    assert result.success is True
    assert result.decision.reason == ToleranceReason.WITHIN_WINDOW
    assert store.offers[offer.id].status == OfferStatus.COMPLETED
    assert store.claims[claim.id].status == ClaimStatus.COMPLETED
    assert store.events[-1].event_type == TimelineEventType.PICKUP_CONFIRMED
    assert gateway.events_for(RECEIVER_ID) == [NotificationEventType.PICKUP_COMPLETED]


@pytest.mark.asyncio
async def test_confirm_pickup_within_late_tolerance(store, ready_offer, pickup_service):
    """Test confirmation is still accepted inside the late tolerance."""
    offer, _ = ready_offer

    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(15, 10))

    assert result.success is True
    assert result.decision.reason == ToleranceReason.LATE_TOLERANCE


@pytest.mark.asyncio
async def test_confirm_pickup_wrong_code(store, ready_offer, pickup_service):
    """Test a wrong code is rejected and recorded as a hidden event."""
    offer, claim = ready_offer

    result = await pickup_service.confirm_pickup(offer.id, "000000", now=at(14, 30))

    assert result.success is False
    assert result.error == PickupError.INVALID_CODE
    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP
    assert store.claims[claim.id].status == ClaimStatus.ACTIVE

    async with store.unit_of_work() as uow:
        visible = await uow.timeline.list_for_offer(offer.id)
        everything = await uow.timeline.list_for_offer(offer.id, include_hidden=True)

    assert TimelineEventType.PICKUP_CODE_INVALID not in [e.event_type for e in visible]
    assert [e.event_type for e in everything] == [TimelineEventType.PICKUP_CODE_INVALID]
    assert "000000" not in (everything[0].details or "")


@pytest.mark.asyncio
async def test_wrong_code_can_be_retried(store, ready_offer, pickup_service):
    """Test a failed attempt does not lock the offer."""
    offer, _ = ready_offer

    await pickup_service.confirm_pickup(offer.id, "111111", now=at(14, 30))
    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(14, 31))

    assert result.success is True


@pytest.mark.asyncio
async def test_confirm_pickup_strips_whitespace(ready_offer, pickup_service):
    """Test surrounding whitespace in the submitted code is ignored."""
    offer, _ = ready_offer

    result = await pickup_service.confirm_pickup(offer.id, f"  {CODE}\n", now=at(14, 30))

    assert result.success is True


@pytest.mark.asyncio
async def test_confirm_pickup_too_early(store, ready_offer, pickup_service):
    """Test a correct code before the early boundary is refused with the boundary time."""
    offer, _ = ready_offer

    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(13, 30))

    assert result.success is False
    assert result.error == PickupError.TOO_EARLY
    assert "13:45" in result.message
    assert result.decision.minutes == 15
    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP
    assert store.events[-1].event_type == TimelineEventType.PICKUP_OUTSIDE_WINDOW


@pytest.mark.asyncio
async def test_confirm_pickup_too_late(store, ready_offer, pickup_service):
    """Test a correct code after the late boundary is refused."""
    offer, _ = ready_offer

    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(15, 30))

    assert result.error == PickupError.TOO_LATE
    assert "15:15" in result.message
    assert store.offers[offer.id].status == OfferStatus.READY_FOR_PICKUP


@pytest.mark.asyncio
async def test_confirm_pickup_without_schedule_always_allowed(store, make_offer, make_claim, pickup_service):
    """Test an offer with no known window can be confirmed at any time."""
    offer = make_offer(status=OfferStatus.READY_FOR_PICKUP, otp_code=CODE)
    make_claim(offer)

    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(3))

    assert result.success is True
    assert result.decision.reason == ToleranceReason.NO_SCHEDULE


@pytest.mark.asyncio
async def test_confirm_pickup_not_ready(make_offer, make_claim, pickup_service):
    """Test a CLAIMED offer cannot be confirmed yet."""
    offer = make_offer(status=OfferStatus.CLAIMED)
    make_claim(offer)

    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(14, 30))

    assert result.error == PickupError.NOT_READY


@pytest.mark.asyncio
async def test_repeated_confirmation_is_not_ready(store, ready_offer, pickup_service):
    """Test confirming an already completed offer changes nothing."""
    offer, _ = ready_offer
    await pickup_service.confirm_pickup(offer.id, CODE, now=at(14, 30))
    events_before = len(store.events)

    result = await pickup_service.confirm_pickup(offer.id, CODE, now=at(14, 35))

    assert result.error == PickupError.NOT_READY
    assert store.offers[offer.id].status == OfferStatus.COMPLETED
    assert len(store.events) == events_before


@pytest.mark.asyncio
async def test_confirm_pickup_offer_not_found(pickup_service):
    """Test confirming an unknown offer."""
    result = await pickup_service.confirm_pickup(uuid4(), CODE, now=at(14, 30))

    assert result.error == PickupError.OFFER_NOT_FOUND
