"""Pytest configuration and shared fixtures."""

import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from unittest.mock import AsyncMock, MagicMock

from donation_lifecycle.config import SchedulerSettings
from donation_lifecycle.models.claim import Claim, ClaimStatus
from donation_lifecycle.models.offer import Offer, OfferStatus, PickupWindow
from donation_lifecycle.services.claim_coordinator import ClaimCoordinator
from donation_lifecycle.services.notifications import NotificationDispatcher
from donation_lifecycle.services.offer_state_machine import OfferStateMachine
from donation_lifecycle.services.pickup_confirmation import PickupConfirmationService
from donation_lifecycle.services.scheduler import LifecycleScheduler
from donation_lifecycle.services.tolerance import ToleranceValidator
from donation_lifecycle.storage.memory_store import InMemoryStore
from tests.helpers import DONOR_ID, RECEIVER_ID, TODAY, RecordingGateway, at


@pytest.fixture
def store():
    """Empty in-memory storage backend."""
    return InMemoryStore()


@pytest.fixture
def gateway():
    """Recording notification gateway."""
    return RecordingGateway()


@pytest.fixture
def notifications(gateway):
    """Notification dispatcher over the recording gateway."""
    return NotificationDispatcher(gateway)


@pytest.fixture
def state_machine():
    return OfferStateMachine()


@pytest.fixture
def tolerance():
    """Default 15/15 minute tolerance."""
    return ToleranceValidator(early_minutes=15, late_minutes=15)


@pytest.fixture
def claim_coordinator(store, state_machine, notifications):
    return ClaimCoordinator(store.unit_of_work, state_machine, notifications)


@pytest.fixture
def pickup_service(store, state_machine, claim_coordinator, tolerance, notifications):
    return PickupConfirmationService(
        store.unit_of_work, state_machine, claim_coordinator, tolerance, notifications
    )


@pytest.fixture
def scheduler(store, state_machine, claim_coordinator, tolerance, notifications):
    return LifecycleScheduler(
        store.unit_of_work,
        state_machine,
        claim_coordinator,
        tolerance,
        notifications,
        settings=SchedulerSettings(grace_period_minutes=2),
    )


@pytest.fixture
def make_offer(store):
    """Factory seeding an offer straight into the store."""

    def _make(
        status: OfferStatus = OfferStatus.AVAILABLE,
        default_window: Optional[PickupWindow] = None,
        pickup_slots: Optional[list[PickupWindow]] = None,
        expiry_date: date = TODAY + timedelta(days=2),
        created_at: datetime = at(8),
        otp_code: Optional[str] = None,
        donor_id: int = DONOR_ID,
    ) -> Offer:
        offer = Offer(
            donor_id=donor_id,
            title="Vegetable soup",
            quantity=4,
            expiry_date=expiry_date,
            status=status,
            default_pickup_window=default_window,
            pickup_slots=pickup_slots or [],
            otp_code=otp_code,
            created_at=created_at,
            updated_at=created_at,
        )
        store.offers[offer.id] = offer
        return offer

    return _make


@pytest.fixture
def make_claim(store):
    """Factory seeding a claim straight into the store."""

    def _make(
        offer: Offer,
        receiver_id: int = RECEIVER_ID,
        status: ClaimStatus = ClaimStatus.ACTIVE,
        claimed_at: datetime = at(9),
        confirmed_window: Optional[PickupWindow] = None,
    ) -> Claim:
        claim = Claim(
            offer_id=offer.id,
            receiver_id=receiver_id,
            status=status,
            confirmed_pickup_window=confirmed_window,
            claimed_at=claimed_at,
            updated_at=claimed_at,
        )
        store.claims[claim.id] = claim
        return claim

    return _make


@pytest.fixture
def mock_redis_locks():
    """Mock Redis lock helper whose locks are always acquired."""
    helper = MagicMock()
    helper.acquire_offer_lock.return_value.__aenter__ = AsyncMock(return_value=True)
    helper.acquire_offer_lock.return_value.__aexit__ = AsyncMock(return_value=None)
    helper.acquire_sweep_lock.return_value.__aenter__ = AsyncMock(return_value=True)
    helper.acquire_sweep_lock.return_value.__aexit__ = AsyncMock(return_value=None)
    return helper
