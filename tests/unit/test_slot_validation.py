"""Unit tests for candidate pickup slot validation."""

from datetime import timedelta

from donation_lifecycle.services.slot_validation import (
    MAX_SLOTS_PER_OFFER,
    PickupSlotValidator,
)
from tests.helpers import TODAY, window


def test_valid_non_overlapping_slots():
    """Test back-to-back slots are accepted."""
    result = PickupSlotValidator().validate(
        [window("09:00", "10:00"), window("10:00", "11:00"), window("18:00", "19:00")]
    )

    assert result.is_valid
    assert result.errors == []


def test_empty_slot_list_is_valid():
    """Test an offer may propose no candidate slots."""
    assert PickupSlotValidator().validate([]).is_valid


def test_overlapping_slots_rejected():
    """Test overlapping slots on the same date are rejected."""
    result = PickupSlotValidator().validate(
        [window("09:00", "10:00"), window("09:30", "10:30")]
    )

    assert not result.is_valid
    assert len(result.errors) == 1
    assert "Slot 1" in result.errors[0]
    assert "Slot 2" in result.errors[0]


def test_same_times_on_different_dates_do_not_overlap():
    """Test slots only overlap on the same date."""
    result = PickupSlotValidator().validate(
        [window("09:00", "10:00"), window("09:00", "10:00", day=TODAY + timedelta(days=1))]
    )

    assert result.is_valid


def test_midnight_slot_overlaps_next_morning():
    """Test a slot running past midnight overlaps an early slot on the next day."""
    result = PickupSlotValidator().validate(
        [window("23:00", "01:00"), window("00:30", "02:00", day=TODAY + timedelta(days=1))]
    )

    assert not result.is_valid


def test_too_many_slots_rejected():
    """Test slot count limit."""
    slots = [
        window("10:00", "11:00", day=TODAY + timedelta(days=offset))
        for offset in range(MAX_SLOTS_PER_OFFER + 1)
    ]

    result = PickupSlotValidator().validate(slots)

    assert not result.is_valid
    assert f"Maximum {MAX_SLOTS_PER_OFFER}" in result.errors[0]
