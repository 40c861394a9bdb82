"""Candidate pickup slot validation.

Called at offer creation to reject invalid or overlapping slots before
any offer exists.
"""

from itertools import combinations
from typing import Sequence

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.offer import PickupWindow

logger = get_logger(__name__)

MAX_SLOTS_PER_OFFER = 20


class ValidationResult:
    """Result of slot validation."""

    def __init__(self):
        self.errors: list[str] = []

    @property
    def is_valid(self) -> bool:
        """Check if validation passed."""
        return len(self.errors) == 0

    def add_error(self, error: str) -> None:
        """Add validation error."""
        self.errors.append(error)


def _describe(slot: PickupWindow) -> str:
    return (
        f"{slot.pickup_date.isoformat()} "
        f"{slot.start_time.strftime('%H:%M')}-{slot.end_time.strftime('%H:%M')}"
    )


class PickupSlotValidator:
    """Validates a donor's candidate pickup slots."""

    def validate(self, candidate_slots: Sequence[PickupWindow]) -> ValidationResult:
        """
        Validate candidate slots.

        Each slot must have a non-zero duration (a slot ending before it
        starts runs past midnight), and no two slots may overlap.

        Args:
            candidate_slots: Ordered slots proposed by the donor

        Returns:
            ValidationResult with errors if any
        """
        result = ValidationResult()

        if len(candidate_slots) > MAX_SLOTS_PER_OFFER:
            result.add_error(f"Maximum {MAX_SLOTS_PER_OFFER} pickup slots allowed")

        for index, slot in enumerate(candidate_slots, start=1):
            if slot.start_time == slot.end_time:
                result.add_error(f"Slot {index}: end time must follow start time")

        for (i, first), (j, second) in combinations(enumerate(candidate_slots, start=1), 2):
            if first.start_time == first.end_time or second.start_time == second.end_time:
                continue
            overlaps = (
                first.scheduled_start() < second.scheduled_end()
                and second.scheduled_start() < first.scheduled_end()
            )
            if overlaps:
                result.add_error(
                    f"Slot {i} ({_describe(first)}) overlaps Slot {j} ({_describe(second)})"
                )

        if not result.is_valid:
            logger.info("pickup_slots_rejected", errors=result.errors)

        return result
