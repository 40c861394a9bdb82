"""Pickup tolerance validation.

Decides whether an action tied to a pickup window (promotion to
ready-for-pickup, pickup confirmation, missed-pickup demotion) is allowed
at a given instant, allowing configurable early and late margins around
the scheduled window.

The evaluation is pure: callers pass ``now`` explicitly.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from donation_lifecycle.models.offer import PickupWindow


class ToleranceReason(str, Enum):
    """Reason codes for a tolerance decision."""

    NO_SCHEDULE = "NO_SCHEDULE"
    TOO_EARLY = "TOO_EARLY"
    TOO_LATE = "TOO_LATE"
    EARLY_TOLERANCE = "EARLY_TOLERANCE"
    LATE_TOLERANCE = "LATE_TOLERANCE"
    WITHIN_WINDOW = "WITHIN_WINDOW"


@dataclass(frozen=True)
class ToleranceDecision:
    """Outcome of evaluating ``now`` against a pickup window."""

    allowed: bool
    reason: ToleranceReason
    message: str
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    early_boundary: Optional[datetime] = None
    late_boundary: Optional[datetime] = None
    # Whole minutes until the early boundary (TOO_EARLY), until the
    # scheduled start (EARLY_TOLERANCE) or since the relevant end
    # (LATE_TOLERANCE, TOO_LATE).
    minutes: int = 0


def _whole_minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def _hhmm(value: datetime) -> str:
    return value.strftime("%H:%M")


def evaluate(
    now: datetime,
    window: Optional[PickupWindow],
    early_tolerance_minutes: int,
    late_tolerance_minutes: int,
) -> ToleranceDecision:
    """
    Evaluate an instant against a pickup window with tolerance margins.

    Args:
        now: Instant to evaluate (same clock as the window, naive UTC)
        window: Scheduled pickup window, or None when no schedule is known
        early_tolerance_minutes: Minutes before the start still accepted
        late_tolerance_minutes: Minutes after the end still accepted

    Returns:
        ToleranceDecision with allowed flag, reason code and user message

    Raises:
        ValueError: If a tolerance is negative
    """
    if early_tolerance_minutes < 0 or late_tolerance_minutes < 0:
        raise ValueError("Tolerance minutes must be non-negative")

    if window is None:
        return ToleranceDecision(
            allowed=True,
            reason=ToleranceReason.NO_SCHEDULE,
            message="No scheduled pickup time set.",
        )

    scheduled_start = window.scheduled_start()
    scheduled_end = window.scheduled_end()
    early_boundary = scheduled_start - timedelta(minutes=early_tolerance_minutes)
    late_boundary = scheduled_end + timedelta(minutes=late_tolerance_minutes)

    bounds = dict(
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        early_boundary=early_boundary,
        late_boundary=late_boundary,
    )

    if now < early_boundary:
        minutes = _whole_minutes(early_boundary - now)
        return ToleranceDecision(
            allowed=False,
            reason=ToleranceReason.TOO_EARLY,
            message=(
                f"Pickup not yet allowed. Please wait until {_hhmm(early_boundary)} "
                f"(in {minutes} minutes). The early tolerance window starts "
                f"{early_tolerance_minutes} minutes before the scheduled pickup "
                f"time of {_hhmm(scheduled_start)}."
            ),
            minutes=minutes,
            **bounds,
        )

    if now > late_boundary:
        minutes = _whole_minutes(now - late_boundary)
        return ToleranceDecision(
            allowed=False,
            reason=ToleranceReason.TOO_LATE,
            message=(
                f"Pickup window has expired. The late tolerance window ended at "
                f"{_hhmm(late_boundary)} ({late_tolerance_minutes} minutes after the "
                f"scheduled end time of {_hhmm(scheduled_end)}), {minutes} minutes ago."
            ),
            minutes=minutes,
            **bounds,
        )

    if now < scheduled_start:
        minutes = _whole_minutes(scheduled_start - now)
        return ToleranceDecision(
            allowed=True,
            reason=ToleranceReason.EARLY_TOLERANCE,
            message=(
                f"Within early tolerance ({minutes} minutes before the scheduled "
                f"start time of {_hhmm(scheduled_start)})."
            ),
            minutes=minutes,
            **bounds,
        )

    if now > scheduled_end:
        minutes = _whole_minutes(now - scheduled_end)
        return ToleranceDecision(
            allowed=True,
            reason=ToleranceReason.LATE_TOLERANCE,
            message=(
                f"Within late tolerance ({minutes} minutes after the scheduled "
                f"end time of {_hhmm(scheduled_end)})."
            ),
            minutes=minutes,
            **bounds,
        )

    return ToleranceDecision(
        allowed=True,
        reason=ToleranceReason.WITHIN_WINDOW,
        message="Within the scheduled pickup window.",
        **bounds,
    )


class ToleranceValidator:
    """Binds configured tolerance margins to :func:`evaluate`."""

    def __init__(self, early_minutes: int = 15, late_minutes: int = 15):
        if early_minutes < 0 or late_minutes < 0:
            raise ValueError("Tolerance minutes must be non-negative")
        self.early_minutes = early_minutes
        self.late_minutes = late_minutes

    def evaluate(
        self, now: datetime, window: Optional[PickupWindow]
    ) -> ToleranceDecision:
        return evaluate(now, window, self.early_minutes, self.late_minutes)
