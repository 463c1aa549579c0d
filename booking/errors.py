"""Violation codes and exceptions raised by booking operations."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ViolationCode(str, Enum):
    INVALID_TIME_RANGE = "InvalidTimeRange"
    OUTSIDE_AVAILABILITY_WINDOW = "OutsideAvailabilityWindow"
    EXCEEDS_MAX_DURATION = "ExceedsMaxDuration"
    EXCEEDS_CAPACITY = "ExceedsCapacity"
    TOO_SOON_TO_BOOK = "TooSoonToBook"
    TOO_FAR_IN_ADVANCE = "TooFarInAdvance"
    SLOT_CONFLICT = "SlotConflict"
    INVALID_TRANSITION = "InvalidTransition"
    FACILITY_NOT_BOOKABLE = "FacilityNotBookable"


class BookingError(Exception):
    """Base class for expected, user-facing booking failures."""

    code: ViolationCode
    retryable = False

    def __init__(self, reason: str, **context: Any) -> None:
        super().__init__(reason)
        self.reason = reason
        self.context = context


class SlotConflictError(BookingError):
    """Raised when storage refuses an insert because the interval is taken.

    This is the commit-time variant of ``SlotConflict``: another request won
    the race after our snapshot read. Callers should re-fetch slots and retry.
    """

    code = ViolationCode.SLOT_CONFLICT
    retryable = True


class InvalidTransitionError(BookingError):
    code = ViolationCode.INVALID_TRANSITION

    def __init__(self, current: str, action: str, reason: str | None = None, **context: Any) -> None:
        super().__init__(
            reason or f"Invalid booking transition: {action} from {current}",
            current_status=current,
            action=action,
            **context,
        )
        self.current = current
        self.action = action
