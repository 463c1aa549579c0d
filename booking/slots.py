"""Fixed-width slot generation for a facility's day."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Iterable

from booking.availability import ConflictDetector
from booking.models import Facility, FacilityBooking
from booking.rules import Weekday, allowed_weekdays

if TYPE_CHECKING:
    from booking.repository import ActiveBookingSource

DEFAULT_GRANULARITY_MINUTES = 30


@dataclass(frozen=True)
class Slot:
    facility_id: str
    start_time: datetime
    end_time: datetime
    is_available: bool


def split_into_slots(*, start_time: datetime, end_time: datetime, slot_length_minutes: int) -> list[tuple[datetime, datetime]]:
    """Cut ``[start_time, end_time)`` into whole slots; a trailing partial slot is dropped."""
    if slot_length_minutes < 1:
        raise ValueError("slot_length_minutes must be positive.")
    slots: list[tuple[datetime, datetime]] = []
    cursor = start_time
    slot_delta = timedelta(minutes=slot_length_minutes)
    while cursor + slot_delta <= end_time:
        next_cursor = cursor + slot_delta
        slots.append((cursor, next_cursor))
        cursor = next_cursor
    return slots


def day_window(facility: Facility, day: date) -> tuple[datetime, datetime]:
    """Wall-clock bounds of the facility's bookable hours on ``day``."""
    opens = datetime.combine(day, facility.available_from or time.min)
    if facility.available_to is not None:
        closes = datetime.combine(day, facility.available_to)
    else:
        closes = datetime.combine(day + timedelta(days=1), time.min)
    return opens, closes


class SlotCalculator:
    @staticmethod
    def compute_slots(
        facility: Facility,
        day: date,
        existing_bookings: Iterable[FacilityBooking],
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    ) -> list[Slot]:
        bookings = list(existing_bookings)
        open_day = Weekday.for_date(day) in allowed_weekdays(facility)
        opens, closes = day_window(facility, day)

        slots: list[Slot] = []
        for slot_start, slot_end in split_into_slots(
            start_time=opens,
            end_time=closes,
            slot_length_minutes=granularity_minutes,
        ):
            candidate = Slot(facility_id=facility.id, start_time=slot_start, end_time=slot_end, is_available=False)
            is_available = open_day and not ConflictDetector.conflicts(candidate, bookings)
            slots.append(
                Slot(
                    facility_id=facility.id,
                    start_time=slot_start,
                    end_time=slot_end,
                    is_available=is_available,
                )
            )
        return slots

    @classmethod
    def slots_for_day(
        cls,
        source: ActiveBookingSource,
        facility: Facility,
        day: date,
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    ) -> list[Slot]:
        """Fetch the day's active bookings from ``source`` and compute slots."""
        opens, closes = day_window(facility, day)
        existing = source.find_active_bookings(facility.id, opens, closes)
        return cls.compute_slots(facility, day, existing, granularity_minutes)
