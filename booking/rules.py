"""Rule evaluation logic for facility bookings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import IntFlag
from typing import Any, Iterable

from booking.errors import ViolationCode
from booking.models import ALL_WEEKDAYS_MASK, Facility

FULL_DAY = timedelta(days=1)


class Weekday(IntFlag):
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 4
    THURSDAY = 8
    FRIDAY = 16
    SATURDAY = 32
    SUNDAY = 64

    @classmethod
    def for_date(cls, day: date) -> "Weekday":
        return cls(1 << day.weekday())

    @classmethod
    def from_iso_days(cls, days: Iterable[int]) -> "Weekday":
        """Build a set from ISO weekday numbers (Monday=1 ... Sunday=7)."""
        result = cls(0)
        for day in days:
            if not 1 <= day <= 7:
                raise ValueError(f"Weekday must be between 1 and 7, got {day}.")
            result |= cls(1 << (day - 1))
        return result

    def iso_days(self) -> list[int]:
        return [index + 1 for index in range(7) if self.value & (1 << index)]


ALL_WEEKDAYS = Weekday(ALL_WEEKDAYS_MASK)


def allowed_weekdays(facility: Facility) -> Weekday:
    mask = facility.available_days
    return Weekday(ALL_WEEKDAYS_MASK if mask is None else mask & ALL_WEEKDAYS_MASK)


@dataclass
class RuleCheckResult:
    allowed: bool
    code: ViolationCode | None = None
    reason: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls) -> "RuleCheckResult":
        return cls(allowed=True)

    @classmethod
    def violation(cls, code: ViolationCode, reason: str, **context: Any) -> "RuleCheckResult":
        return cls(allowed=False, code=code, reason=reason, context=context)


def _offset_from_midnight(moment: datetime, day: date) -> timedelta:
    return moment - datetime.combine(day, time.min)


def _time_offset(value: time) -> timedelta:
    return timedelta(hours=value.hour, minutes=value.minute, seconds=value.second)


def _fmt(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


class FacilityAvailabilityPolicy:
    """Fail-fast evaluation of a facility's declared booking rules.

    Checks run in a fixed order and the first violation wins:
    time range, availability window, duration, capacity, minimum notice,
    advance window. ``now`` must be on the same wall clock as the booking.
    """

    @classmethod
    def check(
        cls,
        facility: Facility,
        start_time: datetime,
        end_time: datetime,
        attendees_count: int | None = None,
        *,
        now: datetime,
    ) -> RuleCheckResult:
        checks = (
            lambda: cls.check_time_range(start_time, end_time),
            lambda: cls.check_availability_window(start_time, end_time, facility),
            lambda: cls.check_duration(start_time, end_time, facility),
            lambda: cls.check_capacity(attendees_count, facility),
            lambda: cls.check_min_advance(start_time, facility, now),
            lambda: cls.check_max_advance(start_time, facility, now),
        )
        for run in checks:
            result = run()
            if not result.allowed:
                return result
        return RuleCheckResult.ok()

    @staticmethod
    def check_time_range(start_time: datetime, end_time: datetime) -> RuleCheckResult:
        if end_time <= start_time:
            return RuleCheckResult.violation(
                ViolationCode.INVALID_TIME_RANGE,
                "End time must be after start time.",
                start_time=start_time.isoformat(),
                end_time=end_time.isoformat(),
            )
        return RuleCheckResult.ok()

    @staticmethod
    def check_availability_window(start_time: datetime, end_time: datetime, facility: Facility) -> RuleCheckResult:
        allowed = allowed_weekdays(facility)
        if Weekday.for_date(start_time.date()) not in allowed:
            return RuleCheckResult.violation(
                ViolationCode.OUTSIDE_AVAILABILITY_WINDOW,
                "Facility is not available on this day of the week.",
                weekday=start_time.isoweekday(),
                available_days=allowed.iso_days(),
            )

        window_from, window_to = facility.available_from, facility.available_to
        if window_from is None and window_to is None:
            return RuleCheckResult.ok()

        # Offsets are measured from the start date's midnight, so an end time
        # on a later day falls outside any window that closes before 24:00.
        lower = _time_offset(window_from) if window_from is not None else timedelta(0)
        upper = _time_offset(window_to) if window_to is not None else FULL_DAY
        start_offset = _offset_from_midnight(start_time, start_time.date())
        end_offset = _offset_from_midnight(end_time, start_time.date())

        if start_offset < lower or end_offset > upper:
            return RuleCheckResult.violation(
                ViolationCode.OUTSIDE_AVAILABILITY_WINDOW,
                "Requested time is outside available hours "
                f"({_fmt(window_from) or '00:00'} - {_fmt(window_to) or '24:00'}).",
                available_from=_fmt(window_from),
                available_to=_fmt(window_to),
            )
        return RuleCheckResult.ok()

    @staticmethod
    def check_duration(start_time: datetime, end_time: datetime, facility: Facility) -> RuleCheckResult:
        if facility.max_booking_hours is None:
            return RuleCheckResult.ok()
        duration = end_time - start_time
        if duration > timedelta(hours=facility.max_booking_hours):
            return RuleCheckResult.violation(
                ViolationCode.EXCEEDS_MAX_DURATION,
                f"Requested duration exceeds max_booking_hours ({facility.max_booking_hours}).",
                max_booking_hours=facility.max_booking_hours,
                requested_hours=duration.total_seconds() / 3600,
            )
        return RuleCheckResult.ok()

    @staticmethod
    def check_capacity(attendees_count: int | None, facility: Facility) -> RuleCheckResult:
        if facility.capacity is None or attendees_count is None:
            return RuleCheckResult.ok()
        if attendees_count > facility.capacity:
            return RuleCheckResult.violation(
                ViolationCode.EXCEEDS_CAPACITY,
                f"Attendees count exceeds facility capacity ({facility.capacity}).",
                capacity=facility.capacity,
                attendees_count=attendees_count,
            )
        return RuleCheckResult.ok()

    @staticmethod
    def check_min_advance(start_time: datetime, facility: Facility, now: datetime) -> RuleCheckResult:
        # Without a declared notice period a booking still cannot start in the past.
        min_hours = facility.min_advance_hours or 0
        earliest_allowed = now + timedelta(hours=min_hours)
        if start_time < earliest_allowed:
            reason = (
                "Requested time is in the past."
                if start_time < now
                else f"Bookings require at least {min_hours} hours notice."
            )
            return RuleCheckResult.violation(
                ViolationCode.TOO_SOON_TO_BOOK,
                reason,
                min_advance_hours=facility.min_advance_hours,
                earliest_start=earliest_allowed.isoformat(),
            )
        return RuleCheckResult.ok()

    @staticmethod
    def check_max_advance(start_time: datetime, facility: Facility, now: datetime) -> RuleCheckResult:
        if facility.max_advance_days is None:
            return RuleCheckResult.ok()
        latest_allowed = now + timedelta(days=facility.max_advance_days)
        if start_time > latest_allowed:
            return RuleCheckResult.violation(
                ViolationCode.TOO_FAR_IN_ADVANCE,
                "Requested time exceeds advance booking window "
                f"({facility.max_advance_days} days).",
                max_advance_days=facility.max_advance_days,
                latest_start=latest_allowed.isoformat(),
            )
        return RuleCheckResult.ok()
