from datetime import date, time, timedelta

import pytest

from booking.errors import ViolationCode
from booking.rules import ALL_WEEKDAYS, FacilityAvailabilityPolicy, Weekday, allowed_weekdays
from conftest import MONDAY, NOW, SATURDAY, at


def check(facility, start, end, attendees=None, now=NOW):
    return FacilityAvailabilityPolicy.check(facility, start, end, attendees, now=now)


class TestWeekday:
    def test_bit_per_day_monday_first(self):
        assert Weekday.for_date(MONDAY) == Weekday.MONDAY
        assert Weekday.for_date(SATURDAY) == Weekday.SATURDAY
        assert Weekday.SUNDAY.value == 64

    def test_iso_round_trip(self):
        days = Weekday.from_iso_days([1, 3, 7])
        assert days == Weekday.MONDAY | Weekday.WEDNESDAY | Weekday.SUNDAY
        assert days.iso_days() == [1, 3, 7]

    def test_rejects_out_of_range_day(self):
        with pytest.raises(ValueError):
            Weekday.from_iso_days([0])

    def test_all_weekdays_mask(self):
        assert ALL_WEEKDAYS.value == 127
        assert ALL_WEEKDAYS.iso_days() == [1, 2, 3, 4, 5, 6, 7]

    def test_missing_mask_means_every_day(self, facility_factory):
        assert allowed_weekdays(facility_factory(available_days=None)) == ALL_WEEKDAYS


class TestPolicy:
    def test_valid_request_passes(self, facility_factory):
        result = check(facility_factory(), at(MONDAY, 10), at(MONDAY, 11))
        assert result.allowed
        assert result.code is None

    @pytest.mark.parametrize("end_hour", [10, 9])
    def test_end_not_after_start_is_invalid(self, facility_factory, end_hour):
        result = check(facility_factory(), at(MONDAY, 10), at(MONDAY, end_hour))
        assert result.code == ViolationCode.INVALID_TIME_RANGE

    def test_invalid_range_reported_before_window(self, facility_factory):
        facility = facility_factory(available_days=0)
        result = check(facility, at(MONDAY, 12), at(MONDAY, 11))
        assert result.code == ViolationCode.INVALID_TIME_RANGE

    def test_exceeds_max_duration(self, facility_factory):
        facility = facility_factory(max_booking_hours=2)
        result = check(facility, at(MONDAY, 10), at(MONDAY, 13))
        assert result.code == ViolationCode.EXCEEDS_MAX_DURATION
        assert result.context["max_booking_hours"] == 2
        assert result.context["requested_hours"] == 3

    def test_duration_at_limit_is_allowed(self, facility_factory):
        facility = facility_factory(max_booking_hours=2)
        assert check(facility, at(MONDAY, 10), at(MONDAY, 12)).allowed

    def test_empty_day_set_rejects_everything(self, facility_factory):
        facility = facility_factory(available_days=0, available_from=None, available_to=None)
        for offset in range(7):
            day = MONDAY + timedelta(days=offset)
            for hour in (0, 6, 12, 22):
                result = check(facility, at(day, hour), at(day, hour, 30))
                assert result.code == ViolationCode.OUTSIDE_AVAILABILITY_WINDOW

    def test_day_not_in_set(self, facility_factory):
        facility = facility_factory(available_days=Weekday.from_iso_days([1, 2, 3, 4, 5]).value)
        result = check(facility, at(SATURDAY, 10), at(SATURDAY, 11))
        assert result.code == ViolationCode.OUTSIDE_AVAILABILITY_WINDOW
        assert result.context["weekday"] == 6

    def test_window_bounds_are_inclusive(self, facility_factory):
        assert check(facility_factory(), at(MONDAY, 9), at(MONDAY, 18)).allowed

    @pytest.mark.parametrize(
        "start,end",
        [((8, 30), (9, 30)), ((17, 30), (18, 30))],
    )
    def test_endpoint_outside_hours(self, facility_factory, start, end):
        result = check(facility_factory(), at(MONDAY, *start), at(MONDAY, *end))
        assert result.code == ViolationCode.OUTSIDE_AVAILABILITY_WINDOW
        assert result.context == {"available_from": "09:00", "available_to": "18:00"}

    def test_end_on_next_day_is_outside_window(self, facility_factory):
        facility = facility_factory(available_from=time(9, 0), available_to=time(18, 0))
        next_day = MONDAY + timedelta(days=1)
        result = check(facility, at(MONDAY, 17), at(next_day, 10))
        assert result.code == ViolationCode.OUTSIDE_AVAILABILITY_WINDOW

    def test_open_ended_window_allows_midnight_end(self, facility_factory):
        facility = facility_factory(available_from=time(20, 0), available_to=None)
        end = at(MONDAY + timedelta(days=1), 0)
        assert check(facility, at(MONDAY, 22), end).allowed

    def test_no_window_allows_multi_day(self, facility_factory):
        facility = facility_factory(available_from=None, available_to=None)
        assert check(facility, at(MONDAY, 10), at(MONDAY + timedelta(days=2), 10)).allowed

    def test_exceeds_capacity(self, facility_factory):
        facility = facility_factory(capacity=10)
        result = check(facility, at(MONDAY, 10), at(MONDAY, 11), attendees=11)
        assert result.code == ViolationCode.EXCEEDS_CAPACITY
        assert check(facility, at(MONDAY, 10), at(MONDAY, 11), attendees=10).allowed
        assert check(facility, at(MONDAY, 10), at(MONDAY, 11), attendees=None).allowed

    def test_too_soon(self, facility_factory):
        facility = facility_factory(min_advance_hours=24)
        now = at(MONDAY, 8)
        result = check(facility, at(MONDAY, 10), at(MONDAY, 11), now=now)
        assert result.code == ViolationCode.TOO_SOON_TO_BOOK
        later = at(MONDAY, 10) - timedelta(hours=24)
        assert check(facility, at(MONDAY, 10), at(MONDAY, 11), now=later).allowed

    def test_past_start_is_too_soon_without_notice_period(self, facility_factory):
        result = check(facility_factory(), at(MONDAY, 10), at(MONDAY, 11), now=at(MONDAY, 12))
        assert result.code == ViolationCode.TOO_SOON_TO_BOOK
        assert result.reason == "Requested time is in the past."

    def test_too_far_in_advance(self, facility_factory):
        facility = facility_factory(max_advance_days=3)
        result = check(facility, at(MONDAY, 10), at(MONDAY, 11), now=at(date(2030, 1, 1), 8))
        assert result.code == ViolationCode.TOO_FAR_IN_ADVANCE
        assert check(facility, at(MONDAY, 10), at(MONDAY, 11), now=at(date(2030, 1, 5), 8)).allowed

    def test_first_violation_wins(self, facility_factory):
        facility = facility_factory(max_booking_hours=1, capacity=2, min_advance_hours=48)
        result = check(facility, at(MONDAY, 10), at(MONDAY, 12), attendees=5, now=at(MONDAY, 9))
        assert result.code == ViolationCode.EXCEEDS_MAX_DURATION

        result = check(facility, at(MONDAY, 10), at(MONDAY, 11), attendees=5, now=at(MONDAY, 9))
        assert result.code == ViolationCode.EXCEEDS_CAPACITY

        result = check(facility, at(MONDAY, 10), at(MONDAY, 11), attendees=2, now=at(MONDAY, 9))
        assert result.code == ViolationCode.TOO_SOON_TO_BOOK
