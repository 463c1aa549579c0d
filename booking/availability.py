"""Overlap checks between a candidate interval and existing bookings."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import Select, select

from booking.models import FacilityBooking
from booking.schema import ACTIVE_STATUSES


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open ``[start, end)`` intervals overlap iff each starts before the other ends."""
    return start_a < end_b and start_b < end_a


def _status_value(status) -> str:
    return getattr(status, "value", status)


class ConflictDetector:
    """Pure conflict checks against a snapshot of bookings.

    The candidate is anything with ``facility_id``, ``start_time`` and
    ``end_time``. Only bookings on the same facility in an active status
    (pending, approved) can conflict.
    """

    @staticmethod
    def find_conflicts(
        candidate,
        existing_bookings: Iterable[FacilityBooking],
        *,
        exclude_booking_id=None,
    ) -> list[FacilityBooking]:
        conflicts: list[FacilityBooking] = []
        for booking in existing_bookings:
            if exclude_booking_id is not None and str(booking.id) == str(exclude_booking_id):
                continue
            if str(booking.facility_id) != str(candidate.facility_id):
                continue
            if _status_value(booking.status) not in ACTIVE_STATUSES:
                continue
            if intervals_overlap(candidate.start_time, candidate.end_time, booking.start_time, booking.end_time):
                conflicts.append(booking)
        return conflicts

    @classmethod
    def conflicts(
        cls,
        candidate,
        existing_bookings: Iterable[FacilityBooking],
        *,
        exclude_booking_id=None,
    ) -> bool:
        return bool(cls.find_conflicts(candidate, existing_bookings, exclude_booking_id=exclude_booking_id))


def overlap_query(*, facility_id, start_time: datetime, end_time: datetime) -> Select:
    return (
        select(FacilityBooking)
        .where(
            FacilityBooking.facility_id == facility_id,
            FacilityBooking.status.in_(sorted(ACTIVE_STATUSES)),
            FacilityBooking.start_time < end_time,
            FacilityBooking.end_time > start_time,
        )
        .order_by(FacilityBooking.start_time.asc())
    )
