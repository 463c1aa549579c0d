"""Storage access for facilities and their bookings."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from booking.availability import overlap_query
from booking.models import Building, Facility, FacilityBooking
from booking.schema import ACTIVE_STATUSES, TERMINAL_STATUSES, BookingStatus


class ActiveBookingSource(Protocol):
    def find_active_bookings(self, facility_id: str, start_time: datetime, end_time: datetime) -> list[FacilityBooking]:
        ...


def _as_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class BookingRepository:
    """SQLAlchemy-backed repository bound to one session.

    Row locks requested with ``lock=True`` only take effect inside an open
    transaction on a database that supports ``SELECT ... FOR UPDATE``.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_building(self, building_id: str) -> Building | None:
        return self.db.get(Building, building_id) if building_id else None

    def get_facility(self, facility_id: str, *, lock: bool = False) -> Facility | None:
        stmt = select(Facility).where(Facility.id == facility_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.scalar(stmt)

    def list_facilities(self, building_id: str, *, bookable_only: bool = False) -> list[Facility]:
        stmt = select(Facility).where(Facility.building_id == building_id)
        if bookable_only:
            stmt = stmt.where(Facility.is_active.is_(True), Facility.is_bookable.is_(True))
        return list(self.db.scalars(stmt.order_by(func.lower(Facility.name).asc())))

    def delete_facility(self, facility: Facility) -> int:
        """Delete a facility and its bookings; returns the number of bookings removed."""
        result = self.db.execute(delete(FacilityBooking).where(FacilityBooking.facility_id == facility.id))
        self.db.delete(facility)
        self.db.flush()
        return result.rowcount

    def find_active_bookings(
        self,
        facility_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        lock: bool = False,
    ) -> list[FacilityBooking]:
        stmt = overlap_query(facility_id=facility_id, start_time=start_time, end_time=end_time)
        if lock:
            stmt = stmt.with_for_update()
        return list(self.db.scalars(stmt))

    def get_booking(self, booking_id, *, lock: bool = False) -> FacilityBooking | None:
        parsed = _as_uuid(booking_id)
        if parsed is None:
            return None
        stmt = select(FacilityBooking).where(FacilityBooking.id == parsed)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.scalar(stmt)

    def add_booking(self, booking: FacilityBooking) -> FacilityBooking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def find_bookings_by_requester(
        self,
        requester_id: str,
        *,
        active: bool | None = None,
        building_id: str | None = None,
    ) -> list[tuple[FacilityBooking, Facility]]:
        """Bookings of one requester; ``active`` splits upcoming from history."""
        stmt = (
            select(FacilityBooking, Facility)
            .join(Facility, Facility.id == FacilityBooking.facility_id)
            .where(FacilityBooking.requester_id == requester_id)
        )
        if active is True:
            stmt = stmt.where(FacilityBooking.status.in_(sorted(ACTIVE_STATUSES))).order_by(
                FacilityBooking.start_time.asc()
            )
        elif active is False:
            stmt = stmt.where(FacilityBooking.status.in_(sorted(TERMINAL_STATUSES))).order_by(
                FacilityBooking.start_time.desc()
            )
        else:
            stmt = stmt.order_by(FacilityBooking.start_time.desc())
        if building_id:
            stmt = stmt.where(Facility.building_id == building_id)
        return [(booking, facility) for booking, facility in self.db.execute(stmt).all()]

    def find_pending_bookings(self, building_id: str) -> list[tuple[FacilityBooking, Facility]]:
        stmt = (
            select(FacilityBooking, Facility)
            .join(Facility, Facility.id == FacilityBooking.facility_id)
            .where(
                Facility.building_id == building_id,
                FacilityBooking.status == BookingStatus.PENDING.value,
            )
            .order_by(FacilityBooking.created_at.asc(), FacilityBooking.start_time.asc())
        )
        return [(booking, facility) for booking, facility in self.db.execute(stmt).all()]
