import os
import tempfile
from datetime import date, datetime, time
from decimal import Decimal

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="facility-booking-tests-")
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL") or f"sqlite:///{os.path.join(_DB_DIR, 'bookings.db')}"
os.environ["BOOKING_API_KEY"] = "test-booking-key"
os.environ["ADMIN_API_KEY"] = "test-admin-key"

from booking.models import ALL_WEEKDAYS_MASK, Base, Building, Facility, FacilityBooking  # noqa: E402

# 2030-01-07 is a Monday.
MONDAY = date(2030, 1, 7)
SATURDAY = date(2030, 1, 12)
NOW = datetime(2030, 1, 1, 8, 0)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def facility_factory():
    def make(**overrides) -> Facility:
        fields = dict(
            id="fac-1",
            building_id="b1",
            name="Gym",
            facility_type="gym",
            capacity=None,
            is_bookable=True,
            is_active=True,
            requires_approval=False,
            max_booking_hours=None,
            max_advance_days=None,
            min_advance_hours=None,
            available_from=time(9, 0),
            available_to=time(18, 0),
            available_days=ALL_WEEKDAYS_MASK,
            hourly_fee=None,
            deposit_amount=None,
        )
        fields.update(overrides)
        return Facility(**fields)

    return make


@pytest.fixture
def booking_factory():
    counter = {"n": 0}

    def make(start_time: datetime, end_time: datetime, **overrides) -> FacilityBooking:
        counter["n"] += 1
        fields = dict(
            id=f"bk-{counter['n']}",
            facility_id="fac-1",
            requester_id="user-1",
            start_time=start_time,
            end_time=end_time,
            status="approved",
            total_fee=Decimal("0"),
            deposit_amount=Decimal("0"),
            checked_in_at=None,
        )
        fields.update(overrides)
        return FacilityBooking(**fields)

    return make


@pytest.fixture
def fresh_db():
    from db.session import engine, init_db

    Base.metadata.drop_all(bind=engine)
    init_db()
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_facility(fresh_db):
    """Persist a building and a bookable gym, returning a factory for more facilities."""
    from db.session import SessionLocal

    with SessionLocal() as db:
        with db.begin():
            db.add(Building(id="b1", name="Test Building", timezone="UTC"))

    def seed(**overrides) -> str:
        fields = dict(
            id="fac-1",
            building_id="b1",
            name="Gym",
            facility_type="gym",
            is_bookable=True,
            is_active=True,
            requires_approval=False,
            available_from=time(9, 0),
            available_to=time(18, 0),
            available_days=ALL_WEEKDAYS_MASK,
            hourly_fee=Decimal("25.00"),
        )
        fields.update(overrides)
        with SessionLocal() as db:
            with db.begin():
                db.add(Facility(**fields))
        return fields["id"]

    return seed
