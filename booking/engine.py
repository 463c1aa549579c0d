"""Core booking use cases and admin update operations."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking.errors import BookingError, InvalidTransitionError, SlotConflictError, ViolationCode
from booking.fees import to_money
from booking.lifecycle import BookingLifecycle
from booking.models import Facility, FacilityBooking
from booking.repository import BookingRepository
from booking.rules import RuleCheckResult, Weekday
from booking.schema import (
    ACTIVE_STATUSES,
    AdminActionResult,
    BookingRequest,
    BookingResult,
    FacilityUpsertRequest,
    RescheduleRequest,
    SlotItem,
    SlotListResponse,
    TransitionCommand,
)
from booking.slots import SlotCalculator
from booking.validator import BookingValidator
from config import get_settings
from db.session import SessionLocal

logger = logging.getLogger(__name__)

INVALID_REQUEST = "InvalidRequest"
NOT_FOUND = "NotFound"
FORBIDDEN = "Forbidden"
DATABASE_ERROR = "DatabaseError"

# PostgreSQL SQLSTATEs raised when a concurrent writer won the race.
_RACE_SQLSTATES = frozenset({"23P01", "40001", "40P01"})

DEFAULT_LISTING_WINDOW = timedelta(days=30)


def _zone(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def _to_wall_clock(dt: datetime, tz_name: str | None) -> datetime:
    """Express ``dt`` on the facility's local wall clock (naive)."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(_zone(tz_name)).replace(tzinfo=None)


def _facility_tz(repo: BookingRepository, facility: Facility) -> str:
    building = repo.get_building(facility.building_id)
    return building.timezone if building and building.timezone else "UTC"


def _apply_isolation(db: Session) -> None:
    if db.get_bind().dialect.name == "postgresql":
        db.connection(execution_options={"isolation_level": get_settings().booking_isolation_level})


def _is_race_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return sqlstate in _RACE_SQLSTATES


def _failure(code: str, reason: str, **fields: Any) -> dict[str, Any]:
    return BookingResult(success=False, code=code, reason=reason, **fields).model_dump(mode="json")


def _violation(check: RuleCheckResult, facility_id: str) -> dict[str, Any]:
    return _failure(check.code.value, check.reason, context=check.context, facility_id=facility_id)


def _error(exc: BookingError, **fields: Any) -> dict[str, Any]:
    return _failure(exc.code.value, exc.reason, context=exc.context, retryable=exc.retryable, **fields)


def _booking_result(booking: FacilityBooking) -> dict[str, Any]:
    return BookingResult(
        success=True,
        booking_id=str(booking.id),
        facility_id=booking.facility_id,
        status=booking.status,
        start_time=booking.start_time,
        end_time=booking.end_time,
        total_fee=booking.total_fee,
        deposit_amount=booking.deposit_amount,
    ).model_dump(mode="json")


def _unbookable(facility: Facility) -> dict[str, Any] | None:
    if facility.is_active and facility.is_bookable:
        return None
    return _failure(
        ViolationCode.FACILITY_NOT_BOOKABLE.value,
        "Facility is inactive or not open for booking.",
        facility_id=facility.id,
        context={"is_active": facility.is_active, "is_bookable": facility.is_bookable},
    )


def _commit_conflict(exc: DBAPIError, facility_id: str | None) -> dict[str, Any]:
    logger.warning("Booking on facility %s lost a concurrent write: %s", facility_id, exc.orig)
    return _error(
        SlotConflictError(
            "Requested time was taken by a concurrent booking. Refresh availability and retry.",
            facility_id=facility_id,
        ),
        facility_id=facility_id,
    )


def create_booking(payload: dict, *, now: datetime | None = None) -> dict[str, Any]:
    try:
        request = BookingRequest.model_validate(payload)
    except ValidationError as exc:
        return _failure(INVALID_REQUEST, f"Invalid booking payload: {exc}")
    if not request.requester_id:
        return _failure(INVALID_REQUEST, "requester_id is required to create a booking.")

    now = now or datetime.now(timezone.utc)
    with SessionLocal() as db:
        try:
            with db.begin():
                _apply_isolation(db)
                repo = BookingRepository(db)

                facility = repo.get_facility(request.facility_id, lock=True)
                if not facility:
                    return _failure(NOT_FOUND, "Facility not found.", facility_id=request.facility_id)
                refused = _unbookable(facility)
                if refused:
                    return refused

                tz_name = _facility_tz(repo, facility)
                request = request.model_copy(
                    update={
                        "start_time": _to_wall_clock(request.start_time, tz_name),
                        "end_time": _to_wall_clock(request.end_time, tz_name),
                    }
                )
                existing = repo.find_active_bookings(
                    facility.id,
                    request.start_time,
                    request.end_time,
                    lock=True,
                )
                outcome = BookingValidator.validate_and_price(
                    request,
                    facility,
                    existing,
                    _to_wall_clock(now, tz_name),
                )
                if not outcome.allowed:
                    return _violation(outcome.violation, facility.id)

                booking = repo.add_booking(
                    FacilityBooking(
                        facility_id=facility.id,
                        requester_id=request.requester_id,
                        start_time=request.start_time,
                        end_time=request.end_time,
                        purpose=request.purpose,
                        attendees_count=request.attendees_count,
                        status=outcome.draft.initial_status.value,
                        total_fee=to_money(outcome.draft.fee),
                        deposit_amount=to_money(outcome.draft.deposit),
                    )
                )
                result = _booking_result(booking)
            logger.info(
                "Booking %s created on facility %s (%s)",
                result["booking_id"],
                facility.id,
                result["status"],
            )
            return result
        except DBAPIError as exc:
            db.rollback()
            if _is_race_failure(exc):
                return _commit_conflict(exc, request.facility_id)
            logger.exception("Database error while creating booking")
            return _failure(DATABASE_ERROR, "Database error while creating booking.")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while creating booking")
            return _failure(DATABASE_ERROR, "Database error while creating booking.")


def reschedule_booking(payload: dict, *, now: datetime | None = None) -> dict[str, Any]:
    try:
        request = RescheduleRequest.model_validate(payload)
    except ValidationError as exc:
        return _failure(INVALID_REQUEST, f"Invalid reschedule payload: {exc}")

    now = now or datetime.now(timezone.utc)
    with SessionLocal() as db:
        try:
            with db.begin():
                _apply_isolation(db)
                repo = BookingRepository(db)

                booking = repo.get_booking(request.booking_id, lock=True)
                if not booking:
                    return _failure(NOT_FOUND, "Booking not found.", booking_id=request.booking_id)
                if booking.requester_id != request.requester_id:
                    return _failure(FORBIDDEN, "Booking does not belong to this user.", booking_id=request.booking_id)
                if booking.status not in ACTIVE_STATUSES:
                    return _error(
                        InvalidTransitionError(booking.status, "reschedule", "Only pending or approved bookings can be moved."),
                        booking_id=request.booking_id,
                    )

                facility = repo.get_facility(booking.facility_id, lock=True)
                refused = _unbookable(facility)
                if refused:
                    return refused

                tz_name = _facility_tz(repo, facility)
                candidate = BookingRequest(
                    facility_id=facility.id,
                    requester_id=booking.requester_id,
                    start_time=_to_wall_clock(request.start_time, tz_name),
                    end_time=_to_wall_clock(request.end_time, tz_name),
                    purpose=request.purpose if request.purpose is not None else booking.purpose,
                    attendees_count=(
                        request.attendees_count if request.attendees_count is not None else booking.attendees_count
                    ),
                )
                existing = repo.find_active_bookings(
                    facility.id,
                    candidate.start_time,
                    candidate.end_time,
                    lock=True,
                )
                outcome = BookingValidator.validate_and_price(
                    candidate,
                    facility,
                    existing,
                    _to_wall_clock(now, tz_name),
                    exclude_booking_id=booking.id,
                )
                if not outcome.allowed:
                    return _violation(outcome.violation, facility.id)

                booking.start_time = candidate.start_time
                booking.end_time = candidate.end_time
                booking.purpose = candidate.purpose
                booking.attendees_count = candidate.attendees_count
                booking.total_fee = to_money(outcome.draft.fee)
                booking.deposit_amount = to_money(outcome.draft.deposit)
                db.flush()
                result = _booking_result(booking)
            logger.info("Booking %s moved to %s - %s", result["booking_id"], result["start_time"], result["end_time"])
            return result
        except DBAPIError as exc:
            db.rollback()
            if _is_race_failure(exc):
                return _commit_conflict(exc, None)
            logger.exception("Database error while rescheduling booking")
            return _failure(DATABASE_ERROR, "Database error while rescheduling booking.")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while rescheduling booking")
            return _failure(DATABASE_ERROR, "Database error while rescheduling booking.")


def transition_booking(payload: dict, *, now: datetime | None = None) -> dict[str, Any]:
    try:
        command = TransitionCommand.model_validate(payload)
    except ValidationError as exc:
        return _failure(INVALID_REQUEST, f"Invalid transition payload: {exc}")

    now = now or datetime.now(timezone.utc)
    with SessionLocal() as db:
        try:
            with db.begin():
                repo = BookingRepository(db)
                booking = repo.get_booking(command.booking_id, lock=True)
                if not booking:
                    return _failure(NOT_FOUND, "Booking not found.", booking_id=command.booking_id)

                facility = repo.get_facility(booking.facility_id)
                tz_name = _facility_tz(repo, facility) if facility else "UTC"
                try:
                    BookingLifecycle.transition(
                        booking,
                        command,
                        now=_to_wall_clock(now, tz_name),
                        audit_time=now if now.tzinfo else None,
                    )
                except InvalidTransitionError as exc:
                    return _error(exc, booking_id=str(booking.id), status=booking.status)

                db.flush()
                result = _booking_result(booking)
            logger.info("Booking %s: %s by %s", result["booking_id"], command.action.value, command.actor_capability.value)
            return result
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while updating booking status")
            return _failure(DATABASE_ERROR, "Database error while updating booking status.")


def get_facility_slots(
    facility_id: str,
    day: date,
    granularity_minutes: int | None = None,
) -> SlotListResponse | None:
    granularity = granularity_minutes or get_settings().slot_granularity_minutes
    with SessionLocal() as db:
        repo = BookingRepository(db)
        facility = repo.get_facility(facility_id)
        if not facility or not facility.is_active:
            return None

        slots = SlotCalculator.slots_for_day(repo, facility, day, granularity)
        return SlotListResponse(
            facility_id=facility.id,
            day=day,
            granularity_minutes=granularity,
            slots=[
                SlotItem(start_time=slot.start_time, end_time=slot.end_time, is_available=slot.is_available)
                for slot in slots
            ],
        )


def upsert_facility(payload: dict) -> dict:
    try:
        model = FacilityUpsertRequest.model_validate(payload)
    except ValidationError as exc:
        return AdminActionResult(
            success=False,
            code=INVALID_REQUEST,
            reason=f"Invalid facility payload: {exc}",
        ).model_dump(mode="json")

    with SessionLocal() as db:
        try:
            with db.begin():
                repo = BookingRepository(db)
                if not repo.get_building(model.building_id):
                    return AdminActionResult(success=False, code=NOT_FOUND, reason="Building not found.").model_dump(mode="json")

                facility = repo.get_facility(model.facility_id, lock=True) if model.facility_id else None
                if facility and facility.building_id != model.building_id:
                    return AdminActionResult(
                        success=False,
                        code=FORBIDDEN,
                        reason="Facility belongs to a different building.",
                    ).model_dump(mode="json")
                if not facility:
                    facility = Facility(id=model.facility_id or str(uuid.uuid4()), building_id=model.building_id)
                    db.add(facility)

                facility.name = model.name
                facility.facility_type = model.facility_type.value
                facility.description = model.description
                facility.location = model.location
                facility.capacity = model.capacity
                facility.is_bookable = model.is_bookable
                facility.is_active = model.is_active
                facility.requires_approval = model.requires_approval
                facility.max_booking_hours = model.max_booking_hours
                facility.max_advance_days = model.max_advance_days
                facility.min_advance_hours = model.min_advance_hours
                facility.available_from = model.available_from
                facility.available_to = model.available_to
                facility.available_days = Weekday.from_iso_days(model.available_days).value
                facility.hourly_fee = model.hourly_fee
                facility.deposit_amount = model.deposit_amount

                db.flush()
                facility_id = facility.id
            logger.info("Facility %s saved for building %s", facility_id, model.building_id)
            return AdminActionResult(success=True, facility_id=facility_id).model_dump(mode="json")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while upserting facility")
            return AdminActionResult(
                success=False,
                code=DATABASE_ERROR,
                reason="Database error while upserting facility.",
            ).model_dump(mode="json")


def delete_facility(facility_id: str) -> dict:
    with SessionLocal() as db:
        try:
            with db.begin():
                repo = BookingRepository(db)
                facility = repo.get_facility(facility_id, lock=True)
                if not facility:
                    return AdminActionResult(
                        success=False,
                        code=NOT_FOUND,
                        reason="Facility not found.",
                        facility_id=facility_id,
                    ).model_dump(mode="json")
                removed = repo.delete_facility(facility)
            logger.info("Facility %s deleted with %d bookings", facility_id, removed)
            return AdminActionResult(success=True, facility_id=facility_id).model_dump(mode="json")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while deleting facility")
            return AdminActionResult(
                success=False,
                code=DATABASE_ERROR,
                reason="Database error while deleting facility.",
                facility_id=facility_id,
            ).model_dump(mode="json")


def list_facility_bookings(
    facility_id: str,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    *,
    now: datetime | None = None,
) -> list[tuple[FacilityBooking, Facility]] | None:
    """Active bookings of one facility; defaults to the next 30 days."""
    with SessionLocal() as db:
        repo = BookingRepository(db)
        facility = repo.get_facility(facility_id)
        if not facility:
            return None

        tz_name = _facility_tz(repo, facility)
        start = _to_wall_clock(start_time or now or datetime.now(timezone.utc), tz_name)
        end = _to_wall_clock(end_time, tz_name) if end_time else start + DEFAULT_LISTING_WINDOW
        return [(booking, facility) for booking in repo.find_active_bookings(facility.id, start, end)]
