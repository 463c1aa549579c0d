from __future__ import annotations

import hmac
import logging
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from booking.engine import (
    DATABASE_ERROR,
    FORBIDDEN,
    INVALID_REQUEST,
    NOT_FOUND,
    create_booking,
    delete_facility,
    get_facility_slots,
    list_facility_bookings,
    reschedule_booking,
    transition_booking,
    upsert_facility,
)
from booking.errors import ViolationCode
from booking.models import Facility, FacilityBooking
from booking.repository import BookingRepository
from booking.rules import allowed_weekdays
from booking.schema import (
    ActorCapability,
    BookingAction,
    BookingItem,
    BookingListResponse,
    BookingRequest,
    FacilityItem,
    FacilityListResponse,
    FacilityUpsertRequest,
    SlotListResponse,
    TransitionRequest,
)
from config import get_settings
from db.session import get_db, validate_db_compatibility

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
APP_VERSION = settings.app_version
API_KEY_HEADER = "X-API-Key"
ADMIN_API_KEY_HEADER = "X-Admin-API-Key"

STATUS_BY_CODE = {
    ViolationCode.INVALID_TIME_RANGE.value: 422,
    ViolationCode.OUTSIDE_AVAILABILITY_WINDOW.value: 422,
    ViolationCode.EXCEEDS_MAX_DURATION.value: 422,
    ViolationCode.EXCEEDS_CAPACITY.value: 422,
    ViolationCode.TOO_SOON_TO_BOOK.value: 422,
    ViolationCode.TOO_FAR_IN_ADVANCE.value: 422,
    ViolationCode.FACILITY_NOT_BOOKABLE.value: 422,
    ViolationCode.SLOT_CONFLICT.value: 409,
    ViolationCode.INVALID_TRANSITION.value: 409,
    INVALID_REQUEST: 400,
    NOT_FOUND: 404,
    FORBIDDEN: 403,
    DATABASE_ERROR: 503,
}


def verify_api_key(x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER)):
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.booking_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


def verify_admin_api_key(x_admin_api_key: Optional[str] = Header(default=None, alias=ADMIN_API_KEY_HEADER)):
    if not x_admin_api_key or not hmac.compare_digest(x_admin_api_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing admin API key.")


def _respond(result: dict, success_status: int = 200) -> JSONResponse:
    if result.get("success"):
        return JSONResponse(status_code=success_status, content=result)
    return JSONResponse(status_code=STATUS_BY_CODE.get(result.get("code"), 400), content=result)


def _facility_item(facility: Facility) -> FacilityItem:
    return FacilityItem(
        facility_id=facility.id,
        building_id=facility.building_id,
        name=facility.name,
        facility_type=facility.facility_type,
        capacity=facility.capacity,
        is_bookable=facility.is_bookable,
        is_active=facility.is_active,
        requires_approval=facility.requires_approval,
        max_booking_hours=facility.max_booking_hours,
        max_advance_days=facility.max_advance_days,
        min_advance_hours=facility.min_advance_hours,
        available_from=facility.available_from,
        available_to=facility.available_to,
        available_days=allowed_weekdays(facility).iso_days(),
        hourly_fee=facility.hourly_fee,
        deposit_amount=facility.deposit_amount,
    )


def _booking_item(booking: FacilityBooking, facility: Facility) -> BookingItem:
    return BookingItem(
        booking_id=str(booking.id),
        facility_id=booking.facility_id,
        facility_name=facility.name,
        requester_id=booking.requester_id,
        status=booking.status,
        start_time=booking.start_time,
        end_time=booking.end_time,
        purpose=booking.purpose,
        attendees_count=booking.attendees_count,
        total_fee=booking.total_fee,
        deposit_amount=booking.deposit_amount,
        rejection_reason=booking.rejection_reason,
        cancellation_reason=booking.cancellation_reason,
        created_at=booking.created_at,
    )


def _booking_items(rows: list[tuple[FacilityBooking, Facility]]) -> BookingListResponse:
    return BookingListResponse(bookings=[_booking_item(booking, facility) for booking, facility in rows])


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    service: str
    version: str


class RescheduleBody(BaseModel):
    requester_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    purpose: Optional[str] = None
    attendees_count: Optional[int] = Field(default=None, ge=1)


app = FastAPI(title=APP_NAME, version=APP_VERSION)


@app.on_event("startup")
def startup_checks():
    _ = settings.booking_api_key
    _ = settings.admin_api_key
    validate_db_compatibility()
    logger.info("%s %s started", APP_NAME, APP_VERSION)


@app.get("/health/live", response_model=HealthResponse)
def health_live():
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/health/ready", response_model=HealthResponse)
def health_ready():
    try:
        validate_db_compatibility()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/v1/facilities", response_model=FacilityListResponse, dependencies=[Depends(verify_api_key)])
def list_bookable_facilities(building_id: str, db: Session = Depends(get_db)):
    facilities = BookingRepository(db).list_facilities(building_id, bookable_only=True)
    return FacilityListResponse(facilities=[_facility_item(facility) for facility in facilities])


@app.get("/v1/facilities/{facility_id}", response_model=FacilityItem, dependencies=[Depends(verify_api_key)])
def get_facility(facility_id: str, db: Session = Depends(get_db)):
    facility = BookingRepository(db).get_facility(facility_id)
    if not facility:
        raise HTTPException(status_code=404, detail="Facility not found.")
    return _facility_item(facility)


@app.get(
    "/v1/facilities/{facility_id}/slots",
    response_model=SlotListResponse,
    dependencies=[Depends(verify_api_key)],
)
def facility_slots(facility_id: str, day: date, granularity_minutes: Optional[int] = None):
    if granularity_minutes is not None and not 1 <= granularity_minutes <= 24 * 60:
        raise HTTPException(status_code=400, detail="granularity_minutes must be between 1 and 1440.")
    response = get_facility_slots(facility_id, day, granularity_minutes)
    if response is None:
        raise HTTPException(status_code=404, detail="Facility not found or inactive.")
    return response


@app.post("/v1/bookings", dependencies=[Depends(verify_api_key)])
def create_booking_route(request: BookingRequest):
    return _respond(create_booking(request.model_dump()), success_status=201)


@app.get("/v1/bookings/my", response_model=BookingListResponse, dependencies=[Depends(verify_api_key)])
def my_bookings(requester_id: str, building_id: Optional[str] = None, db: Session = Depends(get_db)):
    rows = BookingRepository(db).find_bookings_by_requester(
        requester_id,
        active=True,
        building_id=building_id,
    )
    return _booking_items(rows)


@app.get("/v1/bookings/history", response_model=BookingListResponse, dependencies=[Depends(verify_api_key)])
def booking_history(requester_id: str, building_id: Optional[str] = None, db: Session = Depends(get_db)):
    rows = BookingRepository(db).find_bookings_by_requester(
        requester_id,
        active=False,
        building_id=building_id,
    )
    return _booking_items(rows)


@app.get("/v1/bookings/{booking_id}", response_model=BookingItem, dependencies=[Depends(verify_api_key)])
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    repo = BookingRepository(db)
    booking = repo.get_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found.")
    return _booking_item(booking, repo.get_facility(booking.facility_id))


@app.patch("/v1/bookings/{booking_id}", dependencies=[Depends(verify_api_key)])
def reschedule_booking_route(booking_id: str, request: RescheduleBody):
    payload = request.model_dump()
    payload["booking_id"] = booking_id
    return _respond(reschedule_booking(payload))


@app.post("/v1/bookings/{booking_id}/cancel", dependencies=[Depends(verify_api_key)])
def cancel_booking_route(booking_id: str, request: TransitionRequest):
    payload = {
        "booking_id": booking_id,
        "action": BookingAction.CANCEL.value,
        "reason": request.reason,
        "actor_capability": ActorCapability.REQUESTER.value,
        "actor_id": request.actor_id,
    }
    return _respond(transition_booking(payload))


@app.get(
    "/v1/admin/bookings/pending",
    response_model=BookingListResponse,
    dependencies=[Depends(verify_admin_api_key)],
)
def pending_bookings(building_id: str, db: Session = Depends(get_db)):
    return _booking_items(BookingRepository(db).find_pending_bookings(building_id))


@app.post("/v1/admin/bookings/{booking_id}/{action}", dependencies=[Depends(verify_admin_api_key)])
def admin_transition_booking(booking_id: str, action: BookingAction, request: TransitionRequest):
    payload = {
        "booking_id": booking_id,
        "action": action.value,
        "reason": request.reason,
        "actor_capability": ActorCapability.MANAGER.value,
        "actor_id": request.actor_id,
    }
    return _respond(transition_booking(payload))


@app.get(
    "/v1/admin/facilities/{facility_id}/bookings",
    response_model=BookingListResponse,
    dependencies=[Depends(verify_admin_api_key)],
)
def facility_bookings(facility_id: str, start_time: Optional[datetime] = None, end_time: Optional[datetime] = None):
    if start_time and end_time and end_time <= start_time:
        raise HTTPException(status_code=400, detail="end_time must be after start_time.")
    rows = list_facility_bookings(facility_id, start_time, end_time)
    if rows is None:
        raise HTTPException(status_code=404, detail="Facility not found.")
    return _booking_items(rows)


@app.post("/v1/admin/facilities", dependencies=[Depends(verify_admin_api_key)])
def admin_upsert_facility(request: FacilityUpsertRequest):
    return _respond(upsert_facility(request.model_dump(mode="json")))


@app.delete("/v1/admin/facilities/{facility_id}", dependencies=[Depends(verify_admin_api_key)])
def admin_delete_facility(facility_id: str):
    return _respond(delete_facility(facility_id))
