"""Pydantic schemas for booking and admin flows."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FacilityType(str, Enum):
    GYM = "gym"
    LAUNDRY = "laundry"
    MEETING_ROOM = "meeting_room"
    PARTY_ROOM = "party_room"
    SAUNA = "sauna"
    POOL = "pool"
    PLAYGROUND = "playground"
    PARKING = "parking"
    STORAGE = "storage"
    GARDEN = "garden"
    BBQ = "bbq"
    BIKE_STORAGE = "bike_storage"
    OTHER = "other"


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


ACTIVE_STATUSES = frozenset({BookingStatus.PENDING.value, BookingStatus.APPROVED.value})
TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.REJECTED.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
    }
)


class BookingAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"
    NO_SHOW = "no_show"


class ActorCapability(str, Enum):
    REQUESTER = "requester"
    MANAGER = "manager"
    SYSTEM = "system"


class BookingRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    facility_id: str = Field(min_length=1)
    requester_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    purpose: Optional[str] = None
    attendees_count: Optional[int] = Field(default=None, ge=1)


class RescheduleRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    booking_id: str = Field(min_length=1)
    requester_id: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    purpose: Optional[str] = None
    attendees_count: Optional[int] = Field(default=None, ge=1)


class TransitionCommand(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    booking_id: str = Field(min_length=1)
    action: BookingAction
    reason: Optional[str] = None
    actor_capability: ActorCapability
    actor_id: Optional[str] = None


class BookingDraft(BaseModel):
    fee: Decimal
    deposit: Decimal
    initial_status: BookingStatus


class BookingResult(BaseModel):
    success: bool
    code: Optional[str] = None
    reason: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False
    booking_id: Optional[str] = None
    facility_id: Optional[str] = None
    status: Optional[BookingStatus] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_fee: Optional[Decimal] = None
    deposit_amount: Optional[Decimal] = None

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class FacilityUpsertRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    building_id: str = Field(min_length=1)
    facility_id: Optional[str] = None
    name: str = Field(min_length=1)
    facility_type: FacilityType = FacilityType.OTHER
    description: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    is_bookable: bool = True
    is_active: bool = True
    requires_approval: bool = False
    max_booking_hours: Optional[int] = Field(default=None, ge=1)
    max_advance_days: Optional[int] = Field(default=None, ge=0)
    min_advance_hours: Optional[int] = Field(default=None, ge=0)
    available_from: Optional[time] = None
    available_to: Optional[time] = None
    available_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5, 6, 7])
    hourly_fee: Optional[Decimal] = Field(default=None, ge=0)
    deposit_amount: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("available_days")
    @classmethod
    def validate_days(cls, value: list[int]) -> list[int]:
        for day in value:
            if not 1 <= day <= 7:
                raise ValueError("available_days must contain ISO weekday numbers 1-7.")
        return sorted(set(value))

    @model_validator(mode="after")
    def validate_time_window(self):
        if self.available_from and self.available_to:
            if self.available_from >= self.available_to:
                raise ValueError("available_from must be earlier than available_to.")
        return self


class AdminActionResult(BaseModel):
    success: bool
    code: Optional[str] = None
    reason: Optional[str] = None
    facility_id: Optional[str] = None


class TransitionRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    actor_id: str = Field(min_length=1)
    reason: Optional[str] = None


class FacilityItem(BaseModel):
    facility_id: str
    building_id: str
    name: str
    facility_type: str
    capacity: Optional[int] = None
    is_bookable: bool
    is_active: bool
    requires_approval: bool
    max_booking_hours: Optional[int] = None
    max_advance_days: Optional[int] = None
    min_advance_hours: Optional[int] = None
    available_from: Optional[time] = None
    available_to: Optional[time] = None
    available_days: list[int]
    hourly_fee: Optional[Decimal] = None
    deposit_amount: Optional[Decimal] = None


class FacilityListResponse(BaseModel):
    facilities: list[FacilityItem]


class SlotItem(BaseModel):
    start_time: datetime
    end_time: datetime
    is_available: bool


class SlotListResponse(BaseModel):
    facility_id: str
    day: date
    granularity_minutes: int
    slots: list[SlotItem]


class BookingItem(BaseModel):
    booking_id: str
    facility_id: str
    facility_name: str
    requester_id: str
    status: str
    start_time: datetime
    end_time: datetime
    purpose: Optional[str] = None
    attendees_count: Optional[int] = None
    total_fee: Decimal
    deposit_amount: Decimal
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime


class BookingListResponse(BaseModel):
    bookings: list[BookingItem]
