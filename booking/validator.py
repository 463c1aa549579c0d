"""Validate-and-price orchestration for new or moved bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from booking.availability import ConflictDetector
from booking.errors import ViolationCode
from booking.fees import FeeCalculator
from booking.lifecycle import BookingLifecycle
from booking.models import Facility, FacilityBooking
from booking.rules import FacilityAvailabilityPolicy, RuleCheckResult
from booking.schema import BookingDraft, BookingRequest


@dataclass
class ValidationOutcome:
    draft: BookingDraft | None = None
    violation: RuleCheckResult | None = None

    @property
    def allowed(self) -> bool:
        return self.violation is None


class BookingValidator:
    @staticmethod
    def validate_and_price(
        request: BookingRequest,
        facility: Facility,
        existing_bookings: Iterable[FacilityBooking],
        now: datetime,
        *,
        exclude_booking_id=None,
    ) -> ValidationOutcome:
        """Run policy, conflict and pricing checks; stop at the first violation.

        Storage is not touched: ``existing_bookings`` must already hold the
        facility's active bookings around the requested interval.
        """
        policy_check = FacilityAvailabilityPolicy.check(
            facility,
            request.start_time,
            request.end_time,
            request.attendees_count,
            now=now,
        )
        if not policy_check.allowed:
            return ValidationOutcome(violation=policy_check)

        conflicts = ConflictDetector.find_conflicts(
            request,
            existing_bookings,
            exclude_booking_id=exclude_booking_id,
        )
        if conflicts:
            return ValidationOutcome(
                violation=RuleCheckResult.violation(
                    ViolationCode.SLOT_CONFLICT,
                    "Requested time overlaps an existing booking.",
                    facility_id=facility.id,
                    conflicting_booking_ids=[str(booking.id) for booking in conflicts],
                )
            )

        quote = FeeCalculator.compute(facility, request.start_time, request.end_time)
        return ValidationOutcome(
            draft=BookingDraft(
                fee=quote.fee,
                deposit=quote.deposit,
                initial_status=BookingLifecycle.initial_status(facility),
            )
        )
