"""Booking status state machine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from booking.errors import InvalidTransitionError
from booking.models import Facility, FacilityBooking
from booking.schema import ActorCapability, BookingAction, BookingStatus, TransitionCommand

MANAGER_ONLY = frozenset({ActorCapability.MANAGER})
REQUESTER_OR_MANAGER = frozenset({ActorCapability.REQUESTER, ActorCapability.MANAGER})
SYSTEM_OR_MANAGER = frozenset({ActorCapability.SYSTEM, ActorCapability.MANAGER})


@dataclass(frozen=True)
class Transition:
    target: BookingStatus
    allowed_actors: frozenset[ActorCapability]


TRANSITIONS: dict[tuple[BookingStatus, BookingAction], Transition] = {
    (BookingStatus.PENDING, BookingAction.APPROVE): Transition(BookingStatus.APPROVED, MANAGER_ONLY),
    (BookingStatus.PENDING, BookingAction.REJECT): Transition(BookingStatus.REJECTED, MANAGER_ONLY),
    (BookingStatus.PENDING, BookingAction.CANCEL): Transition(BookingStatus.CANCELLED, REQUESTER_OR_MANAGER),
    (BookingStatus.APPROVED, BookingAction.CANCEL): Transition(BookingStatus.CANCELLED, REQUESTER_OR_MANAGER),
    (BookingStatus.APPROVED, BookingAction.COMPLETE): Transition(BookingStatus.COMPLETED, SYSTEM_OR_MANAGER),
    (BookingStatus.APPROVED, BookingAction.NO_SHOW): Transition(BookingStatus.NO_SHOW, SYSTEM_OR_MANAGER),
}


class BookingLifecycle:
    """Transition table plus guards for booking status changes.

    ``now`` is compared against the booking's wall-clock times, so it must be
    expressed on the facility's local clock. Audit timestamps use
    ``audit_time`` (UTC) when given.
    """

    @staticmethod
    def initial_status(facility: Facility) -> BookingStatus:
        return BookingStatus.PENDING if facility.requires_approval else BookingStatus.APPROVED

    @staticmethod
    def allowed_actions(status: BookingStatus | str) -> list[BookingAction]:
        current = BookingStatus(status)
        return [action for (state, action) in TRANSITIONS if state == current]

    @classmethod
    def transition(
        cls,
        booking: FacilityBooking,
        command: TransitionCommand,
        *,
        now: datetime,
        audit_time: datetime | None = None,
    ) -> BookingStatus:
        """Apply ``command`` to ``booking`` or raise without touching it."""
        current = BookingStatus(booking.status)
        action = command.action
        rule = TRANSITIONS.get((current, action))
        if rule is None:
            raise InvalidTransitionError(current.value, action.value)

        if command.actor_capability not in rule.allowed_actors:
            raise InvalidTransitionError(
                current.value,
                action.value,
                f"Actor '{command.actor_capability.value}' may not {action.value} a {current.value} booking.",
                actor_capability=command.actor_capability.value,
            )

        cls._check_guards(booking, command, now)

        stamp = audit_time or datetime.now(timezone.utc)
        if action == BookingAction.APPROVE:
            booking.approved_by = command.actor_id
            booking.approved_at = stamp
        elif action == BookingAction.REJECT:
            booking.rejected_by = command.actor_id
            booking.rejected_at = stamp
            booking.rejection_reason = command.reason
        elif action == BookingAction.CANCEL:
            booking.cancelled_by = command.actor_id
            booking.cancelled_at = stamp
            booking.cancellation_reason = command.reason or None
        elif action == BookingAction.COMPLETE:
            booking.completed_at = stamp

        booking.status = rule.target.value
        booking.updated_at = stamp
        return rule.target

    @staticmethod
    def _check_guards(booking: FacilityBooking, command: TransitionCommand, now: datetime) -> None:
        current = booking.status
        action = command.action.value

        if command.action == BookingAction.REJECT and not (command.reason or "").strip():
            raise InvalidTransitionError(current, action, "A rejection reason is required.")

        if command.action == BookingAction.CANCEL and command.actor_capability == ActorCapability.REQUESTER:
            if not command.actor_id or command.actor_id != booking.requester_id:
                raise InvalidTransitionError(
                    current,
                    action,
                    "Only the requester may cancel this booking.",
                    requester_id=booking.requester_id,
                )

        if command.action == BookingAction.COMPLETE and now < booking.end_time:
            raise InvalidTransitionError(
                current,
                action,
                "Booking cannot be completed before it ends.",
                end_time=booking.end_time.isoformat(),
            )

        if command.action == BookingAction.NO_SHOW:
            if now < booking.start_time:
                raise InvalidTransitionError(
                    current,
                    action,
                    "Booking cannot be marked as no-show before it starts.",
                    start_time=booking.start_time.isoformat(),
                )
            if booking.checked_in_at is not None:
                raise InvalidTransitionError(current, action, "Requester has already checked in.")
