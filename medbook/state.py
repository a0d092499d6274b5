"""Appointment status state machine.

States:
- pending, confirmed, rescheduled: active
- cancelled, completed: terminal for user actions

Some transitions only happen as side effects of prescription linkage:
an actionable appointment (or a confirmed one past its slot) becomes
completed when a prescription is recorded, and completed goes back to
confirmed when that prescription is deleted again.
"""
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from medbook.logging_config import get_logger
from medbook.models import Appointment, AppointmentStatus
from medbook.temporal import is_upcoming

logger = get_logger(__name__)

ACTIVE_STATUSES: FrozenSet[str] = frozenset({
    AppointmentStatus.PENDING.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.RESCHEDULED.value,
})
TERMINAL_STATUSES: FrozenSet[str] = frozenset({
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.COMPLETED.value,
})


# Pattern: current status → [allowed next statuses]
VALID_TRANSITIONS: Dict[AppointmentStatus, List[AppointmentStatus]] = {
    AppointmentStatus.PENDING: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,  # prescribed via "Complete"
        AppointmentStatus.RESCHEDULED,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,  # prescription recorded
        AppointmentStatus.RESCHEDULED,
    ],
    AppointmentStatus.RESCHEDULED: [
        AppointmentStatus.CONFIRMED,  # user accepts the new slot
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,  # prescribed via "Complete"
        AppointmentStatus.RESCHEDULED,  # moved again
    ],
    AppointmentStatus.COMPLETED: [
        AppointmentStatus.CONFIRMED,  # prescription deleted
    ],
    AppointmentStatus.CANCELLED: [],
}

# Transitions that no user control may request directly
PRESCRIPTION_DRIVEN = frozenset({
    (AppointmentStatus.PENDING, AppointmentStatus.COMPLETED),
    (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED),
    (AppointmentStatus.RESCHEDULED, AppointmentStatus.COMPLETED),
    (AppointmentStatus.COMPLETED, AppointmentStatus.CONFIRMED),
})


class IllegalTransitionError(ValueError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, current: str, intended: str):
        super().__init__(f"Cannot move appointment from '{current}' to '{intended}'")
        self.current = current
        self.intended = intended


def _coerce(status: str) -> Optional[AppointmentStatus]:
    try:
        return AppointmentStatus(status)
    except ValueError:
        return None


def validate_transition(current: str, intended: str) -> bool:
    """
    Validate a status transition.

    Unknown statuses never transition, except that cancellation is legal
    from anything that is not already cancelled or completed.

    Example:
        >>> validate_transition("pending", "confirmed")
        True
        >>> validate_transition("cancelled", "confirmed")
        False
    """
    if intended == AppointmentStatus.CANCELLED.value:
        return current not in TERMINAL_STATUSES

    source, target = _coerce(current), _coerce(intended)
    if source is None or target is None:
        return False
    return target in VALID_TRANSITIONS.get(source, [])


def is_terminal(appointment: Appointment) -> bool:
    return appointment.status in TERMINAL_STATUSES


def is_active(appointment: Appointment) -> bool:
    return appointment.status in ACTIVE_STATUSES


def can_take_action(appointment: Appointment, now: datetime) -> bool:
    """Whether cancel/complete controls are offered for this appointment.

    Rescheduled appointments stay actionable after their instant passes,
    until the new slot is confirmed.
    """
    if appointment.status not in ACTIVE_STATUSES:
        return False
    return (
        is_upcoming(appointment, now)
        or appointment.status == AppointmentStatus.RESCHEDULED.value
    )


class StatusMachine:
    """Executes legal status transitions against the record store.

    The store's returned record is authoritative. On any failure the
    caller's appointment object is left untouched (records are never
    mutated in place) and the error propagates.
    """

    def __init__(self, store):
        self.store = store

    def transition(self, appointment: Appointment, intended: str) -> Appointment:
        """Apply a user-requested status change."""
        source, target = _coerce(appointment.status), _coerce(intended)
        # Reschedules carry a new date/time and go through the Rescheduler
        if (source, target) in PRESCRIPTION_DRIVEN or target == AppointmentStatus.RESCHEDULED:
            raise IllegalTransitionError(appointment.status, intended)
        return self._apply(appointment, intended)

    def cancel(self, appointment: Appointment) -> Appointment:
        """Cancel; cancelling an already cancelled appointment is a no-op."""
        if appointment.status == AppointmentStatus.CANCELLED.value:
            logger.info("cancel_noop", appointment_id=appointment.id)
            return appointment
        return self.transition(appointment, AppointmentStatus.CANCELLED.value)

    def confirm(self, appointment: Appointment) -> Appointment:
        return self.transition(appointment, AppointmentStatus.CONFIRMED.value)

    def mark_prescribed(self, appointment: Appointment) -> Appointment:
        """pending/confirmed/rescheduled → completed, after a prescription was recorded."""
        if appointment.status == AppointmentStatus.COMPLETED.value:
            return appointment
        return self._apply(appointment, AppointmentStatus.COMPLETED.value)

    def reopen_after_prescription_removed(self, appointment: Appointment) -> Appointment:
        """completed → confirmed, after the linked prescription was deleted."""
        if appointment.status != AppointmentStatus.COMPLETED.value:
            return appointment
        return self._apply(appointment, AppointmentStatus.CONFIRMED.value)

    def _apply(self, appointment: Appointment, intended: str) -> Appointment:
        if not validate_transition(appointment.status, intended):
            raise IllegalTransitionError(appointment.status, intended)

        updated = self.store.update_status(appointment.id, intended)
        logger.info(
            "appointment_status_changed",
            appointment_id=appointment.id,
            previous=appointment.status,
            status=updated.status,
        )
        return updated
