"""Rescheduling protocol.

A reschedule writes ``{date, time, status: "rescheduled"}`` in one PATCH
and adopts the record the store returns. No overlap check is made against
the doctor's other appointments.

Direct manipulation (dragging a calendar event) is two-phase:

1. ``TentativeMove.begin`` builds the proposed record, shown immediately
2. ``resolve_move`` turns the remote result into the final record,
   either the server's version or the untouched prior one
"""
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from medbook.logging_config import get_logger
from medbook.models import Appointment, AppointmentStatus
from medbook.state import IllegalTransitionError, validate_transition
from medbook.temporal import parse_date, parse_time

logger = get_logger(__name__)


class InvalidScheduleError(ValueError):
    """New date or time is malformed; nothing was sent to the store."""
    pass


def validate_schedule(new_date: str, new_time: str) -> Tuple[str, str]:
    """
    Check and normalize a reschedule target.

    Args:
        new_date: YYYY-MM-DD
        new_time: HH:MM (HH:MM:SS is accepted and truncated)

    Returns:
        (date, time) normalized to YYYY-MM-DD / HH:MM

    Raises:
        InvalidScheduleError: If either part is malformed
    """
    date = parse_date(new_date)
    if date is None:
        raise InvalidScheduleError(f"Invalid date '{new_date}'. Use YYYY-MM-DD")
    time_ = parse_time(new_time)
    if time_ is None:
        raise InvalidScheduleError(f"Invalid time '{new_time}'. Use HH:MM")
    return date, time_


def split_event_start(start: str) -> Tuple[str, str]:
    """Split a calendar drop target (``2025-03-15T10:30:00``) into date and HH:MM."""
    if not start or "T" not in start:
        raise InvalidScheduleError(f"Invalid event start '{start}'")
    date_part, time_part = start.split("T", 1)
    # Drop any UTC offset or fractional seconds FullCalendar-style strings carry
    return validate_schedule(date_part, time_part[:5])


def ensure_reschedulable(appointment: Appointment):
    if not validate_transition(appointment.status, AppointmentStatus.RESCHEDULED.value):
        raise IllegalTransitionError(appointment.status, AppointmentStatus.RESCHEDULED.value)


@dataclass(frozen=True)
class TentativeMove:
    """A move shown to the user before the store has confirmed it."""
    prior: Appointment
    proposed: Appointment

    @classmethod
    def begin(cls, appointment: Appointment, new_date: str, new_time: str) -> "TentativeMove":
        date, time_ = validate_schedule(new_date, new_time)
        ensure_reschedulable(appointment)
        proposed = appointment.model_copy(update={
            "date": date,
            "time": time_,
            "status": AppointmentStatus.RESCHEDULED.value,
        })
        return cls(prior=appointment, proposed=proposed)


RemoteResult = Union[Appointment, BaseException]


def resolve_move(
    prior: Appointment,
    proposed: Appointment,
    remote_result: RemoteResult,
) -> Tuple[Appointment, Optional[BaseException]]:
    """
    Settle an optimistic move.

    Args:
        prior: Record before the move
        proposed: Record that was shown tentatively
        remote_result: Record returned by the store, or the error raised

    Returns:
        (final record, error). On success the server's record replaces the
        proposal wholesale; on failure the prior record comes back unchanged.
    """
    if isinstance(remote_result, BaseException):
        return prior, remote_result
    if remote_result.id != proposed.id:
        # Never adopt a record for a different appointment
        return prior, ValueError(
            f"Store returned appointment {remote_result.id} for move of {proposed.id}"
        )
    return remote_result, None


class Rescheduler:
    """Persists reschedules through the record store."""

    def __init__(self, store):
        self.store = store

    def reschedule(self, appointment_id: str, new_date: str, new_time: str) -> Appointment:
        """
        Move an appointment to a new date/time and mark it rescheduled.

        Raises:
            InvalidScheduleError: Malformed date/time (no store call made)
            StoreError: Store unreachable, unknown id, or bad response
        """
        date, time_ = validate_schedule(new_date, new_time)
        updated = self.store.update_schedule(appointment_id, date, time_)
        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            date=updated.date,
            time=updated.time,
            status=updated.status,
        )
        return updated

    def reschedule_appointment(self, appointment: Appointment, new_date: str, new_time: str) -> Appointment:
        """Like ``reschedule`` but also rejects terminal appointments locally."""
        ensure_reschedulable(appointment)
        return self.reschedule(appointment.id, new_date, new_time)
