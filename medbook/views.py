"""Read models for appointment lists and the calendar.

Pipeline used by the doctor's appointment screen:
    sort_by_instant (once, upstream) → partition by tab → group_by_date

The calendar view skips the tab filter and projects the full set, minus
records that have no usable date/time.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Union

from medbook.models import Appointment, AppointmentStatus, Prescription, Review, Tab
from medbook.prescriptions import can_prescribe, find_prescription
from medbook.reviews import review_for
from medbook.state import TERMINAL_STATUSES, can_take_action
from medbook.temporal import appointment_instant, is_upcoming

STATUS_COLORS: Dict[str, str] = {
    AppointmentStatus.CONFIRMED.value: "green",
    AppointmentStatus.PENDING.value: "yellow",
    AppointmentStatus.CANCELLED.value: "red",
    AppointmentStatus.COMPLETED.value: "blue",
    AppointmentStatus.RESCHEDULED.value: "purple",
}
UNKNOWN_STATUS_COLOR = "gray"


def status_color(status: str) -> str:
    return STATUS_COLORS.get(status, UNKNOWN_STATUS_COLOR)


@dataclass(frozen=True)
class CalendarEvent:
    """One positioned calendar entry."""
    id: str
    start: str  # "{date}T{time}"
    color: str
    appointment: Appointment


@dataclass(frozen=True)
class AppointmentView:
    """Everything a list row needs, with lifecycle and linkage kept apart."""
    appointment: Appointment
    upcoming: bool
    actionable: bool
    has_prescription: bool
    prescribable: bool
    prescription: Optional[Prescription]
    color: str
    review: Optional[Review] = None


def sort_by_instant(appointments: Iterable[Appointment]) -> List[Appointment]:
    """Ascending by date+time; stable, records without an instant go last."""
    def key(appointment: Appointment):
        instant = appointment_instant(appointment)
        return (instant is None, instant or datetime.min)

    return sorted(appointments, key=key)


def in_tab(appointment: Appointment, tab: Union[Tab, str], now: datetime) -> bool:
    """
    Tab membership. Terminal status always wins over the calendar position:
    a cancelled appointment next week is still "past".
    """
    terminal = appointment.status in TERMINAL_STATUSES
    upcoming = is_upcoming(appointment, now)
    if Tab(tab) == Tab.UPCOMING:
        return not terminal and upcoming
    return terminal or not upcoming


def partition(
    appointments: Sequence[Appointment],
    tab: Union[Tab, str],
    now: datetime,
) -> List[Appointment]:
    """Appointments shown under ``tab``, in input order."""
    return [a for a in appointments if in_tab(a, tab, now)]


def tab_counts(appointments: Sequence[Appointment], now: datetime) -> Dict[str, int]:
    return {tab.value: len(partition(appointments, tab, now)) for tab in Tab}


def group_by_date(appointments: Iterable[Appointment]) -> Dict[str, List[Appointment]]:
    """Group by the exact ``date`` string, keeping first-seen order."""
    grouped: Dict[str, List[Appointment]] = {}
    for appointment in appointments:
        grouped.setdefault(appointment.date or "", []).append(appointment)
    return grouped


def calendar_events(appointments: Iterable[Appointment]) -> List[CalendarEvent]:
    """One event per appointment that has an instant.

    Records with a missing or malformed date/time cannot be positioned and
    are left out; they still show in the past tab.
    """
    events = []
    for a in appointments:
        instant = appointment_instant(a)
        if instant is None:
            continue
        events.append(CalendarEvent(
            id=a.id,
            start=instant.strftime("%Y-%m-%dT%H:%M"),
            color=status_color(a.status),
            appointment=a,
        ))
    return events


def describe(
    appointment: Appointment,
    prescriptions: Sequence[Prescription],
    now: datetime,
    reviews: Sequence[Review] = (),
) -> AppointmentView:
    prescription = find_prescription(appointment, prescriptions)
    return AppointmentView(
        appointment=appointment,
        upcoming=is_upcoming(appointment, now),
        actionable=can_take_action(appointment, now),
        has_prescription=prescription is not None,
        prescribable=can_prescribe(appointment, prescriptions, now),
        prescription=prescription,
        color=status_color(appointment.status),
        review=review_for(appointment, reviews),
    )


def search_prescriptions(
    prescriptions: Sequence[Prescription],
    appointments: Sequence[Appointment],
    query: str,
) -> List[Prescription]:
    """
    Case-insensitive search over patient name, doctor name, notes and
    medication names. Names come from the linked appointment.
    """
    needle = (query or "").strip().lower()
    by_id = {a.id: a for a in appointments}
    matches = []

    for p in prescriptions:
        appointment = by_id.get(p.appointment_id)
        patient_name = appointment.patient_name if appointment and appointment.patient_name else f"Patient #{p.patient_id}"
        doctor_name = appointment.doctor_name if appointment and appointment.doctor_name else f"Doctor #{p.doctor_id}"
        haystacks = [patient_name, doctor_name, p.notes] + [m.name for m in p.medications]
        if any(needle in (text or "").lower() for text in haystacks):
            matches.append(p)

    return matches


def format_grouped(groups: Dict[str, List[Appointment]]) -> str:
    """
    Format grouped appointments for terminal output.

    Example:
        Monday, March 10:
           • 9:00 AM  Jane Doe (Cardiology) [confirmed]
    """
    if not groups:
        return "No appointments."

    lines = []
    for date, day_appointments in groups.items():
        try:
            heading = datetime.strptime(date, "%Y-%m-%d").strftime("%A, %B %d")
        except ValueError:
            heading = date or "Unscheduled"
        lines.append(f"{heading}:")

        for a in day_appointments:
            when = _format_time_12h(a.time)
            specialty = f" ({a.specialty})" if a.specialty else ""
            lines.append(f"   • {when}  {a.patient_name}{specialty} [{a.status}]")
        lines.append("")

    return "\n".join(lines).strip()


def _format_time_12h(time_24h: Optional[str]) -> str:
    """Convert 24h time to 12h format."""
    try:
        hour, minute = map(int, (time_24h or "").split(":")[:2])
    except ValueError:
        return "--:--"
    period = "AM" if hour < 12 else "PM"
    hour_12 = hour if hour <= 12 else hour - 12
    hour_12 = 12 if hour_12 == 0 else hour_12
    return f"{hour_12}:{minute:02d} {period}"
