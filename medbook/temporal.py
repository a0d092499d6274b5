"""Upcoming/past classification of appointment instants.

An appointment's instant is its ``date`` + ``time`` read as local wall
clock. Classification never raises: a record without a usable instant is
treated as already past.
"""
from datetime import datetime
from typing import Optional

from medbook import config
from medbook.models import Appointment


def parse_time(value: Optional[str]) -> Optional[str]:
    """Normalize ``HH:MM`` or ``HH:MM:SS`` to ``HH:MM``; None if malformed."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    for fmt in (config.TIME_FORMAT, config.TIME_FORMAT_SECONDS):
        try:
            return datetime.strptime(value, fmt).strftime(config.TIME_FORMAT)
        except ValueError:
            continue
    return None


def parse_date(value: Optional[str]) -> Optional[str]:
    """Normalize a ``YYYY-MM-DD`` string; None if malformed."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip(), config.DATE_FORMAT).strftime(config.DATE_FORMAT)
    except ValueError:
        return None


def parse_instant(date: Optional[str], time: Optional[str]) -> Optional[datetime]:
    """
    Combine a calendar date and wall-clock time into one naive datetime.

    Args:
        date: ``YYYY-MM-DD``
        time: ``HH:MM`` or ``HH:MM:SS``

    Returns:
        The instant, or None when either part is missing or unparseable

    Example:
        >>> parse_instant("2025-03-10", "09:00")
        datetime.datetime(2025, 3, 10, 9, 0)
        >>> parse_instant("2025-03-10", None) is None
        True
    """
    day = parse_date(date)
    clock = parse_time(time)
    if day is None or clock is None:
        return None
    return datetime.strptime(f"{day}T{clock}", f"{config.DATE_FORMAT}T{config.TIME_FORMAT}")


def appointment_instant(appointment: Appointment) -> Optional[datetime]:
    return parse_instant(appointment.date, appointment.time)


def _as_wall_clock(now: datetime) -> datetime:
    # Instants are naive local times; compare against naive local "now"
    if now.tzinfo is not None:
        return now.astimezone().replace(tzinfo=None)
    return now


def is_upcoming(appointment: Appointment, now: datetime) -> bool:
    """True iff the appointment's instant is at or after ``now``.

    Fails closed: missing or malformed date/time returns False.
    """
    instant = appointment_instant(appointment)
    if instant is None:
        return False
    return instant >= _as_wall_clock(now)
