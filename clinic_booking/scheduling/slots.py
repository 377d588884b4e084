"""Slot generation for the public booking funnel.

All values are naive clinic-local wall-clock times. Nothing here converts
between timezones or adjusts for DST; a clinic's 09:00 is 09:00 on every date.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from clinic_booking.models.appointment import Appointment
from clinic_booking.scheduling.overlap import overlaps_any
from clinic_booking.scheduling.stores import fetch_appointments_overlapping_day, fetch_operating_hours

SLOT_CADENCE_MINUTES = 30
SLOT_FORMAT = '%H:%M'


def day_of_week(day: date) -> int:
    """Weekday index with Sunday as 0, as stored on clinic schedules."""
    return day.isoweekday() % 7


def format_slot(slot_start: datetime) -> str:
    return slot_start.strftime(SLOT_FORMAT)


def parse_time_slot(value: str) -> time:
    normalized = value.strip()
    try:
        hours, minutes = normalized.split(':')
        if len(hours) != 2 or len(minutes) != 2:
            raise ValueError
        return time(int(hours), int(minutes))
    except ValueError as exc:
        raise ValueError(f'Invalid time slot {value!r}; expected HH:MM.') from exc


def combine_slot(day: date, time_slot: str) -> datetime:
    return datetime.combine(day, parse_time_slot(time_slot))


def generate_slot_starts(
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    appointments: Iterable[Appointment] = (),
) -> list[datetime]:
    if duration_minutes <= 0:
        raise ValueError('Service duration must be a positive number of minutes.')

    appointments = list(appointments)
    duration = timedelta(minutes=duration_minutes)
    cadence = timedelta(minutes=SLOT_CADENCE_MINUTES)

    starts: list[datetime] = []
    current = window_start
    while current + duration <= window_end:
        if not overlaps_any(current, current + duration, appointments):
            starts.append(current)
        current += cadence

    return starts


def compute_available_slots(
    db: Session,
    clinic_id: str,
    day: date,
    service_duration_minutes: int,
) -> list[str]:
    """Bookable ``HH:MM`` start times for ``day``, ascending.

    Returns an empty list when the clinic has no active hours that weekday or
    the service does not fit in the open window. A returned slot is not held;
    ``create_appointment`` re-checks it at booking time.
    """
    if service_duration_minutes <= 0:
        raise ValueError('Service duration must be a positive number of minutes.')

    schedule = fetch_operating_hours(db, clinic_id, day_of_week(day))
    if schedule is None:
        return []

    window_start = datetime.combine(day, schedule.open_time)
    window_end = datetime.combine(day, schedule.close_time)
    if window_start + timedelta(minutes=service_duration_minutes) > window_end:
        return []

    appointments = fetch_appointments_overlapping_day(db, clinic_id, day)
    starts = generate_slot_starts(window_start, window_end, service_duration_minutes, appointments)

    return [format_slot(slot_start) for slot_start in starts]
