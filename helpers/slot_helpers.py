import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional

import pytz
from babel.core import UnknownLocaleError
from babel.dates import format_date

from reservation_manager.types import BusyInterval, SchedulingRequest, TimeSlot

logger = logging.getLogger(__name__)

MAX_SLOTS = 3
DAYS_TO_CHECK = 7
SLOT_STEP_MINUTES = 60
LAST_MINUTE_OF_DAY = 23 * 60 + 59


def get_timezone(tz_name: Optional[str]) -> pytz.BaseTzInfo:
    """Returns the pytz timezone for tz_name, UTC if it is unknown."""
    try:
        return pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone %r, using UTC", tz_name)
        return pytz.utc


def today_in(tz_name: Optional[str]) -> date:
    return datetime.now(get_timezone(tz_name)).date()


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def upcoming_weekdays(today: date, days_to_check: int = DAYS_TO_CHECK) -> List[date]:
    """Weekdays from tomorrow up to days_to_check calendar days ahead."""
    days = [today + timedelta(days=offset) for offset in range(1, days_to_check + 1)]
    return [day for day in days if not is_weekend(day)]


def generate_candidate_slots(day: date, request: SchedulingRequest) -> List[TimeSlot]:
    """
    Slides a meeting_duration window over the working hours of one day.
    Starts advance in fixed steps from the working hours start, and a slot is
    only produced when it ends within working hours.
    """
    window_start = time_to_minutes(request.working_hours.start)
    window_end = time_to_minutes(request.working_hours.end)
    duration = request.meeting_duration

    slots = []
    start = window_start
    while start + duration <= window_end:
        slots.append(TimeSlot(
            date=day.isoformat(),
            start_time=minutes_to_time(start),
            end_time=minutes_to_time(start + duration),
        ))
        start += SLOT_STEP_MINUTES
    return slots


def overlaps(slot: TimeSlot, interval: BusyInterval) -> bool:
    """Half-open overlap: touching endpoints are not a conflict."""
    slot_start = time.fromisoformat(slot.start_time)
    slot_end = time.fromisoformat(slot.end_time)
    return slot_start < interval.end and slot_end > interval.start


def is_slot_busy(slot: TimeSlot, intervals: Iterable[BusyInterval]) -> bool:
    return any(overlaps(slot, interval) for interval in intervals)


def _days_to_scan(request: SchedulingRequest, today: date) -> List[date]:
    days = []
    for preferred in request.preferred_dates or []:
        day = date.fromisoformat(preferred)
        if day > today and not is_weekend(day) and day not in days:
            days.append(day)
    for day in upcoming_weekdays(today):
        if day not in days:
            days.append(day)
    return days


def compute_slots(
    busy_intervals: Dict[str, List[BusyInterval]],
    request: SchedulingRequest,
    today: Optional[date] = None,
    max_slots: int = MAX_SLOTS,
) -> List[TimeSlot]:
    """
    Enumerates free slots over the coming week.

    Args:
        busy_intervals: Mapping of YYYY-MM-DD to busy intervals on that date
        request: Meeting duration, working hours and optional preferred dates
        today: Reference date, tomorrow is the first day scanned
        max_slots: Upper bound on the number of slots returned

    Returns:
        Free slots in day order, then start time order.
    """
    today = today or date.today()
    selected: List[TimeSlot] = []

    for day in _days_to_scan(request, today):
        day_intervals = busy_intervals.get(day.isoformat(), [])
        for slot in generate_candidate_slots(day, request):
            if is_slot_busy(slot, day_intervals):
                continue
            selected.append(slot)
            if len(selected) >= max_slots:
                return selected
    return selected


def default_time_slots(
    request: SchedulingRequest,
    today: Optional[date] = None,
    max_slots: int = MAX_SLOTS,
) -> List[TimeSlot]:
    """
    One slot per upcoming weekday at the start of working hours.
    Used when the calendar cannot be read; no conflict check is done.
    """
    today = today or date.today()
    start = time_to_minutes(request.working_hours.start)
    end = min(start + request.meeting_duration, LAST_MINUTE_OF_DAY)

    return [
        TimeSlot(date=day.isoformat(), start_time=minutes_to_time(start), end_time=minutes_to_time(end))
        for day in upcoming_weekdays(today)[:max_slots]
    ]


def format_date_for_email(date_str: str, language: Optional[str] = None) -> str:
    try:
        day = date.fromisoformat(date_str)
    except ValueError:
        logger.warning("Failed to format date: %s", date_str)
        return date_str
    try:
        return format_date(day, format="full", locale=language or "en")
    except (UnknownLocaleError, ValueError):
        return format_date(day, format="full", locale="en")


def format_slot_for_email(slot: TimeSlot, language: Optional[str] = None) -> str:
    return f"{format_date_for_email(slot.date, language)} at {slot.start_time} - {slot.end_time}"


def format_slot_list(slots: List[TimeSlot], language: Optional[str] = None) -> str:
    return "\n".join(
        f"{index}. {format_slot_for_email(slot, language)}" for index, slot in enumerate(slots, 1)
    )
