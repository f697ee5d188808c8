from datetime import date, time

import pytest

from helpers.slot_helpers import (
    compute_slots,
    default_time_slots,
    format_date_for_email,
    format_slot_list,
    generate_candidate_slots,
    get_timezone,
    overlaps,
    upcoming_weekdays,
)
from reservation_manager.types import BusyInterval, SchedulingRequest, TimeSlot, WorkingHours

MONDAY = date(2025, 11, 10)
FRIDAY = date(2025, 11, 14)


@pytest.fixture
def request_60():
    return SchedulingRequest(meeting_duration=60, working_hours=WorkingHours(start="09:00", end="18:00"))


def test_no_calendar_documents_gives_three_weekday_slots(request_60):
    slots = compute_slots({}, request_60, today=MONDAY)

    assert len(slots) == 3
    for slot in slots:
        assert date.fromisoformat(slot.date).weekday() < 5
        assert "09:00" <= slot.start_time < slot.end_time <= "18:00"
    assert slots[0] == TimeSlot(date="2025-11-11", start_time="09:00", end_time="10:00")


def test_busy_interval_blocks_overlapping_slot(request_60):
    busy = {"2025-11-11": [BusyInterval(start=time(10, 0), end=time(11, 0))]}

    slots = compute_slots(busy, request_60, today=MONDAY, max_slots=20)

    assert TimeSlot(date="2025-11-11", start_time="10:00", end_time="11:00") not in slots
    assert TimeSlot(date="2025-11-11", start_time="11:00", end_time="12:00") in slots
    assert TimeSlot(date="2025-11-11", start_time="09:00", end_time="10:00") in slots


def test_slots_never_overlap_busy_time(request_60):
    busy = {
        "2025-11-11": [BusyInterval(start=time(9, 30), end=time(12, 15))],
        "2025-11-12": [BusyInterval(start=time(0, 0), end=time.max)],
    }

    slots = compute_slots(busy, request_60, today=MONDAY, max_slots=50)

    assert slots
    for slot in slots:
        assert not any(overlaps(slot, interval) for interval in busy.get(slot.date, []))
    assert all(slot.date != "2025-11-12" for slot in slots)
    assert [s.start_time for s in slots if s.date == "2025-11-11"] == [
        "13:00", "14:00", "15:00", "16:00", "17:00"
    ]


def test_weekend_is_skipped(request_60):
    slots = compute_slots({}, request_60, today=FRIDAY, max_slots=3)

    assert [slot.date for slot in slots] == ["2025-11-17"] * 3


def test_preferred_dates_are_scanned_first(request_60):
    request = SchedulingRequest(
        meeting_duration=60,
        working_hours=request_60.working_hours,
        preferred_dates=["2025-11-13", "2025-11-15"]  # Thursday, Saturday
    )

    slots = compute_slots({}, request, today=MONDAY)

    assert [slot.date for slot in slots] == ["2025-11-13"] * 3


def test_touching_endpoints_do_not_conflict():
    slot = TimeSlot(date="2025-11-11", start_time="11:00", end_time="12:00")

    assert not overlaps(slot, BusyInterval(start=time(10, 0), end=time(11, 0)))
    assert not overlaps(slot, BusyInterval(start=time(12, 0), end=time(13, 0)))
    assert overlaps(slot, BusyInterval(start=time(11, 59), end=time(12, 30)))


def test_candidate_slots_fit_working_hours():
    request = SchedulingRequest(meeting_duration=90, working_hours=WorkingHours(start="09:00", end="12:00"))

    slots = generate_candidate_slots(date(2025, 11, 11), request)

    assert [(s.start_time, s.end_time) for s in slots] == [("09:00", "10:30"), ("10:00", "11:30")]


def test_duration_longer_than_working_day_gives_nothing():
    request = SchedulingRequest(meeting_duration=600, working_hours=WorkingHours(start="09:00", end="18:00"))

    assert compute_slots({}, request, today=MONDAY) == []


def test_upcoming_weekdays_starts_tomorrow():
    days = upcoming_weekdays(FRIDAY)

    assert days[0] == date(2025, 11, 17)
    assert all(day.weekday() < 5 for day in days)
    assert len(days) == 5


def test_default_time_slots(request_60):
    slots = default_time_slots(request_60, today=FRIDAY)

    assert [(s.date, s.start_time, s.end_time) for s in slots] == [
        ("2025-11-17", "09:00", "10:00"),
        ("2025-11-18", "09:00", "10:00"),
        ("2025-11-19", "09:00", "10:00"),
    ]


def test_unknown_timezone_falls_back_to_utc():
    assert get_timezone("Mars/Olympus_Mons").zone == "UTC"
    assert get_timezone("Europe/Helsinki").zone == "Europe/Helsinki"


def test_format_date_for_email():
    assert format_date_for_email("2025-11-14") == "Friday, November 14, 2025"
    assert format_date_for_email("2025-11-14", "xx-unknown") == "Friday, November 14, 2025"
    assert format_date_for_email("not a date") == "not a date"


def test_format_slot_list():
    slots = [
        TimeSlot(date="2025-11-14", start_time="10:00", end_time="11:00"),
        TimeSlot(date="2025-11-17", start_time="09:00", end_time="10:00"),
    ]

    assert format_slot_list(slots) == (
        "1. Friday, November 14, 2025 at 10:00 - 11:00\n"
        "2. Monday, November 17, 2025 at 09:00 - 10:00"
    )
