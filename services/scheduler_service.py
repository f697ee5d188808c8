import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from helpers.interval_helpers import Reparser, extract_busy_intervals
from helpers.slot_helpers import (
    DAYS_TO_CHECK,
    compute_slots,
    default_time_slots,
    get_timezone,
    is_weekend,
    overlaps,
)
from reservation_manager.types import (
    AvailabilityVerdict,
    SchedulingRequest,
    TimeSlot,
    WorkingHours,
)
from services.calendar_source import CalendarSourceClient

logger = logging.getLogger(__name__)


class SchedulerService:
    """Availability against the calendar source, with the degraded fallbacks."""

    def __init__(
        self,
        calendar_source: CalendarSourceClient,
        reparse: Optional[Reparser] = None,
        timezone: str = "UTC"
    ):
        self.calendar_source = calendar_source
        self.reparse = reparse
        self.timezone = timezone

    def find_available_slots(
        self,
        request: SchedulingRequest,
        identity: str,
        today: Optional[date] = None,
        timezone: Optional[str] = None
    ) -> List[TimeSlot]:
        """
        Returns up to three free slots over the next week.
        If the calendar cannot be queried, returns the default slots instead.
        """
        tz = get_timezone(timezone or self.timezone)
        today = today or datetime.now(tz).date()
        window_end = today + timedelta(days=DAYS_TO_CHECK)
        logger.info("Finding available time slots for %s", identity)

        query = f"What are my scheduled events from {today.isoformat()} to {window_end.isoformat()}?"
        try:
            result = self.calendar_source.search(query, identity, want_answer=True)
        except Exception as e:
            logger.error("Failed to query calendar, offering default slots: %s", e)
            return default_time_slots(request, today)

        busy_intervals = extract_busy_intervals(result.documents, tz, self.reparse)
        slots = compute_slots(busy_intervals, request, today)
        logger.info("Found %d available slots", len(slots))
        return slots

    def is_slot_available(
        self,
        slot: Union[TimeSlot, Dict[str, Any]],
        identity: str,
        working_hours: Optional[WorkingHours] = None,
        now: Optional[datetime] = None,
        timezone: Optional[str] = None
    ) -> AvailabilityVerdict:
        """Checks one proposed slot.

        Malformed, past, weekend and out-of-hours slots are rejected without
        touching the calendar. Any calendar failure gives an unverifiable verdict.

        Args:
            slot: The slot to check, as a TimeSlot or a raw mapping
            identity: Calendar owner
            working_hours: Owner's working hours, 09:00-18:00 when not given
            now: Reference time, defaults to the current time in the owner's timezone
            timezone: Owner's timezone, defaults to the service timezone
        """
        if not isinstance(slot, TimeSlot):
            try:
                slot = TimeSlot.model_validate(slot)
            except ValidationError as e:
                return AvailabilityVerdict.rejected(f"Invalid time slot: {e.errors()[0].get('msg', 'bad format')}")

        working_hours = working_hours or WorkingHours()
        tz = get_timezone(timezone or self.timezone)
        now = now or datetime.now(tz)
        if now.tzinfo is None:
            now = tz.localize(now)

        if tz.localize(slot.start_datetime()) < now:
            return AvailabilityVerdict.rejected("The proposed time is in the past.")
        if is_weekend(slot.start_datetime().date()):
            return AvailabilityVerdict.rejected("The proposed time falls on a weekend.")
        if slot.start_time < working_hours.start or slot.end_time > working_hours.end:
            return AvailabilityVerdict.rejected(
                f"The proposed time is outside working hours ({working_hours.start}-{working_hours.end})."
            )

        query = f"What are my scheduled events on {slot.date}?"
        try:
            result = self.calendar_source.search(query, identity, want_answer=True)
        except Exception as e:
            logger.error("Failed to check availability of %s: %s", slot, e)
            return AvailabilityVerdict.unverifiable(f"Calendar could not be checked: {e}")

        busy_intervals = extract_busy_intervals(result.documents, tz, self.reparse)
        conflicting = [interval for interval in busy_intervals.get(slot.date, []) if overlaps(slot, interval)]
        if conflicting:
            conflicts = ", ".join(
                f"{i.start.strftime('%H:%M')}-{i.end.strftime('%H:%M')}" for i in conflicting
            )
            return AvailabilityVerdict.rejected(f"Conflicts with existing events ({conflicts}).")
        return AvailabilityVerdict.confirmed()
