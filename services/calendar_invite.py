import logging
import uuid
from datetime import datetime
from typing import List, Optional

import pytz
from icalendar import Calendar, Event, vCalAddress, vText
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PRODUCT_ID = "-//Email Scheduling Assistant//EN"
DEFAULT_LOCATION = "To be determined"


class Participant(BaseModel):
    name: str = ""
    email: str


class CalendarEventDetails(BaseModel):
    summary: str
    description: str = ""
    location: Optional[str] = None
    start_time: datetime  # timezone-aware
    end_time: datetime
    organizer: Participant
    attendees: List[Participant] = []


def _address(participant: Participant) -> vCalAddress:
    address = vCalAddress(f"MAILTO:{participant.email}")
    if participant.name:
        address.params["CN"] = vText(participant.name)
    return address


class CalendarInviteService:
    def generate_ics(self, details: CalendarEventDetails) -> str:
        """Builds a METHOD:REQUEST calendar with a single event, times in UTC."""
        logger.info("Generating ICS for event: %s", details.summary)

        cal = Calendar()
        cal.add("prodid", PRODUCT_ID)
        cal.add("version", "2.0")
        cal.add("method", "REQUEST")

        event = Event()
        event.add("uid", f"evt-{uuid.uuid4()}@scheduling-assistant")
        event.add("dtstamp", datetime.now(pytz.utc))
        event.add("dtstart", details.start_time.astimezone(pytz.utc))
        event.add("dtend", details.end_time.astimezone(pytz.utc))
        event.add("summary", details.summary)
        event.add("description", details.description)
        event.add("location", details.location or DEFAULT_LOCATION)
        event["organizer"] = _address(details.organizer)

        for participant in details.attendees:
            attendee = _address(participant)
            attendee.params["ROLE"] = vText("REQ-PARTICIPANT")
            attendee.params["PARTSTAT"] = vText("NEEDS-ACTION")
            attendee.params["RSVP"] = vText("TRUE")
            event.add("attendee", attendee, encode=0)

        cal.add_component(event)
        return cal.to_ical().decode("utf-8")
