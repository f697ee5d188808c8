import json
import logging
from datetime import datetime, time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import dateutil.parser
import pytz
from pydantic import BaseModel, Field

from reservation_manager.types import DATE_PATTERN, BusyInterval

logger = logging.getLogger(__name__)

BusyIntervals = Dict[str, List[BusyInterval]]


class ExtractedEvent(BaseModel):
    """One calendar event recovered from free text."""
    start_date: str = Field(description="Event start as an ISO 8601 datetime, e.g. 2025-11-14T10:00:00+02:00")
    end_date: str = Field(description="Event end as an ISO 8601 datetime")
    date_str: str = Field(description="Date of the event as YYYY-MM-DD")


class ExtractedEventList(BaseModel):
    events: List[ExtractedEvent] = Field(default=[], description="All events found in the text")


Reparser = Callable[[List[str]], List[ExtractedEvent]]

REPARSE_SYSTEM_MESSAGE = """You extract calendar events from raw calendar data.
Return every event that has a start and an end time.
Use ISO 8601 datetimes including the UTC offset when it is known.
Do not invent events. If nothing can be extracted, return an empty list."""


def _to_local(value: str, tz: pytz.BaseTzInfo) -> datetime:
    parsed = dateutil.parser.isoparse(value)
    if parsed.tzinfo is None:
        # Naive timestamps are already in the calendar owner's local time
        return tz.localize(parsed)
    return parsed.astimezone(tz)


def _to_interval(start: datetime, end: datetime) -> Optional[Tuple[str, BusyInterval]]:
    """Buckets an event under its local start date. Events running past midnight end the day busy."""
    if end <= start:
        return None
    day = start.date()
    end_time = end.time() if end.date() == day else time.max
    return day.isoformat(), BusyInterval(start=start.time(), end=end_time)


def _add(mapping: BusyIntervals, day: str, interval: BusyInterval) -> None:
    intervals = mapping.setdefault(day, [])
    if interval not in intervals:
        intervals.append(interval)


def _document_content(document: Any) -> Any:
    if isinstance(document, dict):
        return document.get("content")
    return getattr(document, "content", None)


def _load_structured(content: Any) -> Optional[dict]:
    if isinstance(content, dict):
        return content
    if isinstance(content, str):
        try:
            data = json.loads(content)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
    return None


def _event_bounds(data: dict) -> Optional[Tuple[str, str]]:
    start = data.get("start")
    end = data.get("end")
    if not isinstance(start, dict) or not isinstance(end, dict):
        return None
    if not start.get("dateTime") or not end.get("dateTime"):
        return None
    return start["dateTime"], end["dateTime"]


def _raw_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, default=str)
    except (TypeError, ValueError):
        return str(content)


def partition_documents(documents: Iterable[Any], tz: pytz.BaseTzInfo) -> Tuple[BusyIntervals, List[str]]:
    """
    Splits calendar documents into busy intervals parsed directly and raw texts
    that need another extraction pass.

    Args:
        documents: Calendar source documents (objects or dicts with a 'content' field)
        tz: Timezone the busy times are expressed in

    Returns:
        (mapping of YYYY-MM-DD to busy intervals, list of unparsed raw texts)
    """
    parsed: BusyIntervals = {}
    unparsed: List[str] = []

    for document in documents:
        content = _document_content(document)
        if content is None or content == "" or content == {}:
            continue

        data = _load_structured(content)
        bounds = _event_bounds(data) if data else None
        if bounds:
            try:
                bucketed = _to_interval(_to_local(bounds[0], tz), _to_local(bounds[1], tz))
            except (ValueError, OverflowError):
                bucketed = None
                unparsed.append(_raw_text(content))
            else:
                if bucketed:
                    _add(parsed, *bucketed)
            continue

        unparsed.append(_raw_text(content))

    return parsed, unparsed


def merge_extracted_events(mapping: BusyIntervals, events: Iterable[ExtractedEvent], tz: pytz.BaseTzInfo) -> None:
    for event in events:
        try:
            start = _to_local(event.start_date, tz)
            end = _to_local(event.end_date, tz)
        except (ValueError, OverflowError):
            logger.warning("Skipping extracted event with unreadable times: %s", event)
            continue
        bucketed = _to_interval(start, end)
        if not bucketed:
            logger.warning("Skipping extracted event that ends before it starts: %s", event)
            continue
        day, interval = bucketed
        if DATE_PATTERN.match(event.date_str or ""):
            day = event.date_str
        _add(mapping, day, interval)


def extract_busy_intervals(
    documents: Iterable[Any],
    tz: pytz.BaseTzInfo,
    reparse: Optional[Reparser] = None,
) -> BusyIntervals:
    """
    Builds the date -> busy intervals mapping from calendar documents.

    Documents that cannot be read directly are sent to `reparse` in one batch.
    When that step fails (or no reparser is given) those events are dropped,
    so the result can only under-report busy time.
    """
    busy, unparsed = partition_documents(documents, tz)
    if not unparsed:
        return busy

    if reparse is None:
        logger.warning("Dropping %d unparsable calendar documents (no reparser)", len(unparsed))
        return busy

    try:
        events = reparse(unparsed)
    except Exception as e:
        logger.error("AI-assisted calendar extraction failed, dropping %d documents: %s", len(unparsed), e)
        return busy

    merge_extracted_events(busy, events, tz)
    return busy


def build_oracle_reparser(oracle: Any) -> Reparser:
    """Returns a reparser that sends all raw texts to the text oracle in a single structured call."""
    def reparse(raw_texts: List[str]) -> List[ExtractedEvent]:
        entries = "\n\n---\n\n".join(f"[{index}] {text}" for index, text in enumerate(raw_texts, 1))
        prompt = f"Extract the calendar events from the following {len(raw_texts)} entries:\n\n{entries}"
        result = oracle.complete_structured(
            prompt,
            ExtractedEventList,
            "CalendarEvents",
            system_messages=[REPARSE_SYSTEM_MESSAGE],
            temperature=0.0,
            max_tokens=2000,
        )
        logger.info("AI-assisted extraction recovered %d events from %d documents", len(result.events), len(raw_texts))
        return result.events

    return reparse
