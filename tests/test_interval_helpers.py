import json
from datetime import time
from unittest.mock import Mock

import pytz

from helpers.interval_helpers import (
    ExtractedEvent,
    ExtractedEventList,
    build_oracle_reparser,
    extract_busy_intervals,
    partition_documents,
)
from reservation_manager.types import BusyInterval
from services.calendar_source import CalendarDocument

HELSINKI = pytz.timezone("Europe/Helsinki")


def event_document(start: str, end: str, title: str = "Meeting") -> CalendarDocument:
    content = json.dumps({"summary": title, "start": {"dateTime": start}, "end": {"dateTime": end}})
    return CalendarDocument(title=title, content=content, source="google_calendar")


def test_structured_documents_are_parsed_directly():
    documents = [
        event_document("2025-11-11T10:00:00+02:00", "2025-11-11T11:00:00+02:00"),
        {"content": {"start": {"dateTime": "2025-11-11T12:00:00Z"}, "end": {"dateTime": "2025-11-11T12:30:00Z"}}},
    ]

    parsed, unparsed = partition_documents(documents, HELSINKI)

    assert unparsed == []
    assert parsed == {
        "2025-11-11": [
            BusyInterval(start=time(10, 0), end=time(11, 0)),
            BusyInterval(start=time(14, 0), end=time(14, 30)),
        ]
    }


def test_free_text_and_empty_documents():
    documents = [
        CalendarDocument(title="note", content="Dentist Tuesday 3pm", source="vault"),
        CalendarDocument(title="empty", content="", source="vault"),
        {"content": {"summary": "no times here"}},
    ]

    parsed, unparsed = partition_documents(documents, HELSINKI)

    assert parsed == {}
    assert unparsed == ["Dentist Tuesday 3pm", json.dumps({"summary": "no times here"})]


def test_naive_timestamps_are_local():
    parsed, _ = partition_documents([event_document("2025-11-11T09:00:00", "2025-11-11T09:45:00")], HELSINKI)

    assert parsed["2025-11-11"] == [BusyInterval(start=time(9, 0), end=time(9, 45))]


def test_event_past_midnight_blocks_rest_of_day():
    parsed, _ = partition_documents([event_document("2025-11-11T22:00:00+02:00", "2025-11-12T01:00:00+02:00")], HELSINKI)

    assert parsed["2025-11-11"] == [BusyInterval(start=time(22, 0), end=time.max)]


def test_extraction_is_idempotent():
    documents = [
        event_document("2025-11-11T10:00:00+02:00", "2025-11-11T11:00:00+02:00"),
        event_document("2025-11-11T10:00:00+02:00", "2025-11-11T11:00:00+02:00"),
        event_document("2025-11-12T13:00:00+02:00", "2025-11-12T14:00:00+02:00"),
    ]

    first = extract_busy_intervals(documents, HELSINKI)
    second = extract_busy_intervals(documents, HELSINKI)

    assert first == second
    assert len(first["2025-11-11"]) == 1


def test_unparsed_documents_go_to_reparse_in_one_batch():
    reparse = Mock(return_value=[
        ExtractedEvent(start_date="2025-11-11T15:00:00+02:00", end_date="2025-11-11T16:00:00+02:00", date_str="2025-11-11"),
        ExtractedEvent(start_date="garbage", end_date="2025-11-11T16:00:00+02:00", date_str="2025-11-11"),
    ])
    documents = [
        CalendarDocument(title="a", content="Dentist Tuesday 3pm", source="vault"),
        CalendarDocument(title="b", content="Lunch with Sam", source="vault"),
        event_document("2025-11-11T10:00:00+02:00", "2025-11-11T11:00:00+02:00"),
    ]

    busy = extract_busy_intervals(documents, HELSINKI, reparse)

    reparse.assert_called_once_with(["Dentist Tuesday 3pm", "Lunch with Sam"])
    assert busy["2025-11-11"] == [
        BusyInterval(start=time(10, 0), end=time(11, 0)),
        BusyInterval(start=time(15, 0), end=time(16, 0)),
    ]


def test_failed_reparse_drops_unparsed_documents():
    reparse = Mock(side_effect=RuntimeError("model unavailable"))
    documents = [
        CalendarDocument(title="a", content="Dentist Tuesday 3pm", source="vault"),
        event_document("2025-11-11T10:00:00+02:00", "2025-11-11T11:00:00+02:00"),
    ]

    busy = extract_busy_intervals(documents, HELSINKI, reparse)

    assert busy == {"2025-11-11": [BusyInterval(start=time(10, 0), end=time(11, 0))]}


def test_no_reparse_call_when_everything_parses():
    reparse = Mock()

    extract_busy_intervals([event_document("2025-11-11T10:00:00+02:00", "2025-11-11T11:00:00+02:00")], HELSINKI, reparse)

    reparse.assert_not_called()


def test_oracle_reparser_makes_one_structured_call():
    oracle = Mock()
    oracle.complete_structured.return_value = ExtractedEventList(events=[
        ExtractedEvent(start_date="2025-11-11T15:00:00+02:00", end_date="2025-11-11T16:00:00+02:00", date_str="2025-11-11")
    ])

    events = build_oracle_reparser(oracle)(["Dentist Tuesday 3pm", "Lunch"])

    assert len(events) == 1
    oracle.complete_structured.assert_called_once()
    args, kwargs = oracle.complete_structured.call_args
    assert "[1] Dentist Tuesday 3pm" in args[0]
    assert "[2] Lunch" in args[0]
    assert args[1] is ExtractedEventList
    assert kwargs["temperature"] == 0.0
