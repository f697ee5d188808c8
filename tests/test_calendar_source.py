import unittest
from unittest.mock import Mock

import requests

from services.calendar_source import CalendarSourceClient, CalendarSourceError


def response(data):
    mock = Mock()
    mock.json.return_value = data
    return mock


class TestCalendarSourceClient(unittest.TestCase):
    def setUp(self):
        self.session = Mock()
        self.client = CalendarSourceClient(
            api_key="app-key",
            base_url="https://calendar.test",
            sources=["google_calendar"],
            timeout=7,
            session=self.session
        )

    def test_search_uses_user_token(self):
        self.session.post.side_effect = [
            response({"token": "user-token"}),
            response({
                "answer": "One meeting.",
                "documents": [
                    {"title": "Standup", "content": "{}", "source": "google_calendar", "resource_id": "x"},
                    "broken",
                ],
            }),
        ]

        result = self.client.search("What are my scheduled events on 2025-11-11?", "user-1")

        self.assertEqual(result.answer, "One meeting.")
        self.assertEqual(len(result.documents), 1)
        self.assertEqual(result.documents[0].title, "Standup")

        token_call, query_call = self.session.post.call_args_list
        self.assertEqual(token_call[0][0], "https://calendar.test/auth/user_token")
        self.assertEqual(token_call[1]["json"], {"user_id": "user-1"})
        self.assertEqual(token_call[1]["headers"]["Authorization"], "Bearer app-key")
        self.assertEqual(query_call[0][0], "https://calendar.test/memories/query")
        self.assertEqual(query_call[1]["headers"]["Authorization"], "Bearer user-token")
        self.assertEqual(query_call[1]["json"]["sources"], ["google_calendar"])
        self.assertEqual(query_call[1]["timeout"], 7)

    def test_upstream_errors_raise(self):
        self.session.post.side_effect = [
            response({"token": "user-token"}),
            response({"errors": [{"message": "quota exceeded"}], "documents": []}),
        ]

        with self.assertRaises(CalendarSourceError) as ctx:
            self.client.search("query", "user-1")
        self.assertIn("quota exceeded", str(ctx.exception))

    def test_timeout_raises(self):
        self.session.post.side_effect = requests.exceptions.Timeout("slow")

        with self.assertRaises(CalendarSourceError):
            self.client.search("query", "user-1")

    def test_missing_token_raises(self):
        self.session.post.return_value = response({})

        with self.assertRaises(CalendarSourceError):
            self.client.get_user_token("user-1")

    def test_missing_api_key(self):
        client = CalendarSourceClient(api_key="", session=self.session)

        with self.assertRaises(CalendarSourceError):
            client.search("query", "user-1")
        self.session.post.assert_not_called()
