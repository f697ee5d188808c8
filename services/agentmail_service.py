# agentmail_service.py
import base64
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import requests

import config
from reservation_manager.types import ThreadMessage

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r'^"?([^"<]+?)"?\s*<([^>]+)>$')
INVITE_FILENAME = "invite.ics"
INVITE_CONTENT_TYPE = "text/calendar; method=REQUEST"


class DeliveryError(Exception):
    """Raised when an outbound reply could not be handed to the mail service."""


def parse_address(value: str) -> Tuple[str, str]:
    """Splits 'Jane Doe <jane@example.com>' into ('Jane Doe', 'jane@example.com')."""
    value = (value or "").strip()
    match = ADDRESS_PATTERN.match(value)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return "", value


class AgentMailClient:
    """Thin client for the AgentMail inbox API (replies and thread lookups)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key if api_key is not None else config.AGENTMAIL_API_KEY
        self.base_url = (base_url or config.AGENTMAIL_API_BASE_URL).rstrip("/")
        self.timeout = timeout or config.MAIL_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    def reply(
        self,
        inbox_id: str,
        message_id: str,
        text: str,
        subject: Optional[str] = None,
        ics_content: Optional[str] = None,
        cc: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Replies to a message in the inbox, optionally attaching a calendar invite.

        Raises:
            DeliveryError: If the API key is missing or the request fails.
        """
        if not self.api_key:
            raise DeliveryError("AGENTMAIL_API_KEY is not configured.")

        payload: Dict[str, Any] = {"text": text}
        if subject:
            payload["subject"] = subject
        if cc:
            payload["cc"] = cc
        if ics_content:
            payload["attachments"] = [{
                "filename": INVITE_FILENAME,
                "content": base64.b64encode(ics_content.encode("utf-8")).decode("ascii"),
                "content_type": INVITE_CONTENT_TYPE
            }]

        url = f"{self.base_url}/inboxes/{inbox_id}/messages/{message_id}/reply"
        try:
            response = self.session.post(url, headers=self._headers(), json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as err:
            raise DeliveryError(f"Error replying to message {message_id}: {err}") from err

        logger.info("Reply sent successfully to message %s", message_id)
        try:
            return response.json()
        except ValueError:
            return {}

    def get_thread(self, thread_id: str) -> List[ThreadMessage]:
        """Returns the messages of a thread, oldest first.

        Raises:
            requests.exceptions.RequestException: If the thread cannot be fetched.
        """
        response = self.session.get(f"{self.base_url}/threads/{thread_id}", headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()
        data = response.json()

        messages = []
        for raw in data.get("messages", []) if isinstance(data, dict) else []:
            if not isinstance(raw, dict):
                continue
            messages.append(ThreadMessage(
                from_=raw.get("from") or raw.get("from_") or "Unknown",
                timestamp=raw.get("timestamp") or raw.get("created_at"),
                text=raw.get("text") or raw.get("extracted_text") or raw.get("preview") or ""
            ))
        messages.sort(key=lambda msg: msg.timestamp or "")
        return messages
