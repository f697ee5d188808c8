import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, ValidationError

import config

logger = logging.getLogger(__name__)


class CalendarSourceError(Exception):
    """Raised when the calendar memories could not be searched."""


# --- BaseModel definitions for API responses ---
class CalendarDocument(BaseModel):
    model_config = ConfigDict(extra='allow')
    title: Optional[str] = None
    content: Any = None  # JSON string, object or free text; untrusted
    source: Optional[str] = None


class CalendarSearchResult(BaseModel):
    answer: Optional[str] = None
    documents: List[CalendarDocument] = []


class CalendarSourceClient:
    """Searches a user's calendar through the Hyperspell memories API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        sources: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key if api_key is not None else config.HYPERSPELL_API_KEY
        self.base_url = (base_url or config.HYPERSPELL_API_BASE_URL).rstrip("/")
        self.sources = sources or list(config.CALENDAR_SOURCES)
        self.timeout = timeout or config.CALENDAR_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _post(self, path: str, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json"
        }
        try:
            response = self.session.post(f"{self.base_url}{path}", headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as err:
            raise CalendarSourceError(f"Request error ({path}): {err}") from err
        except ValueError as err:
            raise CalendarSourceError(f"Invalid JSON from {path}: {err}") from err
        if not isinstance(data, dict):
            raise CalendarSourceError(f"Unexpected response structure from {path}.")
        return data

    def get_user_token(self, identity: str) -> str:
        """Exchanges the API key for a token scoped to one user.

        Raises:
            CalendarSourceError: If the API key is missing or the exchange fails.
        """
        if not self.api_key:
            raise CalendarSourceError("HYPERSPELL_API_KEY is not configured.")
        data = self._post("/auth/user_token", self.api_key, {"user_id": identity})
        token = data.get("token")
        if not token:
            raise CalendarSourceError(f"No user token returned for identity {identity}.")
        return token

    def search(self, query: str, identity: str, want_answer: bool = True) -> CalendarSearchResult:
        """Searches the user's calendar memories.

        Args:
            query (str): Natural-language or time-bounded question about the calendar.
            identity (str): The user whose calendar is searched.
            want_answer (bool, optional): Ask the service for a summarized answer. Defaults to True.

        Returns:
            CalendarSearchResult: The answer text and the matching documents.
            Documents that do not have a usable shape are skipped.

        Raises:
            CalendarSourceError: On transport, auth or upstream errors.
        """
        token = self.get_user_token(identity)
        data = self._post("/memories/query", token, {
            "query": query,
            "answer": want_answer,
            "sources": self.sources
        })

        errors = data.get("errors") or []
        if errors:
            messages = ", ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors)
            raise CalendarSourceError(f"Failed to query calendar: {messages}")

        raw_documents = data.get("documents") or []
        if not isinstance(raw_documents, list):
            logger.warning("'documents' field is not a list, ignoring it.")
            raw_documents = []

        documents = []
        for raw in raw_documents:
            try:
                documents.append(CalendarDocument.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed calendar document: %r", raw)

        answer = data.get("answer")
        logger.debug("Calendar query returned %d documents", len(documents))
        return CalendarSearchResult(answer=answer if isinstance(answer, str) else None, documents=documents)
