import logging
import sqlite3
from typing import Optional, Tuple

from pydantic import ValidationError

from reservation_manager.types import InboxProfile, UserProfile, WorkingHours
from repositories.database import Database

logger = logging.getLogger(__name__)


class UserRepository:
    """Inbox owners and their scheduling preferences."""

    def __init__(self, database: Optional[Database] = None):
        self._db = database or Database()

    def get_user_by_id(self, user_id: str) -> Optional[UserProfile]:
        try:
            row = self._db.get_user(user_id)
        except sqlite3.Error as e:
            logger.error("Database error while getting user %s: %s", user_id, e)
            return None
        if not row:
            return None

        try:
            return UserProfile(
                id=row['id'],
                email=row['email'],
                name=row['name'],
                timezone=row['timezone'],
                working_hours=WorkingHours(start=row['working_hours_start'], end=row['working_hours_end'])
            )
        except ValidationError as e:
            logger.error("Stored preferences for user %s are invalid: %s", user_id, e)
            return None

    def get_user_by_inbox(self, inbox_id: str) -> Tuple[Optional[InboxProfile], Optional[UserProfile]]:
        """Resolves an inbox to its profile and owner. Either may be None when unknown."""
        try:
            row = self._db.get_inbox(inbox_id)
        except sqlite3.Error as e:
            logger.error("Database error while getting inbox %s: %s", inbox_id, e)
            return None, None
        if not row:
            logger.info("No inbox record for %s", inbox_id)
            return None, None

        inbox = InboxProfile(**row)
        return inbox, self.get_user_by_id(inbox.user_id)

    def save_user(self, user: UserProfile) -> None:
        try:
            self._db.save_user({
                'id': user.id,
                'email': user.email,
                'name': user.name,
                'timezone': user.timezone,
                'working_hours_start': user.working_hours.start,
                'working_hours_end': user.working_hours.end
            })
        except sqlite3.Error as e:
            logger.error("Database error while saving user %s: %s", user.id, e)
            raise

    def save_inbox(self, inbox: InboxProfile) -> None:
        try:
            self._db.save_inbox(inbox.model_dump())
        except sqlite3.Error as e:
            logger.error("Database error while saving inbox %s: %s", inbox.inbox_id, e)
            raise
