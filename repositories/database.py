import sqlite3
from typing import Any, Dict, Optional

import config


class Database:
    def __init__(self, db_path: Optional[str] = None):
        """Initialize database connection."""
        self.db_path = db_path or config.DATABASE_PATH
        self._conn = None
        self._init_db()

    def _get_connection(self):
        """Get database connection, creating a new one if needed."""
        if self._conn is None:
            # Controllers may be driven from worker threads; every write commits immediately
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def _init_db(self):
        """Initialize database tables if they don't exist."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                timezone TEXT NOT NULL,
                working_hours_start TEXT NOT NULL,
                working_hours_end TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS inboxes (
                inbox_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                persona TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_inboxes_user_id
            ON inboxes(user_id)
        """)

        conn.commit()

    def save_user(self, user_data: Dict[str, Any]) -> None:
        """Insert or replace a user row.

        Args:
            user_data: Dict with id, email, name, timezone, working_hours_start, working_hours_end
        """
        conn = self._get_connection()
        conn.execute("""
            INSERT OR REPLACE INTO users
            (id, email, name, timezone, working_hours_start, working_hours_end)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            user_data['id'],
            user_data['email'],
            user_data['name'],
            user_data['timezone'],
            user_data['working_hours_start'],
            user_data['working_hours_end']
        ))
        conn.commit()

    def save_inbox(self, inbox_data: Dict[str, Any]) -> None:
        conn = self._get_connection()
        conn.execute("""
            INSERT OR REPLACE INTO inboxes (inbox_id, user_id, name, persona)
            VALUES (?, ?, ?, ?)
        """, (
            inbox_data['inbox_id'],
            inbox_data['user_id'],
            inbox_data['name'],
            inbox_data['persona']
        ))
        conn.commit()

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().cursor()
        cursor.execute("""
            SELECT id, email, name, timezone, working_hours_start, working_hours_end
            FROM users
            WHERE id = ?
        """, (user_id,))
        row = cursor.fetchone()
        if not row:
            return None

        return {
            'id': row[0],
            'email': row[1],
            'name': row[2],
            'timezone': row[3],
            'working_hours_start': row[4],
            'working_hours_end': row[5]
        }

    def get_inbox(self, inbox_id: str) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().cursor()
        cursor.execute("""
            SELECT inbox_id, user_id, name, persona
            FROM inboxes
            WHERE inbox_id = ?
        """, (inbox_id,))
        row = cursor.fetchone()
        if not row:
            return None

        return {
            'inbox_id': row[0],
            'user_id': row[1],
            'name': row[2],
            'persona': row[3]
        }

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __del__(self):
        """Clean up database connection."""
        self.close()
