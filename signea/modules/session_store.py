"""
Session Store Module - SIGNEA Event Management Core

Storage collaborators of the session lifecycle manager:

- a key-value store holding the local copy of the shadow session
  (``session_token`` and ``session_email``), either in memory or in the
  Flask cookie session;
- the remote shadow-session store, backed by the ``users`` table, queried
  and updated by exact match on e-mail and token.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from signea.modules.exceptions import NetworkError

logger = logging.getLogger(__name__)

SESSION_TOKEN_KEY = 'session_token'
SESSION_EMAIL_KEY = 'session_email'


class KeyValueStore(ABC):
    """Durable string key-value storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""


class MemoryKeyValueStore(KeyValueStore):
    """Key-value store living in process memory."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FlaskSessionStore(KeyValueStore):
    """Key-value store over the Flask session of the current request."""

    def __init__(self, session):
        self.session = session

    def get(self, key: str) -> Optional[str]:
        return self.session.get(key)

    def set(self, key: str, value: str) -> None:
        self.session[key] = value

    def remove(self, key: str) -> None:
        self.session.pop(key, None)


@dataclass
class ShadowRecord:
    """Session columns of a user row."""
    email: str
    session_token: Optional[str]
    session_expires_at: Optional[datetime]
    last_activity_at: Optional[datetime]
    email_confirmado: bool


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    # SQLite CURRENT_TIMESTAMP and external writers store naive UTC values
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ShadowSessionStore:
    """
    Remote shadow-session records stored in the users table.
    Database failures surface as NetworkError so the session manager can
    treat them like any other backend outage.
    """

    def __init__(self, database_manager):
        """
        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager

    async def get_user(self, email: str) -> Optional[Dict[str, Any]]:
        """Return the user row for an e-mail, or None."""
        try:
            return self.db.execute_query(
                "SELECT id, email, full_name, email_confirmado FROM users WHERE email = ?",
                (email,),
                fetch_all=False
            )
        except sqlite3.Error as e:
            raise NetworkError(f"Failed to load user {email}: {e}")

    async def find_record(self, email: str, token: str) -> Optional[ShadowRecord]:
        """
        Find the session record matching an e-mail and token exactly.

        Returns:
            ShadowRecord: The record, or None if no row matches
        """
        try:
            row = self.db.execute_query(
                """SELECT email, session_token, session_expires_at, last_activity_at,
                          email_confirmado
                   FROM users WHERE email = ? AND session_token = ?""",
                (email, token),
                fetch_all=False
            )
        except sqlite3.Error as e:
            raise NetworkError(f"Failed to load session record for {email}: {e}")

        if not row:
            return None

        return ShadowRecord(
            email=row['email'],
            session_token=row['session_token'],
            session_expires_at=_parse_timestamp(row['session_expires_at']),
            last_activity_at=_parse_timestamp(row['last_activity_at']),
            email_confirmado=bool(row['email_confirmado'])
        )

    async def open_session(self, email: str, token: str,
                           expires_at: datetime, last_activity_at: datetime) -> bool:
        """
        Store a new session token on the user row.

        Returns:
            bool: True if the user row exists and was updated
        """
        try:
            affected = self.db.execute_update(
                """UPDATE users SET session_token = ?, session_expires_at = ?,
                                    last_activity_at = ?, updated_at = CURRENT_TIMESTAMP
                   WHERE email = ?""",
                (token, expires_at.isoformat(), last_activity_at.isoformat(), email)
            )
        except sqlite3.Error as e:
            raise NetworkError(f"Failed to open session for {email}: {e}")

        return affected > 0

    async def touch(self, email: str, token: str,
                    last_activity_at: datetime, expires_at: datetime) -> bool:
        """
        Move the sliding window of a session forward.

        Returns:
            bool: True if the record still exists
        """
        try:
            affected = self.db.execute_update(
                """UPDATE users SET last_activity_at = ?, session_expires_at = ?
                   WHERE email = ? AND session_token = ?""",
                (last_activity_at.isoformat(), expires_at.isoformat(), email, token)
            )
        except sqlite3.Error as e:
            raise NetworkError(f"Failed to refresh session for {email}: {e}")

        return affected > 0

    async def clear_session(self, email: str, token: str) -> None:
        """Remove the session token from the matching user row."""
        try:
            self.db.execute_update(
                """UPDATE users SET session_token = NULL, session_expires_at = NULL,
                                    last_activity_at = NULL
                   WHERE email = ? AND session_token = ?""",
                (email, token)
            )
        except sqlite3.Error as e:
            raise NetworkError(f"Failed to clear session for {email}: {e}")

        logger.info(f"Shadow session cleared for {email}")
