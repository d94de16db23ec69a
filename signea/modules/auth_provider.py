"""
Authentication Provider Module - SIGNEA Event Management Core

This module defines the interface of the external authentication provider
the session manager layers on top of, and a database-backed implementation
of it. The provider is the primary source of truth for a signed-in user:
it issues sessions, signs users out and pushes state-change events to
subscribers.

Features:
- Provider interface (get_session, sign_in_with_password, sign_out,
  on_auth_state_change)
- Password verification with werkzeug hashes
- Provider sessions persisted in an injected key-value store
- Auth state change events (SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED)
- User account creation and e-mail confirmation
"""

import inspect
import json
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from signea.modules.email_validation import (
    VALID_EMAIL_DOMAINS,
    get_email_validation_error_message,
    is_valid_institutional_email,
)
from signea.modules.exceptions import AuthenticationError

PROVIDER_SESSION_KEY = 'provider_session'

DEFAULT_TOKEN_TTL = timedelta(hours=1)
PASSWORD_MIN_LENGTH = 8


class AuthEvent(str, Enum):
    """Events pushed by the provider to its subscribers."""
    SIGNED_IN = 'SIGNED_IN'
    SIGNED_OUT = 'SIGNED_OUT'
    TOKEN_REFRESHED = 'TOKEN_REFRESHED'


@dataclass(frozen=True)
class ProviderSession:
    """A session issued by the authentication provider."""
    access_token: str
    email: str
    issued_at: datetime
    expires_at: datetime

    def to_json(self) -> str:
        return json.dumps({
            'access_token': self.access_token,
            'email': self.email,
            'issued_at': self.issued_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> 'ProviderSession':
        data = json.loads(raw)
        return cls(
            access_token=data['access_token'],
            email=data['email'],
            issued_at=datetime.fromisoformat(data['issued_at']),
            expires_at=datetime.fromisoformat(data['expires_at'])
        )


AuthStateCallback = Callable[[AuthEvent, Optional[ProviderSession]], Any]


class AuthProvider(ABC):
    """
    External authentication provider.
    Subscribers registered through on_auth_state_change receive every
    event the provider emits; callbacks may be plain functions or coroutines.
    """

    def __init__(self):
        self._subscribers: List[AuthStateCallback] = []

    @abstractmethod
    async def get_session(self) -> Optional[ProviderSession]:
        """Return the current provider session, or None."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        """
        Sign a user in.

        Raises:
            AuthenticationError: If the credentials are rejected
        """

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current provider session."""

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """
        Subscribe to auth state changes.

        Returns:
            Callable[[], None]: Function removing the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _emit(self, event: AuthEvent, session: Optional[ProviderSession]) -> None:
        for callback in list(self._subscribers):
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result


class DatabaseAuthProvider(AuthProvider):
    """
    Authentication provider backed by the users table.
    Verifies password hashes and keeps the issued session in a key-value
    store, expiring it after a fixed time to live.
    """

    def __init__(self, database_manager, store,
                 token_ttl: timedelta = DEFAULT_TOKEN_TTL,
                 clock: Optional[Callable[[], datetime]] = None,
                 email_domains: Iterable[str] = VALID_EMAIL_DOMAINS):
        """
        Initialize the provider.

        Args:
            database_manager: Database manager instance
            store (KeyValueStore): Storage for the issued session
            token_ttl (timedelta): Lifetime of an issued session
            clock (Callable): Returns the current aware datetime
            email_domains (Iterable[str]): Domains accepted at registration
        """
        super().__init__()
        self.db = database_manager
        self.store = store
        self.token_ttl = token_ttl
        self.email_domains = tuple(email_domains)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

    async def get_session(self) -> Optional[ProviderSession]:
        raw = self.store.get(PROVIDER_SESSION_KEY)
        if not raw:
            return None

        try:
            session = ProviderSession.from_json(raw)
        except (ValueError, KeyError, TypeError):
            self.logger.warning("Discarding unreadable provider session")
            self.store.remove(PROVIDER_SESSION_KEY)
            return None

        if session.expires_at <= self.clock():
            return None

        return session

    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        email = (email or '').strip().lower()
        user = self.db.execute_query(
            "SELECT email, password_hash FROM users WHERE email = ?",
            (email,),
            fetch_all=False
        )

        if not user or not check_password_hash(user['password_hash'], password or ''):
            self.logger.warning(f"Authentication failed for {email}")
            raise AuthenticationError('E-mail ou senha incorretos.')

        session = self._issue_session(email)
        self.logger.info(f"User signed in: {email}")
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def refresh_session(self) -> Optional[ProviderSession]:
        """
        Reissue the current session with a new token and expiry.

        Returns:
            ProviderSession: The new session, or None if nobody is signed in
        """
        current = await self.get_session()
        if current is None:
            return None

        session = self._issue_session(current.email)
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def sign_out(self) -> None:
        had_session = self.store.get(PROVIDER_SESSION_KEY) is not None
        self.store.remove(PROVIDER_SESSION_KEY)

        if had_session:
            self.logger.info("Provider session signed out")
        await self._emit(AuthEvent.SIGNED_OUT, None)

    def _issue_session(self, email: str) -> ProviderSession:
        now = self.clock()
        session = ProviderSession(
            access_token=secrets.token_urlsafe(32),
            email=email,
            issued_at=now,
            expires_at=now + self.token_ttl
        )
        self.store.set(PROVIDER_SESSION_KEY, session.to_json())
        return session

    def create_user(self, email: str, full_name: str, password: str) -> Dict[str, Any]:
        """
        Create a user account with an unconfirmed e-mail.

        Args:
            email (str): Institutional e-mail address
            full_name (str): Full name
            password (str): Plain password

        Returns:
            Dict[str, Any]: Creation result
        """
        email = (email or '').strip().lower()

        if not is_valid_institutional_email(email, self.email_domains):
            return {'success': False, 'error': get_email_validation_error_message(self.email_domains)}

        if not password or len(password) < PASSWORD_MIN_LENGTH:
            return {
                'success': False,
                'error': f'A senha deve ter pelo menos {PASSWORD_MIN_LENGTH} caracteres'
            }

        existing = self.db.execute_query(
            "SELECT id FROM users WHERE email = ?", (email,), fetch_all=False
        )
        if existing:
            return {'success': False, 'error': 'E-mail já cadastrado'}

        user_id = self.db.execute_update(
            """INSERT INTO users (email, full_name, password_hash, email_confirmado)
               VALUES (?, ?, ?, 0)""",
            (email, full_name, generate_password_hash(password))
        )

        self.logger.info(f"User created: {email} (ID: {user_id})")
        return {'success': True, 'user_id': user_id, 'email': email}

    def confirm_email(self, email: str) -> bool:
        """Mark a user's e-mail as confirmed."""
        affected = self.db.execute_update(
            "UPDATE users SET email_confirmado = 1, updated_at = CURRENT_TIMESTAMP WHERE email = ?",
            ((email or '').strip().lower(),)
        )
        return affected > 0
