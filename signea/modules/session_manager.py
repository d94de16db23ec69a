"""
Session Manager Module - SIGNEA Event Management Core

This module keeps the signed-in state of a user alive across navigations.
The external authentication provider is the primary source of truth; a
shadow session (a token stored locally and mirrored on the user row) is the
fallback consulted only when the provider reports no session.

A shadow session is valid only while the current time is before its expiry,
the last activity is younger than the inactivity timeout, and the user's
e-mail is confirmed. Every activity tick moves both timestamps forward
together, so the timeout is a sliding window.

States:
    UNKNOWN -> ACTIVE -> EXPIRED | SIGNED_OUT -> UNKNOWN (next login)

Features:
- Session validation against the provider and the shadow record
- Debounced activity refresh of the sliding window
- Activity monitoring with a disposer
- Best-effort logout that never fails
- Login flow issuing the shadow token
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from signea.modules.auth_provider import AuthEvent
from signea.modules.exceptions import AuthenticationError
from signea.modules.session_store import SESSION_EMAIL_KEY, SESSION_TOKEN_KEY

DEFAULT_INACTIVITY_TIMEOUT = timedelta(minutes=60)
DEFAULT_ACTIVITY_DEBOUNCE = timedelta(seconds=60)
DEFAULT_SETTLE_SECONDS = 1.0
DEFAULT_CHECK_INTERVAL_SECONDS = 30.0

ACTIVITY_EVENTS = ('mousemove', 'keydown', 'scroll', 'touchstart', 'click')


class SessionState(str, Enum):
    """Lifecycle states of the session manager."""
    UNKNOWN = 'unknown'
    ACTIVE = 'active'
    EXPIRED = 'expired'
    SIGNED_OUT = 'signed_out'


@dataclass(frozen=True)
class Session:
    """An authenticated session and its sliding window."""
    subject: str
    token: str
    issued_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    source: str

    def is_valid(self, now: datetime, inactivity_timeout: timedelta) -> bool:
        return now < self.expires_at and now - self.last_activity_at < inactivity_timeout


@dataclass(frozen=True)
class Loading:
    """The session has not been checked yet."""


@dataclass(frozen=True)
class Absent:
    """Nobody is signed in."""
    reason: str = ''


@dataclass(frozen=True)
class Present:
    """A valid session is held."""
    session: Session


AuthStatus = Union[Loading, Absent, Present]


def is_record_valid(record, now: datetime, inactivity_timeout: timedelta) -> bool:
    """
    Apply the three shadow-session invariants to a stored record.

    Args:
        record (ShadowRecord): Session columns of the user row
        now (datetime): Current time
        inactivity_timeout (timedelta): Maximum idle time

    Returns:
        bool: True if the record is confirmed, unexpired and recently active
    """
    if not record.email_confirmado:
        return False

    if record.session_expires_at is None or record.last_activity_at is None:
        return False

    return (now < record.session_expires_at and
            now - record.last_activity_at < inactivity_timeout)


class ActivitySource(ABC):
    """Something that emits user-interaction events."""

    @abstractmethod
    def add_listener(self, event: str, handler: Callable) -> None:
        """Register a handler for an event name."""

    @abstractmethod
    def remove_listener(self, event: str, handler: Callable) -> None:
        """Remove a previously registered handler."""


class ActivityEventSource(ActivitySource):
    """In-process activity source; the embedding shell calls emit()."""

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def add_listener(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        handlers = self.listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, *args) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(event, *args)

    def listener_count(self) -> int:
        return sum(len(handlers) for handlers in self.listeners.values())


class SessionManager:
    """
    Session lifecycle manager layered on an external auth provider.
    Collaborators are injected; the manager never reaches for globals.
    """

    def __init__(self, provider, shadow_store, local_store,
                 inactivity_timeout: timedelta = DEFAULT_INACTIVITY_TIMEOUT,
                 activity_debounce: timedelta = DEFAULT_ACTIVITY_DEBOUNCE,
                 settle_seconds: float = DEFAULT_SETTLE_SECONDS,
                 check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the session manager.

        Args:
            provider (AuthProvider): External authentication provider
            shadow_store (ShadowSessionStore): Remote shadow-session records
            local_store (KeyValueStore): Local copy of the shadow token
            inactivity_timeout (timedelta): Sliding inactivity window
            activity_debounce (timedelta): Minimum time between two refreshes
            settle_seconds (float): Quiet period collapsing an event burst
            check_interval_seconds (float): Period of the expiry check
            clock (Callable): Returns the current aware datetime
        """
        self.provider = provider
        self.shadow_store = shadow_store
        self.local_store = local_store
        self.inactivity_timeout = inactivity_timeout
        self.activity_debounce = activity_debounce
        self.settle_seconds = settle_seconds
        self.check_interval_seconds = check_interval_seconds
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

        self._state = SessionState.UNKNOWN
        self._session: Optional[Session] = None
        self._last_refresh: Optional[datetime] = None
        self._generation = 0
        self._monitor: Optional['ActivityMonitor'] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def status(self) -> AuthStatus:
        if self._state == SessionState.UNKNOWN:
            return Loading()
        if self._state == SessionState.ACTIVE and self._session is not None:
            return Present(self._session)
        return Absent(self._state.value)

    def _local_credentials(self):
        return self.local_store.get(SESSION_EMAIL_KEY), self.local_store.get(SESSION_TOKEN_KEY)

    def _is_stale(self, generation: int, token: Optional[str] = None) -> bool:
        """True if the state moved on while the caller was suspended."""
        if generation != self._generation:
            return True
        return token is not None and self.local_store.get(SESSION_TOKEN_KEY) != token

    def _activate(self, session: Session) -> None:
        if self._state != SessionState.ACTIVE:
            self.logger.info(f"Session active for {session.subject} ({session.source})")
        self._state = SessionState.ACTIVE
        self._session = session
        self._last_refresh = session.last_activity_at

    async def check_session(self) -> bool:
        """
        Re-validate the current session against the provider, then the shadow record.

        Refreshes the sliding window on success; clears local and remote
        storage when the shadow session is invalid. Never raises.

        Returns:
            bool: True if a valid session is held
        """
        generation = self._generation

        try:
            provider_session = await self.provider.get_session()
        except Exception as e:
            self.logger.warning(f"Auth provider unavailable, treating as no session: {str(e)}")
            provider_session = None

        if self._is_stale(generation):
            return False

        now = self.clock()

        if provider_session is not None:
            self._activate(Session(
                subject=provider_session.email,
                token=provider_session.access_token,
                issued_at=provider_session.issued_at,
                expires_at=now + self.inactivity_timeout,
                last_activity_at=now,
                source='provider'
            ))
            await self._refresh_shadow(now, generation)
            return True

        email, token = self._local_credentials()
        if not email or not token:
            self._state = SessionState.SIGNED_OUT if self._state != SessionState.ACTIVE else SessionState.EXPIRED
            self._session = None
            return False

        try:
            record = await self.shadow_store.find_record(email, token)
        except Exception as e:
            self.logger.error(f"Shadow session lookup failed for {email}: {str(e)}")
            await self._expire(email, token)
            return False

        if self._is_stale(generation, token):
            return False

        now = self.clock()
        try:
            record_valid = record is not None and is_record_valid(record, now, self.inactivity_timeout)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Unreadable shadow session record for {email}: {str(e)}")
            record_valid = False

        if not record_valid:
            self.logger.info(f"Shadow session invalid or expired for {email}")
            await self._expire(email, token)
            return False

        expires_at = now + self.inactivity_timeout
        try:
            await self.shadow_store.touch(email, token, now, expires_at)
        except Exception as e:
            self.logger.error(f"Shadow session refresh failed for {email}: {str(e)}")
            await self._expire(email, token)
            return False

        if self._is_stale(generation, token):
            return False

        issued_at = self._session.issued_at if self._session and self._session.token == token else now
        self._activate(Session(
            subject=email,
            token=token,
            issued_at=issued_at,
            expires_at=expires_at,
            last_activity_at=now,
            source='shadow'
        ))
        return True

    async def record_activity(self) -> bool:
        """
        Move the sliding window forward after user activity.

        Does nothing when no session is active or when the previous refresh
        is younger than the debounce floor.

        Returns:
            bool: True if the window was refreshed
        """
        if self._state != SessionState.ACTIVE or self._session is None:
            return False

        now = self.clock()
        if self._last_refresh is not None and now - self._last_refresh <= self.activity_debounce:
            return False

        session = self._session
        if not session.is_valid(now, self.inactivity_timeout):
            await self.check_expiry()
            return False

        generation = self._generation
        if not await self._refresh_shadow(now, generation) and session.source == 'shadow':
            return False

        if self._is_stale(generation) or self._session is None:
            return False

        self._session = replace(
            self._session,
            last_activity_at=now,
            expires_at=now + self.inactivity_timeout
        )
        self._last_refresh = now
        return True

    async def _refresh_shadow(self, now: datetime, generation: int) -> bool:
        email, token = self._local_credentials()
        if not email or not token:
            return False

        try:
            refreshed = await self.shadow_store.touch(email, token, now, now + self.inactivity_timeout)
        except Exception as e:
            self.logger.warning(f"Shadow session refresh failed for {email}: {str(e)}")
            return False

        return refreshed and not self._is_stale(generation, token)

    async def check_expiry(self) -> bool:
        """
        Expire the held session if its window has closed.

        Returns:
            bool: True if the session was expired by this call
        """
        if self._state != SessionState.ACTIVE or self._session is None:
            return False

        if self._session.is_valid(self.clock(), self.inactivity_timeout):
            return False

        self.logger.info(f"Session expired for {self._session.subject}")
        email, token = self._local_credentials()
        if self._session.source == 'provider':
            try:
                await self.provider.sign_out()
            except Exception as e:
                self.logger.warning(f"Provider sign-out after expiry failed: {str(e)}")

        await self._expire(email, token)
        return True

    async def _expire(self, email: Optional[str], token: Optional[str]) -> None:
        self._generation += 1
        self._state = SessionState.EXPIRED
        self._session = None
        self._last_refresh = None

        if email and token:
            try:
                await self.shadow_store.clear_session(email, token)
            except Exception as e:
                self.logger.warning(f"Failed to clear remote shadow session for {email}: {str(e)}")

        # a new login may have replaced the token while we were suspended
        if token is None or self.local_store.get(SESSION_TOKEN_KEY) == token:
            self.local_store.remove(SESSION_TOKEN_KEY)
            self.local_store.remove(SESSION_EMAIL_KEY)

    async def logout(self) -> None:
        """
        Sign out everywhere. Always completes; failures are only logged.
        Local storage is cleared last.
        """
        email, token = self._local_credentials()
        subject = self._session.subject if self._session else email

        self._generation += 1
        self._state = SessionState.SIGNED_OUT
        self._session = None
        self._last_refresh = None
        self.stop_activity_monitoring()

        try:
            await self.provider.sign_out()
        except Exception as e:
            self.logger.error(f"Provider sign-out failed: {str(e)}")

        if email and token:
            try:
                await self.shadow_store.clear_session(email, token)
            except Exception as e:
                self.logger.error(f"Failed to clear remote shadow session for {email}: {str(e)}")

        self.local_store.remove(SESSION_TOKEN_KEY)
        self.local_store.remove(SESSION_EMAIL_KEY)
        self.logger.info(f"User {subject or 'unknown'} logged out")

    async def handle_auth_event(self, event: AuthEvent, provider_session=None) -> bool:
        """
        Apply a provider push event; the provider takes precedence.

        Returns:
            bool: True if a valid session is held afterwards
        """
        if event == AuthEvent.SIGNED_OUT:
            if self._state == SessionState.ACTIVE:
                self.logger.info("Provider reported sign-out")
            self._generation += 1
            self._state = SessionState.SIGNED_OUT
            self._session = None
            self._last_refresh = None
            # the shadow token must not resurrect a session the provider ended
            self.local_store.remove(SESSION_TOKEN_KEY)
            self.local_store.remove(SESSION_EMAIL_KEY)
            return False

        return await self.check_session()

    async def start_session(self, email: str, password: str) -> Session:
        """
        Sign a user in and issue the shadow session.

        Args:
            email (str): User e-mail
            password (str): Plain password

        Returns:
            Session: The new active session

        Raises:
            AuthenticationError: If the e-mail is unconfirmed or the
                credentials are rejected
        """
        email = (email or '').strip().lower()

        user = await self.shadow_store.get_user(email)
        if user and not user['email_confirmado']:
            raise AuthenticationError(
                'Por favor, confirme seu e-mail antes de fazer login. Verifique sua caixa de entrada.'
            )

        provider_session = await self.provider.sign_in_with_password(email, password)

        now = self.clock()
        token = str(uuid.uuid4())
        expires_at = now + self.inactivity_timeout
        self._generation += 1

        try:
            await self.shadow_store.open_session(email, token, expires_at, now)
        except Exception as e:
            self.logger.error(f"Failed to store shadow session for {email}: {str(e)}")

        self.local_store.set(SESSION_TOKEN_KEY, token)
        self.local_store.set(SESSION_EMAIL_KEY, email)

        session = Session(
            subject=email,
            token=provider_session.access_token,
            issued_at=now,
            expires_at=expires_at,
            last_activity_at=now,
            source='provider'
        )
        self._activate(session)
        return session

    def start_activity_monitoring(self, source: ActivitySource) -> Callable[[], None]:
        """
        Listen for user activity and run the periodic expiry check.
        Must be called from a running event loop.

        Args:
            source (ActivitySource): Emitter of interaction events

        Returns:
            Callable[[], None]: Disposer removing listeners and pending timers
        """
        if self._monitor is not None and not self._monitor.disposed:
            self.logger.warning("Activity monitoring already running; replacing it")
            self._monitor.dispose()

        self._monitor = ActivityMonitor(
            self,
            source,
            settle_seconds=self.settle_seconds,
            check_interval_seconds=self.check_interval_seconds
        )
        return self._monitor.start()

    def stop_activity_monitoring(self) -> None:
        if self._monitor is not None:
            self._monitor.dispose()
            self._monitor = None


class ActivityMonitor:
    """
    Debounces activity events into session refreshes.
    A burst of events resets a single timer, so only the last one of the
    burst triggers a refresh.
    """

    def __init__(self, manager: SessionManager, source: ActivitySource,
                 settle_seconds: float = DEFAULT_SETTLE_SECONDS,
                 check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
                 events=ACTIVITY_EVENTS):
        self.manager = manager
        self.source = source
        self.settle_seconds = settle_seconds
        self.check_interval_seconds = check_interval_seconds
        self.events = tuple(events)
        self.disposed = False
        self._loop = None
        self._pending = None
        self._check_handle = None
        self._tasks = set()

    def start(self) -> Callable[[], None]:
        self._loop = asyncio.get_running_loop()
        for event in self.events:
            self.source.add_listener(event, self._on_activity)
        self._schedule_check()
        return self.dispose

    def _on_activity(self, *args) -> None:
        if self.disposed:
            return
        if self._pending is not None:
            self._pending.cancel()
        self._pending = self._loop.call_later(self.settle_seconds, self._flush)

    def _flush(self) -> None:
        self._pending = None
        if not self.disposed:
            self._spawn(self.manager.record_activity())

    def _schedule_check(self) -> None:
        self._check_handle = self._loop.call_later(self.check_interval_seconds, self._on_check_tick)

    def _on_check_tick(self) -> None:
        if self.disposed:
            return
        self._spawn(self.manager.check_expiry())
        self._schedule_check()

    def _spawn(self, coro) -> None:
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True

        for event in self.events:
            self.source.remove_listener(event, self._on_activity)

        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

        if self._check_handle is not None:
            self._check_handle.cancel()
            self._check_handle = None
