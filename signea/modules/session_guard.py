"""
Session Guard Module - SIGNEA Event Management Core

Guards a protected area of the application. On mount it checks the
session, starts activity monitoring once the session is confirmed and
listens to the auth provider so out-of-band sign-ins, refreshes and
sign-outs take effect immediately. Unauthenticated users are redirected
silently through an injected callback; no error is shown.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from signea.modules.auth_provider import AuthEvent
from signea.modules.session_manager import Absent, AuthStatus, Loading

DEFAULT_GUARD_TIMEOUT_SECONDS = 10.0


class SessionGuard:
    """
    Route guard tying a session manager to an activity source.
    Owns the single activity monitor of the protected area.
    """

    def __init__(self, manager, provider, activity_source,
                 on_unauthenticated: Callable[[str], Any],
                 timeout_seconds: float = DEFAULT_GUARD_TIMEOUT_SECONDS):
        """
        Args:
            manager (SessionManager): Session lifecycle manager
            provider (AuthProvider): Provider whose events are followed
            activity_source (ActivitySource): Emitter of interaction events
            on_unauthenticated (Callable): Redirect callback receiving the
                path the user tried to open
            timeout_seconds (float): Bound on the initial session check
        """
        self.manager = manager
        self.provider = provider
        self.activity_source = activity_source
        self.on_unauthenticated = on_unauthenticated
        self.timeout_seconds = timeout_seconds
        self.logger = logging.getLogger(__name__)

        self.path = '/'
        self.mounted = False
        self.checking = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._dispose_monitor: Optional[Callable[[], None]] = None

    @property
    def status(self) -> AuthStatus:
        if self.checking:
            return Loading()
        if not self.mounted:
            return Absent('unmounted')
        return self.manager.status

    async def mount(self, path: str = '/') -> bool:
        """
        Check the session for a protected path.

        Returns:
            bool: True if the user may see the protected content
        """
        self.path = path
        self.mounted = True
        self.checking = True
        self._unsubscribe = self.provider.on_auth_state_change(self._on_auth_event)

        check = asyncio.ensure_future(self.manager.check_session())
        try:
            done, _ = await asyncio.wait({check}, timeout=self.timeout_seconds)
            if check in done:
                is_valid = check.result()
            else:
                self.logger.warning("Timed out while checking authentication")
                # a late result must not activate a session after the redirect
                check.cancel()
                is_valid = False
        except Exception as e:
            self.logger.error(f"Authentication check failed: {str(e)}")
            is_valid = False
        finally:
            self.checking = False

        if not self.mounted:
            return False

        if is_valid:
            self._start_monitoring()
        else:
            await self._redirect()

        return is_valid

    def unmount(self) -> None:
        """Tear down subscriptions and the activity monitor."""
        self.mounted = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._stop_monitoring()

    async def _on_auth_event(self, event: AuthEvent, provider_session) -> None:
        if not self.mounted:
            return

        if event == AuthEvent.SIGNED_OUT:
            await self.manager.handle_auth_event(event, provider_session)
            self._stop_monitoring()
            await self._redirect()
            return

        if event in (AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED):
            is_valid = await self.manager.handle_auth_event(event, provider_session)
            if is_valid and self.mounted:
                self._stop_monitoring()
                self._start_monitoring()

    def _start_monitoring(self) -> None:
        if self._dispose_monitor is None:
            self._dispose_monitor = self.manager.start_activity_monitoring(self.activity_source)

    def _stop_monitoring(self) -> None:
        if self._dispose_monitor is not None:
            self._dispose_monitor()
            self._dispose_monitor = None

    async def _redirect(self) -> None:
        result = self.on_unauthenticated(self.path)
        if inspect.isawaitable(result):
            await result
