"""Tests for the session lifecycle manager and activity monitoring."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from signea.modules.auth_provider import PROVIDER_SESSION_KEY, AuthEvent
from signea.modules.exceptions import AuthenticationError, NetworkError
from signea.modules.session_manager import (
    ACTIVITY_EVENTS,
    Absent,
    ActivityEventSource,
    ActivityMonitor,
    Loading,
    Present,
    SessionState,
)
from signea.modules.session_store import SESSION_EMAIL_KEY, SESSION_TOKEN_KEY, ShadowRecord

STUDENT_EMAIL = 'aluno@aluno.iffar.edu.br'


def drop_provider_session(local_store):
    """Make the provider report no session so the shadow path is used."""
    local_store.remove(PROVIDER_SESSION_KEY)


async def login(manager, user):
    return await manager.start_session(user['email'], user['password'])


class TestStartSession:
    """Login flow"""

    def test_issues_shadow_session(self, manager, confirmed_user, local_store, shadow_store):
        async def scenario():
            session = await login(manager, confirmed_user)
            token = local_store.get(SESSION_TOKEN_KEY)
            record = await shadow_store.find_record(STUDENT_EMAIL, token)
            return session, token, record

        session, token, record = asyncio.run(scenario())

        assert session.subject == STUDENT_EMAIL
        assert session.source == 'provider'
        assert manager.state == SessionState.ACTIVE
        assert local_store.get(SESSION_EMAIL_KEY) == STUDENT_EMAIL
        assert token
        assert record is not None
        assert record.session_expires_at == session.expires_at

    def test_email_is_normalized(self, manager, confirmed_user):
        session = asyncio.run(manager.start_session('  ALUNO@aluno.iffar.edu.br ', confirmed_user['password']))
        assert session.subject == STUDENT_EMAIL

    def test_unconfirmed_email_is_rejected(self, manager, provider, local_store):
        provider.create_user('novo@aluno.iffar.edu.br', 'Novo', 'senha-segura-123')

        with pytest.raises(AuthenticationError) as exc_info:
            asyncio.run(manager.start_session('novo@aluno.iffar.edu.br', 'senha-segura-123'))

        assert 'confirme seu e-mail' in exc_info.value.message
        assert local_store.get(SESSION_TOKEN_KEY) is None
        assert manager.state == SessionState.UNKNOWN

    def test_wrong_password_is_rejected(self, manager, confirmed_user, local_store):
        with pytest.raises(AuthenticationError):
            asyncio.run(manager.start_session(STUDENT_EMAIL, 'senha-errada'))
        assert local_store.get(SESSION_TOKEN_KEY) is None

    def test_new_login_issues_new_token(self, manager, confirmed_user, local_store):
        asyncio.run(login(manager, confirmed_user))
        first = local_store.get(SESSION_TOKEN_KEY)
        asyncio.run(login(manager, confirmed_user))
        assert local_store.get(SESSION_TOKEN_KEY) != first


class TestCheckSession:
    """Session validation"""

    def test_no_credentials(self, manager):
        assert asyncio.run(manager.check_session()) is False
        assert manager.state == SessionState.SIGNED_OUT
        assert manager.status == Absent('signed_out')

    def test_provider_session_wins(self, manager, confirmed_user):
        async def scenario():
            await login(manager, confirmed_user)
            return await manager.check_session()

        assert asyncio.run(scenario()) is True
        assert manager.session.source == 'provider'

    def test_valid_shadow_record_refreshes_timestamps(self, manager, confirmed_user,
                                                      local_store, shadow_store, clock):
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            clock.advance(minutes=30)
            valid = await manager.check_session()
            record = await shadow_store.find_record(STUDENT_EMAIL, local_store.get(SESSION_TOKEN_KEY))
            return valid, record

        valid, record = asyncio.run(scenario())

        assert valid is True
        assert manager.session.source == 'shadow'
        assert record.last_activity_at == clock.current
        assert record.session_expires_at == clock.current + timedelta(minutes=60)

    def test_idempotent_without_activity(self, manager, confirmed_user, local_store):
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            return await manager.check_session(), await manager.check_session()

        assert asyncio.run(scenario()) == (True, True)

    def test_expired_record_clears_storage(self, manager, confirmed_user,
                                           local_store, shadow_store, clock):
        async def scenario():
            await login(manager, confirmed_user)
            token = local_store.get(SESSION_TOKEN_KEY)
            drop_provider_session(local_store)
            clock.advance(minutes=61)
            valid = await manager.check_session()
            record = await shadow_store.find_record(STUDENT_EMAIL, token)
            return valid, record

        valid, record = asyncio.run(scenario())

        assert valid is False
        assert record is None
        assert local_store.get(SESSION_TOKEN_KEY) is None
        assert local_store.get(SESSION_EMAIL_KEY) is None
        assert manager.state == SessionState.EXPIRED

    def test_inactivity_expires_session_before_expiry(self, manager, confirmed_user,
                                                      local_store, shadow_store, clock):
        """Expiry in the future does not help when the last activity is too old"""
        async def scenario():
            await login(manager, confirmed_user)
            token = local_store.get(SESSION_TOKEN_KEY)
            drop_provider_session(local_store)
            await shadow_store.touch(
                STUDENT_EMAIL,
                token,
                last_activity_at=clock.current - timedelta(minutes=61),
                expires_at=clock.current + timedelta(hours=2)
            )
            return await manager.check_session()

        assert asyncio.run(scenario()) is False
        assert local_store.get(SESSION_TOKEN_KEY) is None

    def test_unconfirmed_record_is_invalid(self, manager, confirmed_user,
                                           local_store, db):
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            db.execute_update(
                "UPDATE users SET email_confirmado = 0 WHERE email = ?", (STUDENT_EMAIL,)
            )
            return await manager.check_session()

        assert asyncio.run(scenario()) is False

    def test_token_mismatch_is_invalid(self, manager, confirmed_user, local_store):
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            local_store.set(SESSION_TOKEN_KEY, 'forged-token')
            return await manager.check_session()

        assert asyncio.run(scenario()) is False
        assert local_store.get(SESSION_TOKEN_KEY) is None

    def test_provider_error_falls_back_to_shadow(self, manager, confirmed_user, local_store):
        async def scenario():
            await login(manager, confirmed_user)
            manager.provider.get_session = AsyncMock(side_effect=NetworkError('offline'))
            return await manager.check_session()

        assert asyncio.run(scenario()) is True
        assert manager.session.source == 'shadow'

    def test_naive_timestamps_are_read_as_utc(self, manager, confirmed_user, local_store, db, clock):
        """Rows written with SQLite's own timestamp format stay usable"""
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            db.execute_update(
                "UPDATE users SET session_expires_at = ?, last_activity_at = ? WHERE email = ?",
                ('2099-01-01 00:00:00', clock.current.strftime('%Y-%m-%d %H:%M:%S'), STUDENT_EMAIL)
            )
            return await manager.check_session()

        assert asyncio.run(scenario()) is True
        assert manager.session.source == 'shadow'

    def test_uncomparable_record_fails_closed(self, manager, confirmed_user, local_store, clock):
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            naive_now = clock.current.replace(tzinfo=None)
            manager.shadow_store.find_record = AsyncMock(return_value=ShadowRecord(
                email=STUDENT_EMAIL,
                session_token=local_store.get(SESSION_TOKEN_KEY),
                session_expires_at=naive_now + timedelta(hours=1),
                last_activity_at=naive_now,
                email_confirmado=True
            ))
            return await manager.check_session()

        assert asyncio.run(scenario()) is False
        assert manager.state == SessionState.EXPIRED
        assert local_store.get(SESSION_TOKEN_KEY) is None

    def test_shadow_store_error_fails_closed(self, manager, confirmed_user, local_store):
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            manager.shadow_store.find_record = AsyncMock(side_effect=NetworkError('offline'))
            manager.shadow_store.clear_session = AsyncMock(side_effect=NetworkError('offline'))
            return await manager.check_session()

        assert asyncio.run(scenario()) is False
        assert manager.state == SessionState.EXPIRED
        assert local_store.get(SESSION_TOKEN_KEY) is None

    def test_logout_during_check_is_not_overwritten(self, manager, confirmed_user, local_store):
        """A check suspended on the store must not revive a session signed out meanwhile"""
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)

            release = asyncio.Event()
            real_find = manager.shadow_store.find_record

            async def slow_find(email, token):
                record = await real_find(email, token)
                await release.wait()
                return record

            manager.shadow_store.find_record = slow_find

            check = asyncio.ensure_future(manager.check_session())
            await asyncio.sleep(0)
            await manager.logout()
            release.set()
            return await check

        assert asyncio.run(scenario()) is False
        assert manager.state == SessionState.SIGNED_OUT
        assert manager.session is None
        assert local_store.get(SESSION_TOKEN_KEY) is None


class TestRecordActivity:
    """Sliding window refresh"""

    def test_requires_active_session(self, manager):
        assert asyncio.run(manager.record_activity()) is False

    def test_debounced(self, manager, confirmed_user, clock):
        async def scenario():
            await login(manager, confirmed_user)
            clock.advance(seconds=10)
            return await manager.record_activity()

        assert asyncio.run(scenario()) is False

    def test_refreshes_after_debounce(self, manager, confirmed_user, local_store,
                                      shadow_store, clock):
        async def scenario():
            await login(manager, confirmed_user)
            clock.advance(minutes=5)
            refreshed = await manager.record_activity()
            record = await shadow_store.find_record(STUDENT_EMAIL, local_store.get(SESSION_TOKEN_KEY))
            return refreshed, record

        refreshed, record = asyncio.run(scenario())

        assert refreshed is True
        assert manager.session.last_activity_at == clock.current
        assert record.last_activity_at == clock.current

    def test_window_slides_with_activity(self, manager, confirmed_user, local_store, clock):
        """Activity every 50 minutes keeps the session past the first hour"""
        async def scenario():
            await login(manager, confirmed_user)
            drop_provider_session(local_store)
            clock.advance(minutes=50)
            await manager.record_activity()
            clock.advance(minutes=50)
            return await manager.check_session()

        assert asyncio.run(scenario()) is True

    def test_idle_session_expires(self, manager, confirmed_user, local_store, clock):
        async def scenario():
            await login(manager, confirmed_user)
            clock.advance(minutes=61)
            return await manager.record_activity()

        assert asyncio.run(scenario()) is False
        assert manager.state == SessionState.EXPIRED
        assert local_store.get(SESSION_TOKEN_KEY) is None


class TestCheckExpiry:

    def test_valid_session_is_kept(self, manager, confirmed_user, clock):
        async def scenario():
            await login(manager, confirmed_user)
            clock.advance(minutes=59)
            return await manager.check_expiry()

        assert asyncio.run(scenario()) is False
        assert manager.state == SessionState.ACTIVE

    def test_expired_session_signs_out_provider(self, manager, confirmed_user, local_store, clock):
        async def scenario():
            await login(manager, confirmed_user)
            clock.advance(minutes=61)
            return await manager.check_expiry()

        assert asyncio.run(scenario()) is True
        assert manager.state == SessionState.EXPIRED
        assert local_store.get(PROVIDER_SESSION_KEY) is None
        assert local_store.get(SESSION_TOKEN_KEY) is None


class TestLogout:
    """Best-effort sign out"""

    def test_clears_everything(self, manager, confirmed_user, local_store, shadow_store):
        async def scenario():
            await login(manager, confirmed_user)
            token = local_store.get(SESSION_TOKEN_KEY)
            await manager.logout()
            return await shadow_store.find_record(STUDENT_EMAIL, token)

        assert asyncio.run(scenario()) is None
        assert manager.state == SessionState.SIGNED_OUT
        assert local_store.data == {}

    def test_never_raises(self, manager, confirmed_user, local_store):
        async def scenario():
            await login(manager, confirmed_user)
            manager.provider.sign_out = AsyncMock(side_effect=NetworkError('offline'))
            manager.shadow_store.clear_session = AsyncMock(side_effect=NetworkError('offline'))
            await manager.logout()

        asyncio.run(scenario())

        assert manager.state == SessionState.SIGNED_OUT
        assert local_store.get(SESSION_TOKEN_KEY) is None
        assert local_store.get(SESSION_EMAIL_KEY) is None

    def test_without_session(self, manager):
        asyncio.run(manager.logout())
        assert manager.state == SessionState.SIGNED_OUT


class TestAuthEvents:

    def test_signed_out_event_clears_shadow_token(self, manager, confirmed_user, local_store):
        async def scenario():
            await login(manager, confirmed_user)
            return await manager.handle_auth_event(AuthEvent.SIGNED_OUT)

        assert asyncio.run(scenario()) is False
        assert manager.state == SessionState.SIGNED_OUT
        assert local_store.get(SESSION_TOKEN_KEY) is None

    def test_signed_in_event_rechecks(self, manager, confirmed_user):
        async def scenario():
            await login(manager, confirmed_user)
            return await manager.handle_auth_event(AuthEvent.SIGNED_IN)

        assert asyncio.run(scenario()) is True


class TestStatus:

    def test_variants(self, manager, confirmed_user):
        assert manager.status == Loading()

        asyncio.run(login(manager, confirmed_user))
        status = manager.status
        assert isinstance(status, Present)
        assert status.session.subject == STUDENT_EMAIL

        asyncio.run(manager.logout())
        assert manager.status == Absent('signed_out')


class TestActivityMonitor:
    """Debounced activity listener"""

    @pytest.fixture
    def fake_manager(self):
        fake = MagicMock()
        fake.record_activity = AsyncMock(return_value=True)
        fake.check_expiry = AsyncMock(return_value=False)
        return fake

    def test_burst_collapses_to_one_refresh(self, fake_manager):
        source = ActivityEventSource()

        async def scenario():
            monitor = ActivityMonitor(fake_manager, source, settle_seconds=0.02,
                                      check_interval_seconds=60)
            dispose = monitor.start()
            for _ in range(5):
                source.emit('mousemove')
                source.emit('keydown')
            await asyncio.sleep(0.1)
            dispose()

        asyncio.run(scenario())
        assert fake_manager.record_activity.await_count == 1

    def test_listens_to_every_activity_event(self, fake_manager):
        source = ActivityEventSource()

        async def scenario():
            dispose = ActivityMonitor(fake_manager, source, check_interval_seconds=60).start()
            count = source.listener_count()
            dispose()
            return count

        assert asyncio.run(scenario()) == len(ACTIVITY_EVENTS)
        assert source.listener_count() == 0

    def test_dispose_cancels_pending_refresh(self, fake_manager):
        source = ActivityEventSource()

        async def scenario():
            monitor = ActivityMonitor(fake_manager, source, settle_seconds=0.02,
                                      check_interval_seconds=60)
            dispose = monitor.start()
            source.emit('click')
            dispose()
            dispose()
            source.emit('click')
            await asyncio.sleep(0.05)
            return monitor.disposed

        assert asyncio.run(scenario()) is True
        fake_manager.record_activity.assert_not_awaited()

    def test_periodic_expiry_check(self, fake_manager):
        source = ActivityEventSource()

        async def scenario():
            dispose = ActivityMonitor(fake_manager, source, check_interval_seconds=0.01).start()
            await asyncio.sleep(0.05)
            dispose()

        asyncio.run(scenario())
        assert fake_manager.check_expiry.await_count >= 2

    def test_manager_replaces_running_monitor(self, manager, confirmed_user):
        first_source = ActivityEventSource()
        second_source = ActivityEventSource()

        async def scenario():
            await login(manager, confirmed_user)
            manager.start_activity_monitoring(first_source)
            dispose = manager.start_activity_monitoring(second_source)
            counts = (first_source.listener_count(), second_source.listener_count())
            dispose()
            return counts

        assert asyncio.run(scenario()) == (0, len(ACTIVITY_EVENTS))
        assert second_source.listener_count() == 0

    def test_activity_refreshes_real_session(self, manager, confirmed_user, clock):
        source = ActivityEventSource()

        async def scenario():
            await login(manager, confirmed_user)
            dispose = manager.start_activity_monitoring(source)
            clock.advance(minutes=2)
            source.emit('scroll')
            await asyncio.sleep(0.05)
            dispose()

        asyncio.run(scenario())
        assert manager.session.last_activity_at == clock.current
