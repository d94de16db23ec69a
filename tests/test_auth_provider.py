"""Tests for the database-backed authentication provider."""

import asyncio
from datetime import timedelta

import pytest

from signea.modules.auth_provider import PROVIDER_SESSION_KEY, AuthEvent, ProviderSession
from signea.modules.exceptions import AuthenticationError


class TestCreateUser:
    """Account registration"""

    def test_creates_unconfirmed_user(self, provider, db):
        result = provider.create_user('Aluno@Aluno.IFFar.edu.br', 'Aluno', 'senha-segura-123')

        assert result['success']
        assert result['email'] == 'aluno@aluno.iffar.edu.br'

        row = db.execute_query(
            "SELECT email_confirmado, password_hash FROM users WHERE id = ?",
            (result['user_id'],),
            fetch_all=False
        )
        assert row['email_confirmado'] == 0
        assert row['password_hash'] != 'senha-segura-123'

    def test_rejects_external_domain(self, provider):
        result = provider.create_user('aluno@gmail.com', 'Aluno', 'senha-segura-123')
        assert not result['success']
        assert 'institucionais' in result['error']

    def test_rejects_short_password(self, provider):
        result = provider.create_user('aluno@aluno.iffar.edu.br', 'Aluno', 'curta')
        assert not result['success']

    def test_rejects_duplicate(self, provider, confirmed_user):
        result = provider.create_user(confirmed_user['email'], 'Outro', 'outra-senha-123')
        assert result == {'success': False, 'error': 'E-mail já cadastrado'}

    def test_confirm_email(self, provider):
        provider.create_user('prof@iffarroupilha.edu.br', 'Professor', 'senha-segura-123')
        assert provider.confirm_email('prof@iffarroupilha.edu.br') is True
        assert provider.confirm_email('ninguem@iffarroupilha.edu.br') is False


class TestSignIn:

    def test_issues_session(self, provider, confirmed_user, local_store, clock):
        session = asyncio.run(
            provider.sign_in_with_password(confirmed_user['email'], confirmed_user['password'])
        )

        assert session.email == confirmed_user['email']
        assert session.expires_at == clock.current + timedelta(hours=1)
        assert local_store.get(PROVIDER_SESSION_KEY) == session.to_json()

    def test_wrong_password(self, provider, confirmed_user):
        with pytest.raises(AuthenticationError) as exc_info:
            asyncio.run(provider.sign_in_with_password(confirmed_user['email'], 'errada'))
        assert exc_info.value.message == 'E-mail ou senha incorretos.'

    def test_unknown_user(self, provider):
        with pytest.raises(AuthenticationError):
            asyncio.run(provider.sign_in_with_password('x@aluno.iffar.edu.br', 'qualquer'))


class TestGetSession:

    def test_round_trips_through_store(self, provider, confirmed_user):
        async def scenario():
            issued = await provider.sign_in_with_password(
                confirmed_user['email'], confirmed_user['password']
            )
            return issued, await provider.get_session()

        issued, current = asyncio.run(scenario())
        assert current == issued

    def test_expired_session_is_absent(self, provider, confirmed_user, clock):
        async def scenario():
            await provider.sign_in_with_password(confirmed_user['email'], confirmed_user['password'])
            clock.advance(hours=1)
            return await provider.get_session()

        assert asyncio.run(scenario()) is None

    def test_unreadable_session_is_discarded(self, provider, local_store):
        local_store.set(PROVIDER_SESSION_KEY, '{not json')
        assert asyncio.run(provider.get_session()) is None
        assert local_store.get(PROVIDER_SESSION_KEY) is None


class TestEvents:
    """Auth state change subscriptions"""

    def test_subscribers_receive_events(self, provider, confirmed_user):
        events = []

        async def async_listener(event, session):
            events.append(('async', event))

        provider.on_auth_state_change(lambda event, session: events.append(('sync', event)))
        provider.on_auth_state_change(async_listener)

        async def scenario():
            await provider.sign_in_with_password(confirmed_user['email'], confirmed_user['password'])
            await provider.refresh_session()
            await provider.sign_out()

        asyncio.run(scenario())

        assert [event for kind, event in events if kind == 'sync'] == [
            AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED, AuthEvent.SIGNED_OUT
        ]
        assert len(events) == 6

    def test_unsubscribe(self, provider):
        events = []
        unsubscribe = provider.on_auth_state_change(lambda event, session: events.append(event))
        unsubscribe()
        unsubscribe()

        asyncio.run(provider.sign_out())
        assert events == []

    def test_refresh_without_session(self, provider):
        assert asyncio.run(provider.refresh_session()) is None


class TestProviderSession:

    def test_json_round_trip(self, clock):
        session = ProviderSession(
            access_token='abc',
            email='aluno@aluno.iffar.edu.br',
            issued_at=clock.current,
            expires_at=clock.current + timedelta(hours=1)
        )
        assert ProviderSession.from_json(session.to_json()) == session
