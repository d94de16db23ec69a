"""Shared fixtures for the SIGNEA test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from signea.modules.auth_provider import DatabaseAuthProvider
from signea.modules.database_manager import DatabaseManager
from signea.modules.session_manager import SessionManager
from signea.modules.session_store import MemoryKeyValueStore, ShadowSessionStore

STUDENT_EMAIL = 'aluno@aluno.iffar.edu.br'
STUDENT_PASSWORD = 'senha-segura-123'


class FakeClock:
    """Controllable replacement for datetime.now(timezone.utc)."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / 'signea_test.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def local_store():
    return MemoryKeyValueStore()


@pytest.fixture
def provider(db, local_store, clock):
    return DatabaseAuthProvider(db, local_store, clock=clock)


@pytest.fixture
def shadow_store(db):
    return ShadowSessionStore(db)


@pytest.fixture
def manager(provider, shadow_store, local_store, clock):
    return SessionManager(
        provider,
        shadow_store,
        local_store,
        activity_debounce=timedelta(seconds=60),
        settle_seconds=0.01,
        check_interval_seconds=0.02,
        clock=clock
    )


@pytest.fixture
def confirmed_user(provider):
    """A registered student whose e-mail is confirmed."""
    result = provider.create_user(STUDENT_EMAIL, 'Aluno Teste', STUDENT_PASSWORD)
    assert result['success']
    provider.confirm_email(STUDENT_EMAIL)
    return {'email': STUDENT_EMAIL, 'password': STUDENT_PASSWORD}
