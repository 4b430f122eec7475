import asyncio
import inspect
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Set before any sessionauth import so Settings.from_env sees them
os.environ.setdefault("SECRET_KEY", "test-access-secret-do-not-use-in-production")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-do-not-use-in-production")
os.environ.setdefault("MAGIC_LINK_SECRET", "test-magic-link-secret-do-not-use-in-production")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("USE_MEMORY_CACHE", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from sessionauth.config import Settings, reset_settings_cache  # noqa: E402
from sessionauth.service.auth import SessionAuthority  # noqa: E402
from sessionauth.service.credentials import CredentialVerifier  # noqa: E402
from sessionauth.storage.accounts import MemoryAccountStore  # noqa: E402
from sessionauth.storage.session_cache import MemorySessionCache  # noqa: E402

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock shared by the authority and the memory cache."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.timestamp()

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings():
    return Settings(
        access_token_secret="Access-Secret_for-Automation-Only-123456789",
        refresh_token_secret="Refresh-Secret_for-Automation-Only-987654321",
        magic_link_secret="MagicLink-Secret_for-Automation-Only-555",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def account_store():
    return MemoryAccountStore()


@pytest.fixture
def session_cache(clock):
    return MemorySessionCache(clock=clock.epoch)


@pytest.fixture
def authority(settings, account_store, session_cache, clock):
    return SessionAuthority(settings, account_store, session_cache, clock=clock)


@pytest.fixture
def password_hasher(account_store):
    return CredentialVerifier(account_store)


@pytest.fixture
def test_account(account_store, password_hasher):
    """Account user@example.com with password 'correctpw'."""
    digest, _ = password_hasher.hash_password("correctpw")
    return account_store.add_account("user@example.com", digest)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
