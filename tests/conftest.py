import asyncio
import inspect
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Configure before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from backoffice.config import Settings  # noqa: E402
from backoffice.service.auth import AuthService  # noqa: E402
from backoffice.service.authorization import PermissionEvaluator  # noqa: E402
from backoffice.service.rate_limit import LoginRateLimiter  # noqa: E402
from backoffice.service.runtime import reset_runtime_for_tests  # noqa: E402
from backoffice.service.session import RequestContext, SessionManager  # noqa: E402
from backoffice.storage.memory import MemoryStore  # noqa: E402
from backoffice.storage.sessions import MemorySessionStore  # noqa: E402

TEST_PASSWORD = "Correct-Horse-42"


class ManualClock:
    """Deterministic clock; advance it to simulate idle time or block expiry."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings():
    return Settings(session_lifetime_minutes=15, rate_limit_attempts=3, rate_limit_minutes=15)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def hasher():
    # Cheap parameters keep the suite fast; production uses library defaults
    return PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID)


@pytest.fixture
def sessions(store, settings, clock):
    return SessionManager(MemorySessionStore(clock=clock), settings, store, clock=clock)


@pytest.fixture
def auth(store, sessions, hasher):
    return AuthService(store, sessions, hasher=hasher)


@pytest.fixture
def authz(sessions, store):
    return PermissionEvaluator(sessions, store)


@pytest.fixture
def ctx():
    return RequestContext(client_address="203.0.113.7")


@pytest.fixture
def limiter_factory(store, clock, settings):
    def _make(ctx: RequestContext | None = None) -> LoginRateLimiter:
        return LoginRateLimiter(
            store,
            max_attempts=settings.rate_limit_attempts,
            block_minutes=settings.rate_limit_minutes,
            clock=clock,
            logged=ctx.logged_attempt_addresses if ctx is not None else None,
        )

    return _make


@pytest.fixture
def active_account(store, hasher):
    return store.create_account("alice", hasher.hash(TEST_PASSWORD), name="Alice Doe")


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
