from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional, Union
from urllib.parse import urlparse, urlunparse

from backoffice.config import SessionBackend, Settings, get_settings, reset_settings_cache
from backoffice.logging import get_logger
from backoffice.service.auth import AuthService, SuperadminIpPolicy
from backoffice.service.authorization import PermissionEvaluator
from backoffice.service.csrf import CsrfGuard
from backoffice.service.rate_limit import LoginRateLimiter
from backoffice.service.session import RequestContext, SessionManager
from backoffice.storage.memory import MemoryStore
from backoffice.storage.models import utcnow
from backoffice.storage.postgres import PostgresStore
from backoffice.storage.sessions import MemorySessionStore, RedisSessionStore, SessionStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            session_backend=self.settings.session_backend.value,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.session_store = self._build_session_store()
        self.sessions = SessionManager(
            self.session_store, self.settings, self.store, clock=self.clock
        )
        self.csrf = CsrfGuard()
        self.authz = PermissionEvaluator(self.sessions, self.store)
        self.auth = AuthService(
            self.store,
            self.sessions,
            ip_policy=SuperadminIpPolicy(self.settings.superadmin_allowed_ips),
        )

    def _build_session_store(self) -> SessionStore:
        if self.settings.session_backend != SessionBackend.REDIS:
            return MemorySessionStore(clock=self.clock)
        if not self.settings.redis_url:
            raise RuntimeError("SESSION_BACKEND=redis requires REDIS_URL")
        store = RedisSessionStore(self.settings.redis_url)
        try:
            store.verify_connection()
        except Exception as exc:
            if not self.settings.test_mode:
                raise RuntimeError(
                    "Redis is required for sessions when SESSION_BACKEND=redis; "
                    "start Redis or use SESSION_BACKEND=memory."
                ) from exc
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(exc),
                mode="TEST_MODE",
            )
            return MemorySessionStore(clock=self.clock)
        logger.info(
            "runtime_session_store_initialized",
            backend="redis",
            redis_url=_mask_url_password(self.settings.redis_url),
        )
        return store

    def rate_limiter(self, ctx: Optional[RequestContext] = None) -> LoginRateLimiter:
        """Build a limiter bound to one request's de-duplication set."""
        return LoginRateLimiter(
            self.store,
            max_attempts=self.settings.rate_limit_attempts,
            block_minutes=self.settings.rate_limit_minutes,
            clock=self.clock,
            logged=ctx.logged_attempt_addresses if ctx is not None else None,
        )

    async def close(self) -> None:
        await self.session_store.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()
        logger.info("runtime_closed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(clock: Optional[Callable[[], datetime]] = None) -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings, clock=clock or utcnow)
        return runtime
