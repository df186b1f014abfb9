from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol, Set

from fastapi import Response

from backoffice.config import Settings
from backoffice.logging import get_logger, log_security_event
from backoffice.storage.models import Account, utcnow
from backoffice.storage.sessions import SessionStore

logger = get_logger(__name__)

# Keys that make up the authenticated-identity claim
IDENTITY_KEYS = ("user_id", "user_uuid", "user_name", "is_superadmin", "last_activity")

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{22,128}$")


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class CredentialStore(Protocol):
    def find_account_by_login(self, login: str) -> Optional[Account]: ...

    def find_account_by_id(self, account_id: int) -> Optional[Account]: ...

    def update_last_login(self, account_id: int, when: Optional[datetime] = None) -> None: ...

    def get_permission_names_for_role(self, role_id: int) -> Set[str]: ...

    def set_password_hash(self, account_id: int, password_hash: str) -> None: ...


@dataclass
class RequestContext:
    """Per-request view of the client and its server-side session.

    Sessions start lazily: nothing is persisted and no cookie is sent until
    something calls :meth:`start` (directly or by writing a value).
    """

    client_address: str
    session_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    started: bool = False
    # Set once the session was ended and its cookie must be expired
    cookie_expired: bool = False
    replaced_ids: Set[str] = field(default_factory=set)
    logged_attempt_addresses: Set[str] = field(default_factory=set)
    expired: bool = False

    def start(self) -> None:
        if self.started:
            return
        if self.session_id is None:
            self.session_id = new_session_id()
        self.started = True

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.start()
        self.data[key] = value

    def pop(self, key: str, default: Any = None) -> Any:
        return self.data.pop(key, default)

    def regenerate_id(self) -> None:
        """Move the session to a fresh identifier and drop the old one."""
        if self.session_id is not None:
            self.replaced_ids.add(self.session_id)
        self.session_id = new_session_id()
        self.started = True

    def end(self) -> None:
        if self.session_id is not None:
            self.replaced_ids.add(self.session_id)
        self.data.clear()
        self.session_id = None
        self.started = False
        self.cookie_expired = True


class SessionManager:
    """Binds an authenticated identity to the server-side session."""

    def __init__(
        self,
        store: SessionStore,
        settings: Settings,
        credentials: CredentialStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self.credentials = credentials
        self._clock = clock

    @property
    def lifetime_seconds(self) -> int:
        return self.settings.session_lifetime_seconds

    @property
    def retention_seconds(self) -> int:
        # Payloads outlive the idle window so an expired login is still recognised
        return self.lifetime_seconds * 2

    # request lifecycle
    async def open(self, cookie_value: Optional[str], client_address: str) -> RequestContext:
        ctx = RequestContext(client_address=client_address)
        if not cookie_value or not _SESSION_ID_RE.match(cookie_value):
            return ctx
        data = await self.store.get(cookie_value)
        if data is not None:
            ctx.session_id = cookie_value
            ctx.data = data
            ctx.started = True
        elif not self.settings.session_use_strict_mode:
            # Lenient mode adopts the client id once the session starts
            ctx.session_id = cookie_value
        else:
            logger.debug("session_id_rejected", reason="unknown_in_strict_mode")
        return ctx

    async def commit(self, ctx: RequestContext, response: Response) -> None:
        for stale_id in ctx.replaced_ids:
            if stale_id != ctx.session_id:
                await self.store.destroy(stale_id)
        settings = self.settings
        if ctx.started and ctx.session_id:
            await self.store.set(ctx.session_id, ctx.data, self.retention_seconds)
            response.set_cookie(
                settings.session_cookie_name,
                ctx.session_id,
                max_age=self.lifetime_seconds,
                path=settings.session_cookie_path,
                domain=settings.session_cookie_domain,
                secure=settings.session_cookie_secure,
                httponly=settings.session_cookie_httponly,
                samesite=settings.session_cookie_samesite.lower(),
            )
        elif ctx.cookie_expired:
            response.delete_cookie(
                settings.session_cookie_name,
                path=settings.session_cookie_path,
                domain=settings.session_cookie_domain,
                secure=settings.session_cookie_secure,
                httponly=settings.session_cookie_httponly,
                samesite=settings.session_cookie_samesite.lower(),
            )

    # identity
    def check(self, ctx: RequestContext) -> bool:
        user_id = ctx.get("user_id")
        if not user_id:
            return False
        now = self._clock().timestamp()
        last_activity = ctx.get("last_activity") or 0
        if last_activity > 0 and now - last_activity > self.lifetime_seconds:
            for key in IDENTITY_KEYS:
                ctx.pop(key)
            ctx.expired = True
            log_security_event(
                "session_expired",
                logger,
                user_id=user_id,
                ip=ctx.client_address,
                idle_seconds=int(now - last_activity),
            )
            return False
        ctx.set("last_activity", now)
        return True

    def current_user(self, ctx: RequestContext) -> Optional[Account]:
        if not self.check(ctx):
            return None
        return self.credentials.find_account_by_id(int(ctx.get("user_id")))

    def establish(self, ctx: RequestContext, account: Account) -> None:
        ctx.regenerate_id()
        for key in IDENTITY_KEYS:
            ctx.pop(key)
        now = self._clock()
        ctx.set("user_id", account.id)
        ctx.set("user_uuid", account.uuid)
        ctx.set("user_name", account.display_name)
        ctx.set("is_superadmin", bool(account.is_superadmin))
        ctx.set("last_activity", now.timestamp())
        self.credentials.update_last_login(account.id, now)

    def terminate(self, ctx: RequestContext) -> None:
        """End the session; safe to call when none is active."""
        if not ctx.started and ctx.session_id is None:
            ctx.cookie_expired = True
            return
        ctx.end()
