from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Union

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from backoffice.logging import get_logger, log_security_event
from backoffice.service.rate_limit import LoginRateLimiter
from backoffice.service.session import CredentialStore, RequestContext, SessionManager
from backoffice.storage.models import Account

logger = get_logger(__name__)

IpNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class LoginFailure(str, Enum):
    """Why a login attempt was refused; wording is chosen at the HTTP edge."""

    RATE_LIMITED = "rate_limited"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_DISABLED = "account_disabled"
    IP_NOT_ALLOWED = "ip_not_allowed"


@dataclass
class LoginResult:
    account: Optional[Account] = None
    reason: Optional[LoginFailure] = None

    @property
    def ok(self) -> bool:
        return self.reason is None and self.account is not None

    @classmethod
    def success(cls, account: Account) -> "LoginResult":
        return cls(account=account)

    @classmethod
    def failure(cls, reason: LoginFailure) -> "LoginResult":
        return cls(reason=reason)


class SuperadminIpPolicy:
    """Allow-list of addresses or networks superadmins may log in from.

    An empty allow-list permits every address.
    """

    def __init__(self, allowed: Iterable[str] = ()) -> None:
        self.networks: List[IpNetwork] = []
        for entry in allowed:
            try:
                self.networks.append(ipaddress.ip_network(entry.strip(), strict=False))
            except ValueError as exc:
                raise ValueError(f"invalid SUPERADMIN_ALLOWED_IPS entry: {entry!r}") from exc

    def is_allowed(self, account: Account, address: str) -> bool:
        if not self.networks:
            return True
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return False
        return any(ip in network for network in self.networks)


class AuthService:
    """Verifies credentials and establishes authenticated sessions."""

    def __init__(
        self,
        store: CredentialStore,
        sessions: SessionManager,
        *,
        ip_policy: Optional[SuperadminIpPolicy] = None,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.ip_policy = ip_policy or SuperadminIpPolicy()
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)
        # Verified against when the login is unknown so timing matches a real check
        self._dummy_hash = self._pwd_hasher.hash("backoffice-dummy-password")

    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify_password(self, stored_hash: Optional[str], password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash or self._dummy_hash, password) and bool(
                stored_hash
            )
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    def attempt(
        self,
        ctx: RequestContext,
        login: str,
        password: str,
        rate_limiter: LoginRateLimiter,
    ) -> LoginResult:
        """Try to log ``login`` in from ``ctx.client_address``.

        The caller records exactly one failed attempt for any failure other
        than ``RATE_LIMITED``.
        """
        ip = ctx.client_address
        if rate_limiter.is_blocked(ip):
            log_security_event("login_rate_limited", logger, ip=ip, login=login)
            return LoginResult.failure(LoginFailure.RATE_LIMITED)

        account = self.store.find_account_by_login(login)
        if account is None:
            self.verify_password(None, password)
            return self._fail(ip, login, LoginFailure.INVALID_CREDENTIALS)

        if not account.is_active:
            return self._fail(ip, login, LoginFailure.ACCOUNT_DISABLED)

        if not self.verify_password(account.password_hash, password):
            return self._fail(ip, login, LoginFailure.INVALID_CREDENTIALS)

        if account.is_superadmin and not self.ip_policy.is_allowed(account, ip):
            log_security_event(
                "superadmin_ip_rejected", logger, ip=ip, login=login, user_id=account.id
            )
            return self._fail(ip, login, LoginFailure.IP_NOT_ALLOWED)

        self.sessions.establish(ctx, account)
        rate_limiter.clear_attempts(ip)
        self._maybe_rehash(account, password)
        logger.info("login_succeeded", ip=ip, user_id=account.id, login=login)
        return LoginResult.success(account)

    def _fail(self, ip: str, login: str, reason: LoginFailure) -> LoginResult:
        logger.info("login_failed", ip=ip, login=login, reason=reason.value)
        return LoginResult.failure(reason)

    def _maybe_rehash(self, account: Account, password: str) -> None:
        if not self._pwd_hasher.check_needs_rehash(account.password_hash):
            return
        self.store.set_password_hash(account.id, self.hash_password(password))
        logger.info("password_rehashed", user_id=account.id)
