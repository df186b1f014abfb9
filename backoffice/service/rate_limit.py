from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol, Set

from backoffice.logging import get_logger, log_security_event
from backoffice.storage.models import LoginAttempt, utcnow

logger = get_logger(__name__)


class LoginAttemptStore(Protocol):
    def get_login_attempt(self, ip: str) -> Optional[LoginAttempt]: ...

    def save_login_attempt(self, record: LoginAttempt) -> LoginAttempt: ...


class LoginRateLimiter:
    """Per-address failed-login counter with a fixed block window.

    ``log_attempt`` writes at most once per address for the lifetime of the
    ``logged`` set, normally the one carried by the request context, so several
    failure paths can report the same failure without double counting.

    Concurrent failures from one address race on read-modify-write of the
    same record and the last write wins. Under load this can under-count;
    that approximation is accepted.
    """

    def __init__(
        self,
        store: LoginAttemptStore,
        *,
        max_attempts: int = 3,
        block_minutes: int = 15,
        clock: Callable[[], datetime] = utcnow,
        logged: Optional[Set[str]] = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if block_minutes <= 0:
            raise ValueError("block_minutes must be positive")
        self.store = store
        self.max_attempts = max_attempts
        self.block_minutes = block_minutes
        self._clock = clock
        self._logged: Set[str] = logged if logged is not None else set()

    def is_blocked(self, ip: str) -> bool:
        record = self.store.get_login_attempt(ip)
        return bool(record and record.is_blocked_at(self._clock()))

    def get_blocked_until(self, ip: str) -> Optional[datetime]:
        """Return the block expiry if the address is blocked right now."""
        record = self.store.get_login_attempt(ip)
        if record and record.is_blocked_at(self._clock()):
            return record.blocked_until
        return None

    def get_attempts(self, ip: str) -> int:
        record = self.store.get_login_attempt(ip)
        return record.attempts if record else 0

    def log_attempt(self, ip: str, login: Optional[str] = None) -> None:
        if ip in self._logged:
            return
        self._logged.add(ip)

        now = self._clock()
        record = self.store.get_login_attempt(ip) or LoginAttempt(ip=ip)
        record.remember_login(login)
        record.last_attempt = now

        if record.is_blocked_at(now):
            # Already blocked: the counter stays put
            self.store.save_login_attempt(record)
            return

        if record.blocked_until is not None:
            # Expired block, this failure opens a fresh window
            record.attempts = 0
            record.blocked_until = None

        record.attempts += 1
        if record.attempts >= self.max_attempts:
            record.blocked_until = now + timedelta(minutes=self.block_minutes)
            log_security_event(
                "login_blocked_address",
                logger,
                ip=ip,
                login=record.login,
                attempts=record.attempts,
                blocked_until=record.blocked_until.isoformat(),
            )
        self.store.save_login_attempt(record)

    def clear_attempts(self, ip: str) -> None:
        """Reset the counter after a successful login; the row is kept for audit."""
        record = self.store.get_login_attempt(ip)
        if record is None:
            return
        record.attempts = 0
        record.blocked_until = None
        record.last_attempt = self._clock()
        self.store.save_login_attempt(record)
