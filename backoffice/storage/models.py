from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    """Back-office employee able to log in."""

    id: int
    login: str
    password_hash: str
    name: str = ""
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_active: bool = True
    role_id: Optional[int] = None
    role_name: Optional[str] = None
    is_superadmin: bool = False
    last_login: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def display_name(self) -> str:
        return self.name or self.login


@dataclass
class Role:
    id: int
    name: str
    display_name: str
    is_system: bool = False
    created_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


@dataclass
class Permission:
    id: int
    name: str
    display_name: str
    display_name_short: str = ""
    description: str = ""
    module: str = ""
    is_system: bool = False
    created_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


@dataclass
class RolePermission:
    role_id: int
    permission_id: int
    is_allowed: bool = True


@dataclass
class LoginAttempt:
    """Failed-login counter for one client address."""

    ip: str
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    blocked_until: Optional[datetime] = None
    login: Optional[str] = None
    id: Optional[int] = None

    def is_blocked_at(self, now: datetime) -> bool:
        return self.blocked_until is not None and self.blocked_until > now

    def remember_login(self, login: Optional[str]) -> None:
        """Backfill the associated login name only if none is known yet."""
        if self.login is None and login:
            self.login = login
