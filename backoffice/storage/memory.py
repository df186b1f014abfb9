from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Dict, List, Optional, Set

from backoffice.logging import get_logger
from backoffice.storage.errors import ConstraintViolation
from backoffice.storage.models import (
    Account,
    LoginAttempt,
    Permission,
    Role,
    RolePermission,
    utcnow,
)


class MemoryStore:
    """In-memory credential and login-attempt store for tests and local runs."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[int, Account] = {}
        self.roles: Dict[int, Role] = {}
        self.permissions: Dict[int, Permission] = {}
        self.role_permissions: Dict[tuple[int, int], RolePermission] = {}
        self.login_attempts: Dict[str, LoginAttempt] = {}
        self._seq: Dict[str, int] = {}
        # Thread lock for sequence counters to prevent race conditions
        self._seq_lock = threading.Lock()
        # RLock so seeding helpers can call lookups while holding it
        self._data_lock = threading.RLock()

    def _next_id(self, table: str) -> int:
        with self._seq_lock:
            value = self._seq.get(table, 0) + 1
            self._seq[table] = value
            return value

    def _with_role(self, account: Account) -> Account:
        # Hand out copies so callers never mutate store state in place
        result = copy.copy(account)
        role = self.roles.get(account.role_id) if account.role_id is not None else None
        result.role_name = role.name if role and role.deleted_at is None else None
        return result

    # accounts
    def create_account(
        self,
        login: str,
        password_hash: str,
        *,
        name: str = "",
        is_active: bool = True,
        role_id: Optional[int] = None,
        is_superadmin: bool = False,
    ) -> Account:
        with self._data_lock:
            if self._find_live_by_login(login):
                raise ConstraintViolation("login already exists", {"field": "login"})
            if role_id is not None and role_id not in self.roles:
                raise ConstraintViolation("role does not exist", {"role_id": role_id})
            account = Account(
                id=self._next_id("employees"),
                login=login,
                password_hash=password_hash,
                name=name,
                is_active=is_active,
                role_id=role_id,
                is_superadmin=is_superadmin,
            )
            self.accounts[account.id] = account
            return self._with_role(account)

    def _find_live_by_login(self, login: str) -> Optional[Account]:
        return next(
            (
                a
                for a in self.accounts.values()
                if a.login == login and a.deleted_at is None
            ),
            None,
        )

    def find_account_by_login(self, login: str) -> Optional[Account]:
        with self._data_lock:
            account = self._find_live_by_login(login)
            return self._with_role(account) if account else None

    def find_account_by_id(self, account_id: int) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account or account.deleted_at is not None:
                return None
            return self._with_role(account)

    def update_last_login(self, account_id: int, when: Optional[datetime] = None) -> None:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account or account.deleted_at is not None:
                return
            account.last_login = when or utcnow()

    def set_account_active(self, account_id: int, is_active: bool) -> None:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                raise ConstraintViolation("account not found", {"id": account_id})
            account.is_active = is_active

    def assign_role(self, account_id: int, role_id: Optional[int]) -> None:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                raise ConstraintViolation("account not found", {"id": account_id})
            if role_id is not None and role_id not in self.roles:
                raise ConstraintViolation("role does not exist", {"role_id": role_id})
            account.role_id = role_id

    def set_superadmin(self, account_id: int, is_superadmin: bool) -> None:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                raise ConstraintViolation("account not found", {"id": account_id})
            account.is_superadmin = is_superadmin

    def set_password_hash(self, account_id: int, password_hash: str) -> None:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if account and account.deleted_at is None:
                account.password_hash = password_hash

    def soft_delete_account(self, account_id: int, when: Optional[datetime] = None) -> bool:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account or account.deleted_at is not None:
                return False
            account.deleted_at = when or utcnow()
            return True

    # roles / permissions
    def create_role(self, name: str, display_name: str = "", *, is_system: bool = False) -> Role:
        with self._data_lock:
            if any(r.name == name and r.deleted_at is None for r in self.roles.values()):
                raise ConstraintViolation("role name already exists", {"field": "name"})
            role = Role(
                id=self._next_id("roles"),
                name=name,
                display_name=display_name or name,
                is_system=is_system,
            )
            self.roles[role.id] = role
            return role

    def create_permission(
        self,
        name: str,
        display_name: str = "",
        *,
        display_name_short: str = "",
        description: str = "",
        module: str = "",
        is_system: bool = False,
    ) -> Permission:
        with self._data_lock:
            if any(
                p.name == name and p.deleted_at is None for p in self.permissions.values()
            ):
                raise ConstraintViolation("permission name already exists", {"field": "name"})
            permission = Permission(
                id=self._next_id("permissions"),
                name=name,
                display_name=display_name or name,
                display_name_short=display_name_short,
                description=description,
                module=module,
                is_system=is_system,
            )
            self.permissions[permission.id] = permission
            return permission

    def set_role_permission(
        self, role_id: int, permission_id: int, *, is_allowed: bool = True
    ) -> None:
        with self._data_lock:
            if role_id not in self.roles:
                raise ConstraintViolation("role does not exist", {"role_id": role_id})
            if permission_id not in self.permissions:
                raise ConstraintViolation(
                    "permission does not exist", {"permission_id": permission_id}
                )
            self.role_permissions[(role_id, permission_id)] = RolePermission(
                role_id=role_id, permission_id=permission_id, is_allowed=is_allowed
            )

    def revoke_role_permission(self, role_id: int, permission_id: int) -> None:
        with self._data_lock:
            self.role_permissions.pop((role_id, permission_id), None)

    def soft_delete_permission(self, permission_id: int, when: Optional[datetime] = None) -> None:
        with self._data_lock:
            permission = self.permissions.get(permission_id)
            if permission and permission.deleted_at is None:
                permission.deleted_at = when or utcnow()

    def get_permission_names_for_role(self, role_id: int) -> Set[str]:
        with self._data_lock:
            names: Set[str] = set()
            for (rid, pid), link in self.role_permissions.items():
                if rid != role_id or not link.is_allowed:
                    continue
                permission = self.permissions.get(pid)
                if permission and permission.deleted_at is None:
                    names.add(permission.name)
            return names

    def list_roles(self) -> List[Role]:
        with self._data_lock:
            return sorted(
                (r for r in self.roles.values() if r.deleted_at is None),
                key=lambda r: r.display_name,
            )

    # login attempts
    def get_login_attempt(self, ip: str) -> Optional[LoginAttempt]:
        with self._data_lock:
            record = self.login_attempts.get(ip)
            return copy.copy(record) if record else None

    def save_login_attempt(self, record: LoginAttempt) -> LoginAttempt:
        with self._data_lock:
            existing = self.login_attempts.get(record.ip)
            if record.id is None:
                record.id = existing.id if existing else self._next_id("login_attempts")
            self.login_attempts[record.ip] = copy.copy(record)
            return record

    def verify_connection(self) -> None:
        return None
