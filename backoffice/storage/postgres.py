from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from backoffice.logging import get_logger
from backoffice.storage.errors import ConstraintViolation
from backoffice.storage.models import Account, LoginAttempt, Role, utcnow

_ACCOUNT_SELECT = """
    SELECT e.*, r.name AS role_name
    FROM employees e
    LEFT JOIN roles r ON e.role_id = r.id AND r.deleted_at IS NULL
"""


class PostgresStore:
    """Postgres-backed credential and login-attempt store."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Ensure the auth tables exist before serving requests."""

        required_tables = [
            "employees",
            "roles",
            "permissions",
            "role_permissions",
            "login_attempts",
        ]

        with self._connect() as conn:
            missing_tables = []
            for table in required_tables:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

            if missing_tables:
                raise RuntimeError(
                    "Missing required Postgres tables: {}. Apply sql/schema.sql first.".format(
                        ", ".join(sorted(missing_tables))
                    )
                )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1")

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_account(row: Dict[str, Any]) -> Account:
        return Account(
            id=int(row["id"]),
            login=row["login"],
            password_hash=row["password_hash"],
            name=row.get("name") or "",
            uuid=str(row["uuid"]),
            is_active=bool(row.get("is_active", True)),
            role_id=row.get("role_id"),
            role_name=row.get("role_name"),
            is_superadmin=bool(row.get("is_superadmin", False)),
            last_login=row.get("last_login"),
            created_at=row.get("created_at") or utcnow(),
            deleted_at=row.get("deleted_at"),
        )

    @staticmethod
    def _row_to_attempt(row: Dict[str, Any]) -> LoginAttempt:
        return LoginAttempt(
            id=row.get("id"),
            ip=row["ip"],
            attempts=int(row.get("attempts") or 0),
            last_attempt=row.get("last_attempt"),
            blocked_until=row.get("blocked_until"),
            login=row.get("login"),
        )

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO employees (uuid, login, password_hash, name, is_active, role_id, is_superadmin)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (login, password_hash, name, is_active, role_id, is_superadmin),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("login already exists", {"field": "login"})
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("role does not exist", {"role_id": role_id})
        account = self.find_account_by_id(int(row["id"]))
        if account is None:
            raise RuntimeError("account vanished after insert")
        return account

    def find_account_by_login(self, login: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                _ACCOUNT_SELECT + " WHERE e.login = %s AND e.deleted_at IS NULL LIMIT 1",
                (login,),
            ).fetchone()
        return self._row_to_account(row) if row else None

    def find_account_by_id(self, account_id: int) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                _ACCOUNT_SELECT + " WHERE e.id = %s AND e.deleted_at IS NULL LIMIT 1",
                (account_id,),
            ).fetchone()
        return self._row_to_account(row) if row else None

    def update_last_login(self, account_id: int, when: Optional[datetime] = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE employees SET last_login = %s WHERE id = %s AND deleted_at IS NULL",
                (when or utcnow(), account_id),
            )

    def set_superadmin(self, account_id: int, is_superadmin: bool) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE employees SET is_superadmin = %s WHERE id = %s AND deleted_at IS NULL",
                (is_superadmin, account_id),
            )
            if cur.rowcount == 0:
                raise ConstraintViolation("account not found", {"id": account_id})

    def set_password_hash(self, account_id: int, password_hash: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE employees SET password_hash = %s WHERE id = %s AND deleted_at IS NULL",
                (password_hash, account_id),
            )

    # permissions
    def get_permission_names_for_role(self, role_id: int) -> Set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.name
                FROM permissions p
                JOIN role_permissions rp ON p.id = rp.permission_id
                WHERE rp.role_id = %s AND rp.is_allowed = TRUE AND p.deleted_at IS NULL
                """,
                (role_id,),
            ).fetchall()
        return {row["name"] for row in rows}

    def list_roles(self) -> List[Role]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, display_name, is_system, created_at, deleted_at FROM roles WHERE deleted_at IS NULL ORDER BY display_name"
            ).fetchall()
        return [
            Role(
                id=int(row["id"]),
                name=row["name"],
                display_name=row["display_name"],
                is_system=bool(row["is_system"]),
                created_at=row["created_at"],
                deleted_at=row["deleted_at"],
            )
            for row in rows
        ]

    # login attempts
    def get_login_attempt(self, ip: str) -> Optional[LoginAttempt]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, ip, login, attempts, last_attempt, blocked_until FROM login_attempts WHERE ip = %s LIMIT 1",
                (ip,),
            ).fetchone()
        return self._row_to_attempt(row) if row else None

    def save_login_attempt(self, record: LoginAttempt) -> LoginAttempt:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO login_attempts (ip, login, attempts, last_attempt, blocked_until)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (ip) DO UPDATE SET
                    login = EXCLUDED.login,
                    attempts = EXCLUDED.attempts,
                    last_attempt = EXCLUDED.last_attempt,
                    blocked_until = EXCLUDED.blocked_until
                RETURNING id
                """,
                (
                    record.ip,
                    record.login,
                    record.attempts,
                    record.last_attempt,
                    record.blocked_until,
                ),
            ).fetchone()
        if row:
            record.id = row["id"]
        return record
