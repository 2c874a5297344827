from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Any, Dict, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from sessionguard.logging import get_logger
from sessionguard.storage.errors import ConstraintViolation, DirectoryUnavailable
from sessionguard.storage.models import User, UserRole, utcnow

_WRITABLE_COLUMNS = ("phone", "role", "is_active")

_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    username VARCHAR(50) NOT NULL,
    password_hash VARCHAR(255) NOT NULL,
    phone VARCHAR(20),
    role VARCHAR(20) NOT NULL DEFAULT 'user',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT users_username_key UNIQUE (username),
    CONSTRAINT users_phone_key UNIQUE (phone)
)
"""

_TIMESTAMP_TRIGGER_DDL = """
CREATE OR REPLACE FUNCTION users_touch_updated_at() RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS users_touch_updated_at ON users;
CREATE TRIGGER users_touch_updated_at
    BEFORE UPDATE ON users
    FOR EACH ROW EXECUTE FUNCTION users_touch_updated_at();
"""


def _violated_field(exc: errors.UniqueViolation) -> str:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
    if "phone" in constraint:
        return "phone"
    if "username" in constraint:
        return "username"
    return "unknown"


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


class PostgresStore:
    """Postgres-backed user directory."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self.ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def ensure_schema(self) -> None:
        """Create the ``users`` table and its timestamp trigger if missing."""

        with self._connect() as conn:
            row = conn.execute("SELECT to_regclass('public.users') AS present").fetchone()
            if row and row.get("present"):
                return
            self.logger.info("users_table_created")
            conn.execute(_USERS_DDL)
            conn.execute(_TIMESTAMP_TRIGGER_DDL)

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            username=row["username"],
            password_hash=row["password_hash"],
            phone=row.get("phone"),
            role=UserRole(row.get("role") or UserRole.USER.value),
            is_active=bool(row.get("is_active", True)),
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except errors.UniqueViolation as exc:
            field = _violated_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        except psycopg.Error as exc:
            self.logger.error("users_query_failed", operation=operation, error=str(exc))
            raise DirectoryUnavailable(operation, exc) from exc

    def insert(self, user: User) -> User:
        user_id = user.id or str(uuid.uuid4())
        with self._translate_errors("insert"), self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO users (id, username, password_hash, phone, role, is_active)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    user_id,
                    user.username,
                    user.password_hash,
                    user.phone,
                    user.role.value,
                    user.is_active,
                ),
            ).fetchone()
        self.logger.info("user_created", user_id=user_id, role=user.role.value)
        return self._row_to_user(row)

    def find_by_id(self, user_id: str) -> Optional[User]:
        if not _is_uuid(user_id):
            return None
        with self._translate_errors("find_by_id"), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def find_by_credential(self, identifier: str) -> Optional[User]:
        with self._translate_errors("find_by_credential"), self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM users
                WHERE username = %s OR phone = %s
                ORDER BY (username = %s) DESC
                LIMIT 1
                """,
                (identifier, identifier, identifier),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def update_fields(self, user_id: str, **fields) -> Optional[User]:
        unknown = set(fields) - set(_WRITABLE_COLUMNS)
        if unknown:
            raise ValueError(f"fields not writable: {sorted(unknown)}")
        if not _is_uuid(user_id):
            return None
        if not fields:
            return self.find_by_id(user_id)
        if "role" in fields:
            fields["role"] = UserRole(fields["role"]).value
        columns = [column for column in _WRITABLE_COLUMNS if column in fields]
        assignments = ", ".join(f"{column} = %s" for column in columns)
        params = [fields[column] for column in columns] + [user_id]
        with self._translate_errors("update_fields"), self._connect() as conn:
            row = conn.execute(
                f"UPDATE users SET {assignments} WHERE id = %s RETURNING *",
                params,
            ).fetchone()
        return self._row_to_user(row) if row else None


__all__ = ["PostgresStore"]
