from __future__ import annotations

from collections.abc import Callable
from typing import Any

from compliance_hub.db.postgres import PostgresTxRunner, _import_psycopg
from compliance_hub.db.schema import validate_identifier

_USER_COLUMNS = (
    "user_id",
    "email",
    "password_hash",
    "first_name",
    "last_name",
    "role",
    "factory_id",
    "is_active",
    "created_at",
    "updated_at",
)


class DuplicateEmailError(ValueError):
    """Another account already uses this email."""


class InMemoryUsersRepository:
    def __init__(self, users: dict[str, dict[str, Any]], *, on_write: Callable[[], None] | None = None) -> None:
        self._users = users
        self._on_write = on_write

    def _touch(self) -> None:
        if self._on_write is not None:
            self._on_write()

    def insert(self, *, user: dict[str, Any]) -> dict[str, Any]:
        item = dict(user)
        email = str(item["email"]).lower()
        if any(str(x.get("email", "")).lower() == email for x in self._users.values()):
            raise DuplicateEmailError(email)
        self._touch()
        self._users[str(item["user_id"])] = item
        return dict(item)

    def get(self, *, user_id: str) -> dict[str, Any] | None:
        row = self._users.get(user_id)
        return dict(row) if row is not None else None

    def get_by_email(self, *, email: str) -> dict[str, Any] | None:
        wanted = email.lower()
        for row in self._users.values():
            if str(row.get("email", "")).lower() == wanted:
                return dict(row)
        return None

    def set_active(self, *, user_id: str, is_active: bool, updated_at: str) -> dict[str, Any] | None:
        row = self._users.get(user_id)
        if row is None:
            return None
        self._touch()
        row["is_active"] = bool(is_active)
        row["updated_at"] = updated_at
        return dict(row)


def _user_from_row(row: Any) -> dict[str, Any]:
    out = dict(zip(_USER_COLUMNS, row))
    out["is_active"] = bool(out["is_active"])
    return out


class PostgresUsersRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "app_user") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def insert(self, *, user: dict[str, Any]) -> dict[str, Any]:
        item = dict(user)
        placeholders = ", ".join(["%s"] * len(_USER_COLUMNS))
        sql = f"INSERT INTO {self._table_name} ({', '.join(_USER_COLUMNS)}) VALUES ({placeholders})"

        unique_violation = _import_psycopg().errors.UniqueViolation

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                try:
                    cur.execute(sql, tuple(item.get(column) for column in _USER_COLUMNS))
                except unique_violation as exc:
                    raise DuplicateEmailError(str(item.get("email", ""))) from exc
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def _get_one(self, column: str, value: str) -> dict[str, Any] | None:
        sql = f"SELECT {', '.join(_USER_COLUMNS)} FROM {self._table_name} WHERE {column} = %s LIMIT 1"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (value,))
                row = cur.fetchone()
            if row is None:
                return None
            return _user_from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, user_id: str) -> dict[str, Any] | None:
        return self._get_one("user_id", user_id)

    def get_by_email(self, *, email: str) -> dict[str, Any] | None:
        return self._get_one("email", email.lower())

    def set_active(self, *, user_id: str, is_active: bool, updated_at: str) -> dict[str, Any] | None:
        sql = f"""
            UPDATE {self._table_name}
            SET is_active = %s, updated_at = %s
            WHERE user_id = %s
            RETURNING {', '.join(_USER_COLUMNS)}
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (bool(is_active), updated_at, user_id))
                row = cur.fetchone()
            if row is None:
                return None
            return _user_from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)
