from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from compliance_hub.config import Settings
from compliance_hub.db.postgres import PostgresTxRunner
from compliance_hub.db.schema import SCHEMA_STATEMENTS, PostgresSchemaManager
from compliance_hub.repositories import (
    InMemoryAuditLogsRepository,
    InMemoryEvidenceRepository,
    InMemoryRequestsRepository,
    InMemoryUsersRepository,
    PostgresAuditLogsRepository,
    PostgresEvidenceRepository,
    PostgresRequestsRepository,
    PostgresUsersRepository,
)

logger = logging.getLogger(__name__)

_TABLES = ("evidence", "evidence_versions", "requests", "request_items", "users")


def utcnow_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class InMemoryStore:
    """Dict-backed tables behind one re-entrant lock.

    ``transaction()`` snapshots the tables on the first write inside the
    outermost block and puts the snapshot back if the block raises. Read-only
    blocks take no snapshot and are never persisted. The audit log is
    append-only, so its rollback point is just its length.
    Repositories hold references to the table objects and are rebound after a
    restore; callers must always go through ``store.<name>_repository``.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._snapshot: dict[str, Any] | None = None
        self.evidence: dict[str, dict[str, Any]] = {}
        self.evidence_versions: dict[str, dict[str, Any]] = {}
        self.requests: dict[str, dict[str, Any]] = {}
        self.request_items: dict[str, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.audit_logs: list[dict[str, Any]] = []
        self._bind_repositories()

    def _bind_repositories(self) -> None:
        on_write = self._before_write
        self.evidence_repository = InMemoryEvidenceRepository(
            self.evidence, self.evidence_versions, on_write=on_write
        )
        self.requests_repository = InMemoryRequestsRepository(self.requests, self.request_items, on_write=on_write)
        self.audit_repository = InMemoryAuditLogsRepository(self.audit_logs, on_write=on_write)
        self.users_repository = InMemoryUsersRepository(self.users, on_write=on_write)

    def _before_write(self) -> None:
        if self._tx_depth > 0 and self._snapshot is None:
            self._snapshot = self._state_snapshot()

    def _state_snapshot(self) -> dict[str, Any]:
        payload: dict[str, Any] = {name: copy.deepcopy(getattr(self, name)) for name in _TABLES}
        payload["audit_log_count"] = len(self.audit_logs)
        return payload

    def _rollback_to(self, snapshot: dict[str, Any]) -> None:
        for name in _TABLES:
            setattr(self, name, snapshot[name])
        del self.audit_logs[snapshot["audit_log_count"] :]
        self._bind_repositories()

    def _state_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"schema_version": 1}
        for name in _TABLES:
            payload[name] = getattr(self, name)
        payload["audit_logs"] = self.audit_logs
        return payload

    def _restore_state(self, payload: dict[str, Any]) -> None:
        for name in _TABLES:
            value = payload.get(name)
            setattr(self, name, value if isinstance(value, dict) else {})
        audit_logs = payload.get("audit_logs")
        self.audit_logs = audit_logs if isinstance(audit_logs, list) else []
        self._bind_repositories()

    def _persist_state(self) -> None:
        """Hook run before a writing outermost transaction is considered committed."""

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._tx_depth == 0
            self._tx_depth += 1
            try:
                yield
                if outermost and self._snapshot is not None:
                    self._persist_state()
            except BaseException as exc:
                if outermost and self._snapshot is not None:
                    self._rollback_to(self._snapshot)
                    logger.warning(
                        "store_transaction_rolled_back backend=%s error=%s",
                        self.backend_name,
                        type(exc).__name__,
                    )
                raise
            finally:
                self._tx_depth -= 1
                if outermost:
                    self._snapshot = None

    def reset(self) -> None:
        with self._lock:
            for name in _TABLES:
                getattr(self, name).clear()
            self.audit_logs.clear()


class SqliteBackedStore(InMemoryStore):
    """In-memory model whose committed state is snapshotted to SQLite."""

    backend_name = "sqlite"

    def __init__(self, db_path: str) -> None:
        super().__init__()
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()
        self._load_state()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path))

    def _initialize_database(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS store_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  payload TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def _persist_state(self) -> None:
        blob = json.dumps(self._state_payload(), sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO store_state(id, payload)
                VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET payload = excluded.payload
                """,
                (blob,),
            )
            conn.commit()

    def _load_state(self) -> None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT payload FROM store_state WHERE id = 1").fetchone()
        if row is None:
            return
        payload_raw = row[0]
        if not isinstance(payload_raw, str):
            return
        try:
            payload = json.loads(payload_raw)
        except json.JSONDecodeError:
            logger.warning("sqlite_store_state_unreadable path=%s", self._db_path)
            return
        if not isinstance(payload, dict):
            return
        self._restore_state(payload)

    def reset(self) -> None:
        with self._lock:
            super().reset()
            self._persist_state()


class PostgresBackedStore:
    """Real tables on PostgreSQL; one connection per outermost transaction."""

    backend_name = "postgres"

    def __init__(self, *, dsn: str, apply_schema: bool = True) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must be provided for postgres store backend")
        self._dsn = dsn.strip()
        if apply_schema:
            created = PostgresSchemaManager(self._dsn).apply()
            logger.info("postgres_schema_applied tables=%s", ",".join(created))
        self._tx_runner = PostgresTxRunner(self._dsn)
        self.evidence_repository = PostgresEvidenceRepository(tx_runner=self._tx_runner)
        self.requests_repository = PostgresRequestsRepository(tx_runner=self._tx_runner)
        self.audit_repository = PostgresAuditLogsRepository(tx_runner=self._tx_runner)
        self.users_repository = PostgresUsersRepository(tx_runner=self._tx_runner)

    @property
    def in_transaction(self) -> bool:
        return self._tx_runner.in_transaction

    @contextmanager
    def transaction(self) -> Iterator[None]:
        outermost = not self._tx_runner.in_transaction
        try:
            with self._tx_runner.transaction():
                yield
        except BaseException as exc:
            if outermost:
                logger.warning("store_transaction_rolled_back backend=postgres error=%s", type(exc).__name__)
            raise

    def reset(self) -> None:
        tables = ", ".join(name for name, _ in SCHEMA_STATEMENTS)

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(f"TRUNCATE {tables} CASCADE")

        self._tx_runner.run_in_tx(fn=_op)


Store = InMemoryStore | PostgresBackedStore


def create_store_from_env(settings: Settings) -> Store:
    backend = settings.store_backend
    if backend == "sqlite":
        return SqliteBackedStore(settings.sqlite_path)
    if backend == "postgres":
        if not settings.postgres_dsn:
            raise ValueError("POSTGRES_DSN must be set when CEH_STORE_BACKEND=postgres")
        return PostgresBackedStore(dsn=settings.postgres_dsn)
    if backend != "memory":
        raise ValueError(f"unknown store backend: {backend}")
    return InMemoryStore()
