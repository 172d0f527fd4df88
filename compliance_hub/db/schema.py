from __future__ import annotations

import re

from compliance_hub.db.postgres import _import_psycopg


def validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


SCHEMA_STATEMENTS: tuple[tuple[str, str], ...] = (
    (
        "app_user",
        """
        CREATE TABLE IF NOT EXISTS app_user (
            user_id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            role TEXT NOT NULL,
            factory_id TEXT NULL,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
    ),
    (
        "evidence",
        """
        CREATE TABLE IF NOT EXISTS evidence (
            evidence_id TEXT PRIMARY KEY,
            factory_id TEXT NOT NULL,
            name TEXT NOT NULL,
            doc_type TEXT NOT NULL,
            expiry TEXT NOT NULL,
            notes TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
    ),
    (
        "evidence_version",
        """
        CREATE TABLE IF NOT EXISTS evidence_version (
            version_id TEXT PRIMARY KEY,
            evidence_id TEXT NOT NULL REFERENCES evidence(evidence_id) ON DELETE CASCADE,
            version_number INTEGER NOT NULL,
            notes TEXT NULL,
            expiry TEXT NULL,
            created_at TEXT NOT NULL,
            UNIQUE (evidence_id, version_number)
        )
        """,
    ),
    (
        "request",
        """
        CREATE TABLE IF NOT EXISTS request (
            request_id TEXT PRIMARY KEY,
            buyer_id TEXT NOT NULL,
            factory_id TEXT NOT NULL,
            title TEXT NOT NULL,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
    ),
    (
        "request_item",
        """
        CREATE TABLE IF NOT EXISTS request_item (
            item_id TEXT PRIMARY KEY,
            request_id TEXT NOT NULL REFERENCES request(request_id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            doc_type TEXT NOT NULL,
            status TEXT NOT NULL,
            evidence_id TEXT NULL,
            version_id TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
    ),
    (
        "audit_log",
        """
        CREATE TABLE IF NOT EXISTS audit_log (
            audit_id TEXT PRIMARY KEY,
            seq BIGSERIAL,
            "timestamp" TEXT NOT NULL,
            actor_user_id TEXT NOT NULL,
            actor_role TEXT NOT NULL,
            action TEXT NOT NULL,
            object_type TEXT NOT NULL,
            object_id TEXT NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb
        )
        """,
    ),
)

INDEX_STATEMENTS: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_evidence_factory ON evidence (factory_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_request_factory ON request (factory_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_request_buyer ON request (buyer_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_request_item_request ON request_item (request_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_log_filters ON audit_log (action, object_type, actor_user_id)",
)


class PostgresSchemaManager:
    """Create the service tables on PostgreSQL; safe to run repeatedly."""

    def __init__(self, dsn: str, *, tables: list[str] | tuple[str, ...] | None = None) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()
        known = [name for name, _ in SCHEMA_STATEMENTS]
        target_tables = list(known if tables is None else tables)
        if not target_tables:
            raise ValueError("tables must not be empty")
        for name in target_tables:
            validate_identifier(name)
            if name not in known:
                raise ValueError(f"unknown table: {name}")
        self._tables = target_tables

    def statements(self) -> list[str]:
        # Parents are always created before children regardless of the requested order.
        out = [ddl for name, ddl in SCHEMA_STATEMENTS if name in self._tables]
        if len(self._tables) == len(SCHEMA_STATEMENTS):
            out.extend(INDEX_STATEMENTS)
        return out

    def apply(self) -> list[str]:
        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                for ddl in self.statements():
                    cur.execute(ddl)
            conn.commit()
        return [name for name, _ in SCHEMA_STATEMENTS if name in self._tables]
