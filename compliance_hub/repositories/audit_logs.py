from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from compliance_hub.db.postgres import PostgresTxRunner
from compliance_hub.db.schema import validate_identifier


def _matches(row: dict[str, Any], filters: dict[str, str | None]) -> bool:
    return all(value is None or row.get(key) == value for key, value in filters.items())


class InMemoryAuditLogsRepository:
    def __init__(self, audit_logs: list[dict[str, Any]], *, on_write: Callable[[], None] | None = None) -> None:
        self._audit_logs = audit_logs
        self._on_write = on_write

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        item = dict(log)
        if self._on_write is not None:
            self._on_write()
        self._audit_logs.append(item)
        return dict(item)

    def query(
        self,
        *,
        action: str | None = None,
        object_type: str | None = None,
        actor_user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        filters = {"action": action, "object_type": object_type, "actor_user_id": actor_user_id}
        rows = [dict(x) for x in self._audit_logs if _matches(x, filters)]
        # append order breaks timestamp ties, newest first
        return sorted(reversed(rows), key=lambda x: str(x.get("timestamp") or ""), reverse=True)


def _log_from_row(row: Any) -> dict[str, Any]:
    metadata = row[7]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    return {
        "audit_id": row[0],
        "timestamp": row[1],
        "actor_user_id": row[2],
        "actor_role": row[3],
        "action": row[4],
        "object_type": row[5],
        "object_id": row[6],
        "metadata": metadata if isinstance(metadata, dict) else {},
    }


class PostgresAuditLogsRepository:
    """Append-only audit rows."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "audit_log") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        item = dict(log)
        sql = f"""
            INSERT INTO {self._table_name} (
                audit_id, "timestamp", actor_user_id, actor_role, action, object_type, object_id, metadata
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["audit_id"],
                        item["timestamp"],
                        item["actor_user_id"],
                        item["actor_role"],
                        item["action"],
                        item["object_type"],
                        item["object_id"],
                        json.dumps(item.get("metadata") or {}, ensure_ascii=True, sort_keys=True),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def query(
        self,
        *,
        action: str | None = None,
        object_type: str | None = None,
        actor_user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("action", action), ("object_type", object_type), ("actor_user_id", actor_user_id)):
            if value is not None:
                clauses.append(f"{column} = %s")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT audit_id, "timestamp", actor_user_id, actor_role, action, object_type, object_id, metadata
            FROM {self._table_name}
            {where}
            ORDER BY "timestamp" DESC, seq DESC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
            return [_log_from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)
