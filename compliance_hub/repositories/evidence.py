from __future__ import annotations

from collections.abc import Callable
from typing import Any

from compliance_hub.db.postgres import PostgresTxRunner
from compliance_hub.db.schema import validate_identifier


def _newest_first(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # Reversing first keeps later inserts ahead of earlier ones on equal timestamps.
    return sorted(reversed(rows), key=lambda x: str(x.get("created_at") or ""), reverse=True)


class InMemoryEvidenceRepository:
    def __init__(
        self,
        evidence: dict[str, dict[str, Any]],
        versions: dict[str, dict[str, Any]],
        *,
        on_write: Callable[[], None] | None = None,
    ) -> None:
        self._evidence = evidence
        self._versions = versions
        self._on_write = on_write

    def _touch(self) -> None:
        if self._on_write is not None:
            self._on_write()

    def insert_evidence(self, *, evidence: dict[str, Any]) -> dict[str, Any]:
        self._touch()
        item = dict(evidence)
        self._evidence[str(item["evidence_id"])] = item
        return dict(item)

    def get_evidence(self, *, factory_id: str, evidence_id: str, for_update: bool = False) -> dict[str, Any] | None:
        row = self._evidence.get(evidence_id)
        if row is None or row.get("factory_id") != factory_id:
            return None
        return dict(row)

    def list_evidence(self, *, factory_id: str) -> list[dict[str, Any]]:
        return _newest_first([dict(x) for x in self._evidence.values() if x.get("factory_id") == factory_id])

    def delete_evidence(self, *, factory_id: str, evidence_id: str) -> bool:
        row = self._evidence.get(evidence_id)
        if row is None or row.get("factory_id") != factory_id:
            return False
        self._touch()
        del self._evidence[evidence_id]
        for version_id in [k for k, v in self._versions.items() if v.get("evidence_id") == evidence_id]:
            del self._versions[version_id]
        return True

    def insert_version(self, *, version: dict[str, Any]) -> dict[str, Any]:
        self._touch()
        item = dict(version)
        if item["evidence_id"] not in self._evidence:
            raise ValueError(f"evidence does not exist: {item['evidence_id']}")
        for existing in self._versions.values():
            if (
                existing.get("evidence_id") == item["evidence_id"]
                and existing.get("version_number") == item["version_number"]
            ):
                raise ValueError(
                    f"duplicate version_number {item['version_number']} for evidence {item['evidence_id']}"
                )
        self._versions[str(item["version_id"])] = item
        return dict(item)

    def get_version(self, *, evidence_id: str, version_id: str) -> dict[str, Any] | None:
        row = self._versions.get(version_id)
        if row is None or row.get("evidence_id") != evidence_id:
            return None
        return dict(row)

    def list_versions(self, *, evidence_ids: list[str]) -> list[dict[str, Any]]:
        wanted = set(evidence_ids)
        rows = [dict(x) for x in self._versions.values() if x.get("evidence_id") in wanted]
        return sorted(rows, key=lambda x: (str(x["evidence_id"]), int(x["version_number"])))

    def max_version_number(self, *, evidence_id: str) -> int:
        numbers = [int(v["version_number"]) for v in self._versions.values() if v.get("evidence_id") == evidence_id]
        return max(numbers, default=0)


def _evidence_from_row(row: Any) -> dict[str, Any]:
    return {
        "evidence_id": row[0],
        "factory_id": row[1],
        "name": row[2],
        "doc_type": row[3],
        "expiry": row[4],
        "notes": row[5],
        "created_at": row[6],
        "updated_at": row[7],
    }


def _version_from_row(row: Any) -> dict[str, Any]:
    return {
        "version_id": row[0],
        "evidence_id": row[1],
        "version_number": int(row[2]),
        "notes": row[3],
        "expiry": row[4],
        "created_at": row[5],
    }


class PostgresEvidenceRepository:
    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        evidence_table: str = "evidence",
        versions_table: str = "evidence_version",
    ) -> None:
        self._tx_runner = tx_runner
        self._evidence_table = validate_identifier(evidence_table)
        self._versions_table = validate_identifier(versions_table)

    def insert_evidence(self, *, evidence: dict[str, Any]) -> dict[str, Any]:
        item = dict(evidence)
        sql = f"""
            INSERT INTO {self._evidence_table} (
                evidence_id, factory_id, name, doc_type, expiry, notes, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["evidence_id"],
                        item["factory_id"],
                        item.get("name"),
                        item.get("doc_type"),
                        item.get("expiry"),
                        item.get("notes") or "",
                        item.get("created_at"),
                        item.get("updated_at"),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def get_evidence(self, *, factory_id: str, evidence_id: str, for_update: bool = False) -> dict[str, Any] | None:
        sql = f"""
            SELECT evidence_id, factory_id, name, doc_type, expiry, notes, created_at, updated_at
            FROM {self._evidence_table}
            WHERE factory_id = %s AND evidence_id = %s
            LIMIT 1
        """
        if for_update:
            sql += " FOR UPDATE"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (factory_id, evidence_id))
                row = cur.fetchone()
            if row is None:
                return None
            return _evidence_from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def list_evidence(self, *, factory_id: str) -> list[dict[str, Any]]:
        sql = f"""
            SELECT evidence_id, factory_id, name, doc_type, expiry, notes, created_at, updated_at
            FROM {self._evidence_table}
            WHERE factory_id = %s
            ORDER BY created_at DESC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (factory_id,))
                rows = cur.fetchall() or []
            return [_evidence_from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def delete_evidence(self, *, factory_id: str, evidence_id: str) -> bool:
        # evidence_version rows go with it through ON DELETE CASCADE
        sql = f"DELETE FROM {self._evidence_table} WHERE factory_id = %s AND evidence_id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (factory_id, evidence_id))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(fn=_op)

    def insert_version(self, *, version: dict[str, Any]) -> dict[str, Any]:
        item = dict(version)
        sql = f"""
            INSERT INTO {self._versions_table} (
                version_id, evidence_id, version_number, notes, expiry, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["version_id"],
                        item["evidence_id"],
                        int(item["version_number"]),
                        item.get("notes"),
                        item.get("expiry"),
                        item.get("created_at"),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def get_version(self, *, evidence_id: str, version_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT version_id, evidence_id, version_number, notes, expiry, created_at
            FROM {self._versions_table}
            WHERE evidence_id = %s AND version_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (evidence_id, version_id))
                row = cur.fetchone()
            if row is None:
                return None
            return _version_from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def list_versions(self, *, evidence_ids: list[str]) -> list[dict[str, Any]]:
        if not evidence_ids:
            return []
        sql = f"""
            SELECT version_id, evidence_id, version_number, notes, expiry, created_at
            FROM {self._versions_table}
            WHERE evidence_id = ANY(%s)
            ORDER BY evidence_id ASC, version_number ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (list(evidence_ids),))
                rows = cur.fetchall() or []
            return [_version_from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def max_version_number(self, *, evidence_id: str) -> int:
        sql = f"SELECT COALESCE(MAX(version_number), 0) FROM {self._versions_table} WHERE evidence_id = %s"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, (evidence_id,))
                row = cur.fetchone()
            return int(row[0]) if row is not None and row[0] is not None else 0

        return self._tx_runner.run_in_tx(fn=_op)
