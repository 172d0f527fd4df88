from __future__ import annotations

from collections.abc import Callable
from typing import Any

from compliance_hub.db.postgres import PostgresTxRunner
from compliance_hub.db.schema import validate_identifier


class InMemoryRequestsRepository:
    def __init__(
        self,
        requests: dict[str, dict[str, Any]],
        items: dict[str, dict[str, Any]],
        *,
        on_write: Callable[[], None] | None = None,
    ) -> None:
        self._requests = requests
        self._items = items
        self._on_write = on_write

    def _touch(self) -> None:
        if self._on_write is not None:
            self._on_write()

    def insert_request(self, *, request: dict[str, Any]) -> dict[str, Any]:
        self._touch()
        item = dict(request)
        self._requests[str(item["request_id"])] = item
        return dict(item)

    def insert_items(self, *, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        self._touch()
        for raw in items:
            row = dict(raw)
            if row["request_id"] not in self._requests:
                raise ValueError(f"request does not exist: {row['request_id']}")
            self._items[str(row["item_id"])] = row
            out.append(dict(row))
        return out

    def get_request(
        self,
        *,
        request_id: str,
        factory_id: str | None = None,
        for_update: bool = False,
    ) -> dict[str, Any] | None:
        row = self._requests.get(request_id)
        if row is None:
            return None
        if factory_id is not None and row.get("factory_id") != factory_id:
            return None
        return dict(row)

    def list_by_buyer(self, *, buyer_id: str) -> list[dict[str, Any]]:
        rows = [dict(x) for x in self._requests.values() if x.get("buyer_id") == buyer_id]
        return sorted(reversed(rows), key=lambda x: str(x.get("created_at") or ""), reverse=True)

    def list_by_factory(self, *, factory_id: str) -> list[dict[str, Any]]:
        rows = [dict(x) for x in self._requests.values() if x.get("factory_id") == factory_id]
        return sorted(reversed(rows), key=lambda x: str(x.get("created_at") or ""), reverse=True)

    def get_item(self, *, request_id: str, item_id: str) -> dict[str, Any] | None:
        row = self._items.get(item_id)
        if row is None or row.get("request_id") != request_id:
            return None
        return dict(row)

    def update_item(self, *, item: dict[str, Any]) -> dict[str, Any]:
        item_id = str(item["item_id"])
        if item_id not in self._items:
            raise KeyError(item_id)
        self._touch()
        self._items[item_id] = dict(item)
        return dict(item)

    def list_items(self, *, request_ids: list[str]) -> list[dict[str, Any]]:
        wanted = set(request_ids)
        rows = [dict(x) for x in self._items.values() if x.get("request_id") in wanted]
        return sorted(rows, key=lambda x: (str(x["request_id"]), int(x.get("position", 0))))

    def update_request_status(self, *, request_id: str, status: str, updated_at: str) -> dict[str, Any]:
        row = self._requests.get(request_id)
        if row is None:
            raise KeyError(request_id)
        self._touch()
        row["status"] = status
        row["updated_at"] = updated_at
        return dict(row)


def _request_from_row(row: Any) -> dict[str, Any]:
    return {
        "request_id": row[0],
        "buyer_id": row[1],
        "factory_id": row[2],
        "title": row[3],
        "status": row[4],
        "created_at": row[5],
        "updated_at": row[6],
    }


def _item_from_row(row: Any) -> dict[str, Any]:
    return {
        "item_id": row[0],
        "request_id": row[1],
        "position": int(row[2]),
        "doc_type": row[3],
        "status": row[4],
        "evidence_id": row[5],
        "version_id": row[6],
        "created_at": row[7],
        "updated_at": row[8],
    }


class PostgresRequestsRepository:
    """Request and request item rows; items are always addressed through their request."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        requests_table: str = "request",
        items_table: str = "request_item",
    ) -> None:
        self._tx_runner = tx_runner
        self._requests_table = validate_identifier(requests_table)
        self._items_table = validate_identifier(items_table)

    def _select_requests(self) -> str:
        return f"""
            SELECT request_id, buyer_id, factory_id, title, status, created_at, updated_at
            FROM {self._requests_table}
        """

    def _select_items(self) -> str:
        return f"""
            SELECT item_id, request_id, position, doc_type, status, evidence_id, version_id, created_at, updated_at
            FROM {self._items_table}
        """

    def insert_request(self, *, request: dict[str, Any]) -> dict[str, Any]:
        item = dict(request)
        sql = f"""
            INSERT INTO {self._requests_table} (
                request_id, buyer_id, factory_id, title, status, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["request_id"],
                        item["buyer_id"],
                        item["factory_id"],
                        item.get("title"),
                        item.get("status"),
                        item.get("created_at"),
                        item.get("updated_at"),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def insert_items(self, *, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        rows = [dict(x) for x in items]
        sql = f"""
            INSERT INTO {self._items_table} (
                item_id, request_id, position, doc_type, status, evidence_id, version_id, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                for row in rows:
                    cur.execute(
                        sql,
                        (
                            row["item_id"],
                            row["request_id"],
                            int(row.get("position", 0)),
                            row.get("doc_type"),
                            row.get("status"),
                            row.get("evidence_id"),
                            row.get("version_id"),
                            row.get("created_at"),
                            row.get("updated_at"),
                        ),
                    )
            return rows

        return self._tx_runner.run_in_tx(fn=_op)

    def get_request(
        self,
        *,
        request_id: str,
        factory_id: str | None = None,
        for_update: bool = False,
    ) -> dict[str, Any] | None:
        sql = self._select_requests() + " WHERE request_id = %s"
        params: list[Any] = [request_id]
        if factory_id is not None:
            sql += " AND factory_id = %s"
            params.append(factory_id)
        sql += " LIMIT 1"
        if for_update:
            sql += " FOR UPDATE"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
            if row is None:
                return None
            return _request_from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def _list_where(self, column: str, value: str) -> list[dict[str, Any]]:
        sql = self._select_requests() + f" WHERE {column} = %s ORDER BY created_at DESC"

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (value,))
                rows = cur.fetchall() or []
            return [_request_from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def list_by_buyer(self, *, buyer_id: str) -> list[dict[str, Any]]:
        return self._list_where("buyer_id", buyer_id)

    def list_by_factory(self, *, factory_id: str) -> list[dict[str, Any]]:
        return self._list_where("factory_id", factory_id)

    def get_item(self, *, request_id: str, item_id: str) -> dict[str, Any] | None:
        sql = self._select_items() + " WHERE request_id = %s AND item_id = %s LIMIT 1"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (request_id, item_id))
                row = cur.fetchone()
            if row is None:
                return None
            return _item_from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def update_item(self, *, item: dict[str, Any]) -> dict[str, Any]:
        payload = dict(item)
        sql = f"""
            UPDATE {self._items_table}
            SET status = %s, evidence_id = %s, version_id = %s, updated_at = %s
            WHERE item_id = %s AND request_id = %s
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        payload.get("status"),
                        payload.get("evidence_id"),
                        payload.get("version_id"),
                        payload.get("updated_at"),
                        payload["item_id"],
                        payload["request_id"],
                    ),
                )
                if cur.rowcount == 0:
                    raise KeyError(payload["item_id"])
            return payload

        return self._tx_runner.run_in_tx(fn=_op)

    def list_items(self, *, request_ids: list[str]) -> list[dict[str, Any]]:
        if not request_ids:
            return []
        sql = self._select_items() + " WHERE request_id = ANY(%s) ORDER BY request_id ASC, position ASC"

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (list(request_ids),))
                rows = cur.fetchall() or []
            return [_item_from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def update_request_status(self, *, request_id: str, status: str, updated_at: str) -> dict[str, Any]:
        sql = f"""
            UPDATE {self._requests_table}
            SET status = %s, updated_at = %s
            WHERE request_id = %s
            RETURNING request_id, buyer_id, factory_id, title, status, created_at, updated_at
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, (status, updated_at, request_id))
                row = cur.fetchone()
            if row is None:
                raise KeyError(request_id)
            return _request_from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)
