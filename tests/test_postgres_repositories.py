from __future__ import annotations

import json
from contextlib import contextmanager

import psycopg
import pytest

from compliance_hub.access_policy import Principal
from compliance_hub.audit_ledger import AuditLedger
from compliance_hub.evidence_store import EvidenceStore
from compliance_hub.repositories import (
    DuplicateEmailError,
    PostgresAuditLogsRepository,
    PostgresEvidenceRepository,
    PostgresRequestsRepository,
    PostgresUsersRepository,
)
from compliance_hub.request_workflow import RequestWorkflow


class FakeCursor:
    def __init__(self, conn: "FakeConn"):
        self._conn = conn
        self._rows: list[tuple] = []
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, query: str, params=None):
        self._conn.statements.append((" ".join(query.split()), params))
        if self._conn.error is not None:
            raise self._conn.error
        self._rows = list(self._conn.results.pop(0)) if self._conn.results else []
        self.rowcount = self._conn.rowcount

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return self._rows


class FakeConn:
    def __init__(self):
        self.statements: list[tuple[str, tuple | None]] = []
        self.results: list[list[tuple]] = []
        self.rowcount = 1
        self.error: Exception | None = None

    def cursor(self):
        return FakeCursor(self)


class FakeRunner:
    def __init__(self):
        self.conn = FakeConn()

    def run_in_tx(self, *, fn):
        return fn(self.conn)


def test_repositories_reject_invalid_table_names():
    runner = FakeRunner()
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresEvidenceRepository(tx_runner=runner, evidence_table="evidence;drop table x")
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresRequestsRepository(tx_runner=runner, items_table="item s")
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresAuditLogsRepository(tx_runner=runner, table_name="1audit")
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresUsersRepository(tx_runner=runner, table_name="users--")


def test_evidence_lookup_is_factory_scoped_and_can_lock():
    runner = FakeRunner()
    repo = PostgresEvidenceRepository(tx_runner=runner)
    runner.conn.results.append(
        [("evd_1", "F1", "ISO", "Certificate", "2026-12-31", "", "2026-01-01T00:00:00", "2026-01-01T00:00:00")]
    )

    row = repo.get_evidence(factory_id="F1", evidence_id="evd_1", for_update=True)

    sql, params = runner.conn.statements[0]
    assert "WHERE factory_id = %s AND evidence_id = %s" in sql
    assert sql.endswith("FOR UPDATE")
    assert params == ("F1", "evd_1")
    assert row["evidence_id"] == "evd_1"
    assert row["doc_type"] == "Certificate"


def test_evidence_get_returns_none_when_missing():
    runner = FakeRunner()
    repo = PostgresEvidenceRepository(tx_runner=runner)
    assert repo.get_evidence(factory_id="F1", evidence_id="evd_x") is None
    assert "FOR UPDATE" not in runner.conn.statements[0][0]


def test_max_version_number_defaults_to_zero():
    runner = FakeRunner()
    repo = PostgresEvidenceRepository(tx_runner=runner)
    runner.conn.results.append([(0,)])
    assert repo.max_version_number(evidence_id="evd_1") == 0
    runner.conn.results.append([(4,)])
    assert repo.max_version_number(evidence_id="evd_1") == 4
    assert "COALESCE(MAX(version_number), 0)" in runner.conn.statements[0][0]


def test_list_versions_skips_query_for_empty_ids_and_orders_by_number():
    runner = FakeRunner()
    repo = PostgresEvidenceRepository(tx_runner=runner)
    assert repo.list_versions(evidence_ids=[]) == []
    assert runner.conn.statements == []

    runner.conn.results.append(
        [
            ("ver_1", "evd_1", 1, None, "2026-12-31", "2026-01-01T00:00:00"),
            ("ver_2", "evd_1", 2, "renewed", "2027-12-31", "2026-02-01T00:00:00"),
        ]
    )
    rows = repo.list_versions(evidence_ids=["evd_1"])
    sql, params = runner.conn.statements[0]
    assert "evidence_id = ANY(%s)" in sql
    assert "ORDER BY evidence_id ASC, version_number ASC" in sql
    assert params == (["evd_1"],)
    assert [r["version_number"] for r in rows] == [1, 2]


def test_delete_evidence_reports_rowcount():
    runner = FakeRunner()
    repo = PostgresEvidenceRepository(tx_runner=runner)
    assert repo.delete_evidence(factory_id="F1", evidence_id="evd_1") is True
    runner.conn.rowcount = 0
    assert repo.delete_evidence(factory_id="F1", evidence_id="evd_1") is False
    assert runner.conn.statements[0][0].startswith("DELETE FROM evidence WHERE factory_id = %s")


def test_get_request_without_factory_is_untenanted():
    runner = FakeRunner()
    repo = PostgresRequestsRepository(tx_runner=runner)
    repo.get_request(request_id="req_1")
    repo.get_request(request_id="req_1", factory_id="F1", for_update=True)

    unscoped_sql, unscoped_params = runner.conn.statements[0]
    scoped_sql, scoped_params = runner.conn.statements[1]
    assert "factory_id = %s" not in unscoped_sql.split("WHERE", 1)[1]
    assert unscoped_params == ("req_1",)
    assert "AND factory_id = %s" in scoped_sql
    assert scoped_sql.endswith("FOR UPDATE")
    assert scoped_params == ("req_1", "F1")


def test_insert_items_writes_one_row_per_item():
    runner = FakeRunner()
    repo = PostgresRequestsRepository(tx_runner=runner)
    items = [
        {
            "item_id": f"itm_{i}",
            "request_id": "req_1",
            "position": i,
            "doc_type": doc_type,
            "status": "PENDING",
            "created_at": "t",
            "updated_at": "t",
        }
        for i, doc_type in enumerate(["Certificate", "Report"])
    ]
    repo.insert_items(items=items)
    assert len(runner.conn.statements) == 2
    assert all(s.startswith("INSERT INTO request_item") for s, _ in runner.conn.statements)
    assert runner.conn.statements[1][1][2] == 1


def test_update_item_raises_when_no_row_matches():
    runner = FakeRunner()
    repo = PostgresRequestsRepository(tx_runner=runner)
    runner.conn.rowcount = 0
    with pytest.raises(KeyError):
        repo.update_item(item={"item_id": "itm_x", "request_id": "req_1", "status": "FULFILLED"})


def test_update_request_status_returns_row():
    runner = FakeRunner()
    repo = PostgresRequestsRepository(tx_runner=runner)
    runner.conn.results.append([("req_1", "usr_b", "F1", "t", "COMPLETED", "c", "u")])
    row = repo.update_request_status(request_id="req_1", status="COMPLETED", updated_at="u")
    assert row["status"] == "COMPLETED"
    assert "RETURNING" in runner.conn.statements[0][0]


def test_audit_append_serializes_metadata_and_query_builds_and_filters():
    runner = FakeRunner()
    repo = PostgresAuditLogsRepository(tx_runner=runner)
    repo.append(
        log={
            "audit_id": "audit_1",
            "timestamp": "2026-01-01T00:00:00.000001+00:00",
            "actor_user_id": "usr_1",
            "actor_role": "factory",
            "action": "CREATE_EVIDENCE",
            "object_type": "Evidence",
            "object_id": "evd_1",
            "metadata": {"factory_id": "F1"},
        }
    )
    insert_sql, insert_params = runner.conn.statements[0]
    assert insert_sql.startswith('INSERT INTO audit_log ( audit_id, "timestamp"')
    assert json.loads(insert_params[-1]) == {"factory_id": "F1"}

    runner.conn.results.append(
        [("audit_1", "ts", "usr_1", "factory", "CREATE_EVIDENCE", "Evidence", "evd_1", {"factory_id": "F1"})]
    )
    rows = repo.query(action="CREATE_EVIDENCE", actor_user_id="usr_1")
    query_sql, query_params = runner.conn.statements[1]
    assert "WHERE action = %s AND actor_user_id = %s" in query_sql
    assert 'ORDER BY "timestamp" DESC, seq DESC' in query_sql
    assert query_params == ("CREATE_EVIDENCE", "usr_1")
    assert rows[0]["metadata"] == {"factory_id": "F1"}

    repo.query()
    assert "WHERE" not in runner.conn.statements[2][0]


def test_users_lookup_by_email_is_case_insensitive():
    runner = FakeRunner()
    repo = PostgresUsersRepository(tx_runner=runner)
    runner.conn.results.append(
        [("usr_1", "a@example.com", "hash", "A", "B", "factory", "F1", 1, "c", "u")]
    )
    row = repo.get_by_email(email="A@Example.com")
    assert runner.conn.statements[0][1] == ("a@example.com",)
    assert row["is_active"] is True
    assert row["factory_id"] == "F1"


def test_users_insert_maps_unique_violation_to_duplicate_email():
    runner = FakeRunner()
    repo = PostgresUsersRepository(tx_runner=runner)
    runner.conn.error = psycopg.errors.UniqueViolation("duplicate key value violates unique constraint")

    with pytest.raises(DuplicateEmailError):
        repo.insert(user={"user_id": "usr_2", "email": "a@example.com", "role": "buyer", "is_active": True})
    assert runner.conn.statements[0][0].startswith("INSERT INTO app_user")


class FakePostgresStore:
    def __init__(self, runner: FakeRunner):
        self.evidence_repository = PostgresEvidenceRepository(tx_runner=runner)
        self.requests_repository = PostgresRequestsRepository(tx_runner=runner)
        self.audit_repository = PostgresAuditLogsRepository(tx_runner=runner)

    @contextmanager
    def transaction(self):
        yield


def test_fulfill_item_locks_request_and_evidence_rows():
    runner = FakeRunner()
    store = FakePostgresStore(runner)
    ledger = AuditLedger(store)
    workflow = RequestWorkflow(store, ledger, EvidenceStore(store, ledger))
    factory = Principal(user_id="usr_f1", role="factory", factory_id="F1")
    runner.conn.results.extend(
        [
            [("req_1", "usr_b", "F1", "t", "OPEN", "c", "u")],
            [("itm_1", "req_1", 0, "Certificate", "PENDING", None, None, "c", "u")],
            [("evd_1", "F1", "ISO", "Certificate", "2026-12-31", "", "c", "u")],
            [("ver_1", "evd_1", 1, "", "2026-12-31", "c")],
            [],
            [("itm_1", "req_1", 0, "Certificate", "FULFILLED", "evd_1", "ver_1", "c", "u2")],
            [("req_1", "usr_b", "F1", "t", "COMPLETED", "c", "u2")],
        ]
    )

    result = workflow.fulfill_item(factory, "req_1", "itm_1", evidence_id="evd_1", version_id="ver_1")

    statements = [sql for sql, _ in runner.conn.statements]
    assert "FROM request " in statements[0] and statements[0].endswith("FOR UPDATE")
    assert "FROM evidence " in statements[2] and statements[2].endswith("FOR UPDATE")
    assert runner.conn.statements[2][1] == ("F1", "evd_1")
    assert "FOR UPDATE" not in statements[3]
    assert statements[4].startswith("UPDATE request_item")
    assert statements[-1].startswith("INSERT INTO audit_log")
    assert result["request"]["status"] == "COMPLETED"
    assert result["item"]["status"] == "FULFILLED"
