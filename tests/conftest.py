import pathlib
import sys
import uuid

import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from compliance_hub.access_policy import Principal
from compliance_hub.audit_ledger import AuditLedger
from compliance_hub.config import Settings
from compliance_hub.evidence_store import EvidenceStore
from compliance_hub.main import create_app
from compliance_hub.request_workflow import RequestWorkflow
from compliance_hub.store import InMemoryStore

TEST_ENV = {
    "JWT_SHARED_SECRET": "jwt_test_secret",
    "JWT_ISSUER": "test-issuer",
    "JWT_AUDIENCE": "test-audience",
    "BCRYPT_ROUNDS": "4",
    "CORS_ALLOW_ORIGINS": "",
}


@pytest.fixture
def settings() -> Settings:
    return Settings.from_env(dict(TEST_ENV))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def ledger(store: InMemoryStore) -> AuditLedger:
    return AuditLedger(store)


@pytest.fixture
def evidence(store: InMemoryStore, ledger: AuditLedger) -> EvidenceStore:
    return EvidenceStore(store, ledger)


@pytest.fixture
def workflow(store: InMemoryStore, ledger: AuditLedger, evidence: EvidenceStore) -> RequestWorkflow:
    return RequestWorkflow(store, ledger, evidence)


@pytest.fixture
def factory_f1() -> Principal:
    return Principal(user_id="usr_factory_f1", role="factory", factory_id="F1")


@pytest.fixture
def factory_f2() -> Principal:
    return Principal(user_id="usr_factory_f2", role="factory", factory_id="F2")


@pytest.fixture
def buyer() -> Principal:
    return Principal(user_id="usr_buyer_1", role="buyer")


@pytest.fixture
def admin() -> Principal:
    return Principal(user_id="usr_admin_1", role="admin")


@pytest.fixture
def client(settings: Settings, store: InMemoryStore) -> TestClient:
    return TestClient(create_app(settings=settings, store=store))


def register_user(client: TestClient, *, role: str, factory_id: str | None = None) -> dict:
    payload = {
        "email": f"{role}_{uuid.uuid4().hex[:8]}@example.com",
        "password": "secret123",
        "first_name": "Test",
        "last_name": role.title(),
        "role": role,
    }
    if factory_id is not None:
        payload["factory_id"] = factory_id
    resp = client.post("/api/v1/auth/register", json=payload)
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    return {
        "user": data["user"],
        "password": payload["password"],
        "headers": {"Authorization": f"Bearer {data['access_token']}"},
    }


@pytest.fixture
def factory_user(client: TestClient) -> dict:
    return register_user(client, role="factory", factory_id="F1")


@pytest.fixture
def other_factory_user(client: TestClient) -> dict:
    return register_user(client, role="factory", factory_id="F2")


@pytest.fixture
def buyer_user(client: TestClient) -> dict:
    return register_user(client, role="buyer")
