from __future__ import annotations

import jwt
import pytest

from compliance_hub.access_policy import Principal
from compliance_hub.errors import ApiError, NotFoundError, ValidationFailedError
from compliance_hub.identity import IdentityService, check_password, hash_password


@pytest.fixture
def identity(store, settings) -> IdentityService:
    return IdentityService(store, settings)


def _register(identity: IdentityService, **overrides):
    payload = {
        "email": "factory1@example.com",
        "password": "factory123",
        "first_name": "Factory",
        "last_name": "One",
        "role": "factory",
        "factory_id": "F001",
    }
    payload.update(overrides)
    return identity.register(**payload)


def test_hash_password_round_trip():
    hashed = hash_password("secret", rounds=4)
    assert hashed != "secret"
    assert check_password("secret", hashed)
    assert not check_password("other", hashed)
    assert not check_password("secret", "not-a-bcrypt-hash")


def test_register_hashes_password_and_issues_token(identity, store, settings):
    result = _register(identity)
    user = result["user"]
    assert user["factory_id"] == "F001"
    assert "password_hash" not in user

    stored = store.users[user["user_id"]]
    assert stored["password_hash"] != "factory123"
    assert check_password("factory123", stored["password_hash"])

    claims = jwt.decode(
        result["access_token"],
        settings.jwt_shared_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )
    assert claims["sub"] == user["user_id"]
    assert claims["role"] == "factory"
    assert claims["factory_id"] == "F001"
    assert claims["exp"] - claims["iat"] == settings.access_token_ttl_minutes * 60


def test_register_drops_factory_id_for_non_factory_roles(identity):
    result = _register(identity, email="buyer@example.com", role="buyer", factory_id="F001")
    assert result["user"]["factory_id"] is None


def test_register_requires_factory_id_for_factories(identity):
    with pytest.raises(ValidationFailedError) as exc:
        _register(identity, factory_id=None)
    assert exc.value.code == "FACTORY_ID_REQUIRED"


def test_register_rejects_duplicate_email_case_insensitively(identity):
    _register(identity)
    with pytest.raises(ApiError) as exc:
        _register(identity, email="FACTORY1@example.com")
    assert exc.value.code == "USER_EMAIL_CONFLICT"
    assert exc.value.http_status == 409


def test_login_checks_password_and_active_flag(identity):
    user = _register(identity)["user"]
    assert identity.login(email="factory1@example.com", password="factory123")["user"]["user_id"] == user["user_id"]

    with pytest.raises(ApiError) as wrong:
        identity.login(email="factory1@example.com", password="nope")
    assert wrong.value.code == "AUTH_UNAUTHORIZED"

    identity.deactivate_user(user["user_id"])
    with pytest.raises(ApiError) as inactive:
        identity.login(email="factory1@example.com", password="factory123")
    assert inactive.value.message == "account is deactivated"


def test_resolve_principal_uses_stored_role_and_factory(identity):
    user = _register(identity)["user"]
    principal = identity.resolve_principal(user["user_id"])
    assert principal == Principal(user_id=user["user_id"], role="factory", factory_id="F001")

    identity.deactivate_user(user["user_id"])
    with pytest.raises(ApiError):
        identity.resolve_principal(user["user_id"])


def test_profile_and_activation_of_missing_user(identity):
    with pytest.raises(NotFoundError) as exc:
        identity.profile(Principal(user_id="usr_missing", role="buyer"))
    assert exc.value.code == "USER_NOT_FOUND"
    with pytest.raises(NotFoundError):
        identity.activate_user("usr_missing")


def test_seed_script_is_idempotent(store, settings):
    import importlib.util
    import pathlib

    path = pathlib.Path(__file__).resolve().parents[1] / "scripts" / "seed_users.py"
    spec = importlib.util.spec_from_file_location("seed_users", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    identity = IdentityService(store, settings)
    first = module.seed(identity)
    second = module.seed(identity)

    assert len(first["created"]) == 5
    assert first["skipped"] == []
    assert second["created"] == []
    assert sorted(second["skipped"]) == sorted(first["created"])
    factory = identity.login(email="factory2@auditflow.com", password="factory123")["user"]
    assert factory["factory_id"] == "F002"


def test_register_losing_a_concurrent_insert_is_a_conflict(identity, store, monkeypatch):
    _register(identity)
    # the pre-insert lookup misses, as it would when another registration commits in between
    monkeypatch.setattr(store.users_repository, "get_by_email", lambda *, email: None)

    with pytest.raises(ApiError) as exc:
        _register(identity, password="other123")
    assert exc.value.code == "USER_EMAIL_CONFLICT"
    assert exc.value.http_status == 409
    assert len(store.users) == 1
