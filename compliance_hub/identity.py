"""Users, password hashing, token issuance and principal resolution."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt

from compliance_hub.access_policy import ALL_ROLES, ROLE_FACTORY, Principal
from compliance_hub.config import Settings
from compliance_hub.errors import ApiError, NotFoundError, ValidationFailedError, unauthorized
from compliance_hub.repositories import DuplicateEmailError
from compliance_hub.store import Store, new_id, utcnow_iso

logger = logging.getLogger(__name__)


def hash_password(password: str, *, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "user_id": user["user_id"],
        "email": user["email"],
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "role": user["role"],
        "factory_id": user.get("factory_id"),
        "is_active": bool(user.get("is_active", True)),
    }


class IdentityService:
    def __init__(self, store: Store, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def _create_access_token(self, user: dict[str, Any]) -> str:
        now = datetime.now(UTC)
        exp = now + timedelta(minutes=self._settings.access_token_ttl_minutes)
        claims = {
            "sub": user["user_id"],
            "email": user["email"],
            "role": user["role"],
            "factory_id": user.get("factory_id"),
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(claims, self._settings.jwt_shared_secret, algorithm="HS256")

    def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: str,
        factory_id: str | None = None,
    ) -> dict[str, Any]:
        email = email.strip().lower()
        if role not in ALL_ROLES:
            raise ValidationFailedError(message=f"unknown role: {role}")
        if role == ROLE_FACTORY and not (factory_id or "").strip():
            raise ValidationFailedError(code="FACTORY_ID_REQUIRED", message="factory users need a factory_id")
        now = utcnow_iso()
        user = {
            "user_id": new_id("usr"),
            "email": email,
            "password_hash": hash_password(password, rounds=self._settings.bcrypt_rounds),
            "first_name": first_name,
            "last_name": last_name,
            "role": role,
            # only factory accounts are bound to a tenant
            "factory_id": factory_id.strip() if role == ROLE_FACTORY and factory_id else None,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self._store.transaction():
                if self._store.users_repository.get_by_email(email=email) is not None:
                    raise DuplicateEmailError(email)
                # a concurrent registration can still win the unique index
                self._store.users_repository.insert(user=user)
        except DuplicateEmailError:
            raise ApiError(
                code="USER_EMAIL_CONFLICT",
                message="a user with this email already exists",
                error_class="business_rule",
                retryable=False,
                http_status=409,
            ) from None
        logger.info("user_registered user_id=%s role=%s", user["user_id"], role)
        return {"access_token": self._create_access_token(user), "user": public_user(user)}

    def login(self, *, email: str, password: str) -> dict[str, Any]:
        with self._store.transaction():
            user = self._store.users_repository.get_by_email(email=email.strip().lower())
        if user is None or not check_password(password, str(user.get("password_hash") or "")):
            logger.warning("login_rejected reason=invalid_credentials")
            raise unauthorized("invalid credentials")
        if not user.get("is_active", True):
            logger.warning("login_rejected reason=inactive user_id=%s", user["user_id"])
            raise unauthorized("account is deactivated")
        return {"access_token": self._create_access_token(user), "user": public_user(user)}

    def profile(self, principal: Principal) -> dict[str, Any]:
        with self._store.transaction():
            user = self._store.users_repository.get(user_id=principal.user_id)
        if user is None:
            raise NotFoundError(code="USER_NOT_FOUND", message="user not found")
        return public_user(user)

    def resolve_principal(self, user_id: str) -> Principal:
        with self._store.transaction():
            user = self._store.users_repository.get(user_id=user_id)
        if user is None or not user.get("is_active", True):
            raise unauthorized("user not found or inactive")
        return Principal(user_id=user["user_id"], role=user["role"], factory_id=user.get("factory_id"))

    def _set_active(self, user_id: str, is_active: bool) -> dict[str, Any]:
        with self._store.transaction():
            user = self._store.users_repository.set_active(
                user_id=user_id,
                is_active=is_active,
                updated_at=utcnow_iso(),
            )
        if user is None:
            raise NotFoundError(code="USER_NOT_FOUND", message="user not found")
        logger.info("user_active_changed user_id=%s is_active=%s", user_id, is_active)
        return public_user(user)

    def deactivate_user(self, user_id: str) -> dict[str, Any]:
        return self._set_active(user_id, False)

    def activate_user(self, user_id: str) -> dict[str, Any]:
        return self._set_active(user_id, True)
