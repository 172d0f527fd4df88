from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt

from compliance_hub.config import Settings
from compliance_hub.errors import unauthorized

REDACTED = "***REDACTED***"
SENSITIVE_KEYS = frozenset({"authorization", "token", "secret", "password", "access_token", "password_hash"})


def redact_sensitive(value: object) -> object:
    """Mask credential-looking keys and bearer strings before they reach a log line."""
    if isinstance(value, dict):
        return {
            str(key): REDACTED if str(key).lower() in SENSITIVE_KEYS else redact_sensitive(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_sensitive(x) for x in value]
    if isinstance(value, str) and len(value) >= 24:
        lowered = value.lower()
        if "bearer " in lowered or "token" in lowered:
            return REDACTED
    return value


@dataclass(frozen=True)
class AuthContext:
    subject: str
    role: str
    factory_id: str | None
    claims: dict[str, Any]


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise unauthorized("missing Authorization bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer":
        raise unauthorized("invalid Authorization header")
    token = token.strip()
    if not token:
        raise unauthorized("empty bearer token")
    return token


def _decode(token: str, settings: Settings) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.jwt_shared_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience or None,
            issuer=settings.jwt_issuer or None,
            options={
                "require": list(settings.jwt_required_claims),
                "verify_aud": bool(settings.jwt_audience),
            },
        )
    except jwt.InvalidSignatureError:
        raise unauthorized("invalid token signature") from None
    except jwt.ExpiredSignatureError:
        raise unauthorized("token expired") from None
    except jwt.ImmatureSignatureError:
        raise unauthorized("token not yet valid") from None
    except jwt.InvalidIssuerError:
        raise unauthorized("jwt issuer mismatch") from None
    except jwt.InvalidAudienceError:
        raise unauthorized("jwt audience mismatch") from None
    except jwt.MissingRequiredClaimError as exc:
        raise unauthorized(f"missing required claim: {exc.claim}") from None
    except jwt.InvalidAlgorithmError:
        raise unauthorized("unsupported jwt algorithm") from None
    except jwt.DecodeError:
        raise unauthorized("invalid token format") from None
    except jwt.InvalidTokenError:
        raise unauthorized("invalid token") from None


def parse_and_validate_bearer_token(*, authorization: str | None, settings: Settings) -> AuthContext:
    """Verify an HS256 bearer token against ``settings`` and return its identity claims.

    Only the token itself is checked here; whether the user still exists and is
    active is decided by the identity service.
    """
    token = _bearer_token(authorization)
    if not settings.jwt_shared_secret:
        raise unauthorized("jwt shared secret not configured")
    claims = _decode(token, settings)
    subject = str(claims.get("sub") or "").strip()
    role = str(claims.get("role") or "").strip()
    if not subject or not role:
        raise unauthorized("missing subject or role claim")
    return AuthContext(
        subject=subject,
        role=role,
        factory_id=str(claims.get("factory_id") or "").strip() or None,
        claims=claims,
    )
