from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "compliance-hub-dev-secret-change-in-production"


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at start and passed explicitly."""

    jwt_shared_secret: str
    jwt_issuer: str
    jwt_audience: str
    jwt_required_claims: tuple[str, ...]
    access_token_ttl_minutes: int
    bcrypt_rounds: int
    store_backend: str
    sqlite_path: str
    postgres_dsn: str
    cors_allow_origins: tuple[str, ...]
    trace_id_strict_required: bool
    log_redaction_enabled: bool
    log_level: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        secret = env.get("JWT_SHARED_SECRET", "").strip()
        if not secret:
            logger.warning("jwt_shared_secret_missing using development secret")
            secret = DEV_JWT_SECRET
        return cls(
            jwt_shared_secret=secret,
            jwt_issuer=env.get("JWT_ISSUER", "compliance-hub").strip(),
            jwt_audience=env.get("JWT_AUDIENCE", "compliance-hub-api").strip(),
            jwt_required_claims=tuple(_split_csv(env.get("JWT_REQUIRED_CLAIMS", "sub,role,exp"))),
            access_token_ttl_minutes=_env_int(env, "ACCESS_TOKEN_TTL_MINUTES", default=1440, minimum=1),
            # bcrypt rejects cost factors below 4
            bcrypt_rounds=_env_int(env, "BCRYPT_ROUNDS", default=10, minimum=4),
            store_backend=env.get("CEH_STORE_BACKEND", "memory").strip().lower() or "memory",
            sqlite_path=env.get("CEH_STORE_SQLITE_PATH", ".local/compliance-hub.sqlite3"),
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            cors_allow_origins=tuple(
                _split_csv(env.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173"))
            ),
            trace_id_strict_required=_env_bool(env, "TRACE_ID_STRICT_REQUIRED", False),
            log_redaction_enabled=_env_bool(env, "SECURITY_LOG_REDACTION_ENABLED", True),
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
