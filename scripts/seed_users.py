#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from compliance_hub.config import Settings
from compliance_hub.errors import ApiError
from compliance_hub.identity import IdentityService
from compliance_hub.store import create_store_from_env

DEMO_USERS: tuple[dict[str, str | None], ...] = (
    {
        "email": "admin@auditflow.com",
        "password": "admin123",
        "first_name": "Admin",
        "last_name": "User",
        "role": "admin",
        "factory_id": None,
    },
    {
        "email": "buyer@auditflow.com",
        "password": "buyer123",
        "first_name": "John",
        "last_name": "Buyer",
        "role": "buyer",
        "factory_id": None,
    },
    {
        "email": "buyer2@auditflow.com",
        "password": "buyer123",
        "first_name": "Jane",
        "last_name": "Smith",
        "role": "buyer",
        "factory_id": None,
    },
    {
        "email": "factory1@auditflow.com",
        "password": "factory123",
        "first_name": "Factory",
        "last_name": "One",
        "role": "factory",
        "factory_id": "F001",
    },
    {
        "email": "factory2@auditflow.com",
        "password": "factory123",
        "first_name": "Factory",
        "last_name": "Two",
        "role": "factory",
        "factory_id": "F002",
    },
)


def seed(identity: IdentityService) -> dict[str, list[str]]:
    created: list[str] = []
    skipped: list[str] = []
    for user in DEMO_USERS:
        try:
            identity.register(**user)  # type: ignore[arg-type]
        except ApiError as exc:
            if exc.code != "USER_EMAIL_CONFLICT":
                raise
            skipped.append(str(user["email"]))
            continue
        created.append(str(user["email"]))
    return {"created": created, "skipped": skipped}


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo admin, buyer and factory accounts")
    parser.parse_args()
    settings = Settings.from_env()
    if settings.store_backend == "memory":
        raise SystemExit("CEH_STORE_BACKEND=memory does not persist; use sqlite or postgres")
    identity = IdentityService(create_store_from_env(settings), settings)
    print(json.dumps(seed(identity), ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
