#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from compliance_hub.db.schema import PostgresSchemaManager


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the compliance hub tables on PostgreSQL")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument(
        "--tables",
        default="",
        help="comma-separated table names; default creates every table and index",
    )
    parser.add_argument("--dry-run", action="store_true", help="print the DDL instead of executing it")
    args = parser.parse_args()

    dsn = str(args.dsn or "").strip()
    if not dsn:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    tables: list[str] | None = None
    if args.tables.strip():
        tables = [x.strip() for x in args.tables.split(",") if x.strip()]

    manager = PostgresSchemaManager(dsn, tables=tables)
    if args.dry_run:
        print(";\n".join(" ".join(stmt.split()) for stmt in manager.statements()) + ";")
        return 0
    applied = manager.apply()
    print(json.dumps({"applied_tables": applied, "count": len(applied)}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
