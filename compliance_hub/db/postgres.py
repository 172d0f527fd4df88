from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction.

    The outermost ``transaction()`` on a thread opens the connection; nested
    ``transaction()``/``run_in_tx()`` calls on that thread reuse it, so several
    repository calls commit or roll back together.
    """

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()
        self._local = threading.local()

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        current = getattr(self._local, "conn", None)
        if current is not None:
            yield current
            return

        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            self._local.conn = conn
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._local.conn = None

    def run_in_tx(self, *, fn: Callable[[Any], Any]) -> Any:
        with self.transaction() as conn:
            return fn(conn)
