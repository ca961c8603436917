"""issue_etl.db

Batched psycopg session used by the persistence engine.

BatchSession queues write statements and sends them to the server with
``Cursor.executemany`` (one round of pipelined statements per distinct SQL
text), either when MAX_BATCH_SIZE statements are pending or when the caller
needs the writes to be visible (``query``, ``flush_statements``, ``commit``).
It never commits on its own; the caller owns the transaction.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg.rows import dict_row

log = logging.getLogger(__name__)

MAX_BATCH_SIZE = 250


def system_now() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class BatchSession:
    """Transactional session buffering write statements for executemany."""

    def __init__(
        self,
        conn: psycopg.Connection,
        *,
        max_batch_size: int = MAX_BATCH_SIZE,
        dry_run: bool = False,
    ) -> None:
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")
        self._conn = conn
        self._max_batch_size = max_batch_size
        self._dry_run = dry_run
        # [(sql, [params, ...]), ...]; consecutive statements with the same
        # SQL share one entry so executemany keeps the original order.
        self._pending: list[tuple[str, list[Any]]] = []
        self._pending_count = 0

    @property
    def connection(self) -> psycopg.Connection:
        return self._conn

    @property
    def pending_count(self) -> int:
        return self._pending_count

    def execute(self, sql: str, params: Any) -> None:
        """Queue one write statement."""
        if self._pending and self._pending[-1][0] == sql:
            self._pending[-1][1].append(params)
        else:
            self._pending.append((sql, [params]))
        self._pending_count += 1
        if self._pending_count >= self._max_batch_size:
            self.flush_statements()

    def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        """Flush pending writes, then run a read and return all rows as dicts."""
        self.flush_statements()
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchall()

    def flush_statements(self) -> None:
        if not self._pending:
            return
        pending, self._pending = self._pending, []
        count, self._pending_count = self._pending_count, 0
        with self._conn.cursor() as cur:
            for sql, params_seq in pending:
                cur.executemany(sql, params_seq)
        log.debug("flushed %d statement(s) in %d group(s)", count, len(pending))

    def commit(self) -> None:
        self.flush_statements()
        if self._dry_run:
            self._conn.rollback()
            return
        self._conn.commit()

    def rollback(self) -> None:
        self._pending = []
        self._pending_count = 0
        self._conn.rollback()

    def close(self) -> None:
        if self._pending:
            log.warning(
                "closing session with %d unflushed statement(s); they are discarded",
                self._pending_count,
            )
        self._pending = []
        self._pending_count = 0
        self._conn.close()


@contextmanager
def open_session(
    db_dsn: str,
    *,
    max_batch_size: int = MAX_BATCH_SIZE,
    dry_run: bool = False,
) -> Iterator[BatchSession]:
    """Open one non-autocommit connection wrapped in a BatchSession.

    The connection is closed on every exit path; an uncommitted transaction
    is rolled back by closing it.
    """
    conn = psycopg.connect(db_dsn, autocommit=False)
    session = BatchSession(conn, max_batch_size=max_batch_size, dry_run=dry_run)
    try:
        yield session
    finally:
        session.close()
