"""Integration test fixtures.

Applies migrations/*.sql against an ephemeral PostgreSQL database provided
by pytest-postgresql before each integration test runs. Tests are skipped
when no PostgreSQL server binaries are installed, unless
ISSUE_ETL_REQUIRE_POSTGRES is set, in which case they fail.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from issue_etl.normalize import parse_bool

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = sorted((PROJECT_ROOT / "migrations").glob("*.sql"))

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


REQUIRE_POSTGRES_ENV = "ISSUE_ETL_REQUIRE_POSTGRES"


def _postgres_available() -> bool:
    return shutil.which("pg_ctl") is not None or shutil.which("pg_config") is not None


def _require_postgres() -> None:
    """Skip when no PostgreSQL binaries are installed.

    With ISSUE_ETL_REQUIRE_POSTGRES=1 (as in CI) the skip becomes a failure.
    """
    if _postgres_available():
        return
    reason = "PostgreSQL binaries (pg_ctl, pg_config) not found on PATH"
    if parse_bool(os.environ.get(REQUIRE_POSTGRES_ENV)):
        pytest.fail(f"{reason} and {REQUIRE_POSTGRES_ENV} is set", pytrace=False)
    pytest.skip(f"{reason}; set {REQUIRE_POSTGRES_ENV}=1 to fail instead")


@pytest.fixture()
def postgres_guard():
    return _require_postgres


# ---------------------------------------------------------------------------
# Schema fixture: applies all migrations for every test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(request):
    """Return (psycopg connection, dsn) with schema applied.

    Each test gets a fresh database via function scope so tests are isolated.
    """
    _require_postgres()
    pg = request.getfixturevalue("postgresql")
    dsn = (
        f"host={pg.info.host} "
        f"port={pg.info.port} "
        f"dbname={pg.info.dbname} "
        f"user={pg.info.user} "
        f"password={pg.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        _seed_rules(conn)
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture()
def conn(db_conn):
    connection, _ = db_conn
    yield connection


@pytest.fixture()
def dsn(db_conn):
    _, dsn = db_conn
    yield dsn


def _seed_rules(conn: psycopg.Connection) -> None:
    conn.execute(
        """
        INSERT INTO rules (uuid, plugin_name, plugin_rule_key, name, status, priority)
        VALUES
          ('rule-uuid-1', 'python', 'S100', 'Function names', 'READY', 'MAJOR'),
          ('rule-uuid-2', 'python', 'S200', 'Too many returns', 'READY', 'MINOR'),
          ('rule-uuid-3', 'java', 'S300', 'Removed rule', 'REMOVED', 'INFO')
        """
    )
