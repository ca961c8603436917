"""Unit test fixtures.

FakeSession stands in for BatchSession: it interprets the statements issued
by IssueMapper / IssueChangeMapper against in-memory tables, so the engine
can be exercised without PostgreSQL. Statements are matched by identity with
the SQL constants of issue_etl.issue_mapper.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest

from issue_etl import issue_mapper as m
from issue_etl.rules import Rule, RuleRepository


class FakeSession:
    def __init__(self) -> None:
        self.issues: dict[str, dict[str, Any]] = {}
        self.markers: dict[str, dict[str, Any]] = {}
        self.changes: list[dict[str, Any]] = []
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.conditional_updates_applied: list[str] = []
        self.conditional_updates_skipped: list[str] = []
        self.queries = 0
        self.flushes = 0
        self.commits = 0
        self.closed = False
        self.fail_on_commit: Exception | None = None

    # -- BatchSession surface ------------------------------------------------

    def execute(self, sql: str, params: dict[str, Any]) -> None:
        self.statements.append((sql, params))
        if sql is m._INSERT_ISSUE_SQL:
            if params["kee"] in self.issues:
                raise AssertionError(f"duplicate issue key {params['kee']}")
            self.issues[params["kee"]] = dict(params)
        elif sql is m._UPDATE_ISSUE_IF_BEFORE_SQL:
            stored = self.issues[params["kee"]]
            if stored["updated_at"] is None or stored["updated_at"] < params["updated_at"]:
                self._apply_update(stored, params)
                self.conditional_updates_applied.append(params["kee"])
            else:
                self.conditional_updates_skipped.append(params["kee"])
        elif sql is m._UPDATE_ISSUE_SQL:
            self._apply_update(self.issues[params["kee"]], params)
        elif sql is m._INSERT_NEW_CODE_REFERENCE_SQL:
            if params["issue_key"] not in self.issues:
                raise AssertionError("marker inserted before its issue")
            self.markers[params["issue_key"]] = dict(params)
        elif sql is m._DELETE_NEW_CODE_REFERENCE_SQL:
            self.markers.pop(params["issue_key"], None)
        elif sql is m._INSERT_ISSUE_CHANGE_SQL:
            if params["issue_key"] not in self.issues:
                raise AssertionError("change inserted before its issue")
            self.changes.append(dict(params))
        else:
            raise AssertionError(f"unexpected statement: {sql}")

    def query(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        self.queries += 1
        assert sql is m._SELECT_BY_KEYS_IF_NOT_UPDATED_AT_SQL
        keys = set(params["keys"])
        return [
            dict(row) for kee, row in sorted(self.issues.items())
            if kee in keys and row["updated_at"] != params["updated_at"]
        ]

    def flush_statements(self) -> None:
        self.flushes += 1

    def commit(self) -> None:
        if self.fail_on_commit is not None:
            raise self.fail_on_commit
        self.commits += 1

    def close(self) -> None:
        self.closed = True

    # -- helpers ---------------------------------------------------------------

    @staticmethod
    def _apply_update(stored: dict[str, Any], params: dict[str, Any]) -> None:
        for col, value in params.items():
            if col in ("kee", "rule_uuid", "created_at"):
                continue
            stored[col] = value

    def seed_issue(self, kee: str, **values: Any) -> dict[str, Any]:
        row = {col: None for col in m.ISSUE_COLUMNS}
        row.update({"kee": kee, "manual_severity": False, "updated_at": 0})
        row.update(values)
        self.issues[kee] = row
        return row


class FakeSessionFactory:
    """Callable returning a context manager, like partial(open_session, dsn)."""

    def __init__(self, session: FakeSession) -> None:
        self.session = session
        self.opened = 0

    @contextmanager
    def __call__(self):
        self.opened += 1
        try:
            yield self.session
        finally:
            self.session.close()


class StepClock:
    """Deterministic clock: returns *start*, then advances by *step* per call."""

    def __init__(self, start: int = 1_000_000, step: int = 1) -> None:
        self.now = start
        self.step = step
        self.calls = 0

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        self.calls += 1
        return value


class SequentialUuids:
    def __init__(self, prefix: str = "uuid") -> None:
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}-{self.count}"


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def session_factory(fake_session: FakeSession) -> FakeSessionFactory:
    return FakeSessionFactory(fake_session)


@pytest.fixture()
def rule_repository() -> RuleRepository:
    return RuleRepository([
        Rule(uuid="rule-uuid-1", repository_key="python", rule_key="S100", status="READY"),
        Rule(uuid="rule-uuid-2", repository_key="python", rule_key="S200", status="READY"),
        Rule(uuid="rule-uuid-3", repository_key="java", rule_key="S300", status="REMOVED"),
    ])


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def uuids() -> SequentialUuids:
    return SequentialUuids()


def _issue_record(key: str, **overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "key": key,
        "rule_key": "python:S100",
        "component_uuid": "comp-1",
        "project_uuid": "proj-1",
        "severity": "MAJOR",
        "message": f"message for {key}",
        "line": 10,
        "status": "OPEN",
        "type": "CODE_SMELL",
        "creation_date": 1_600_000_000_000,
    }
    record.update(overrides)
    return record


@pytest.fixture()
def issue_record():
    """Builder for one issue cache record: issue_record(key, **overrides)."""
    return _issue_record


@pytest.fixture()
def make_cache(tmp_path: Path):
    """Write records as a JSON-lines cache file and return its path."""

    def _make(records: list[dict[str, Any]], name: str = "issues.jsonl") -> Path:
        path = tmp_path / "cache" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as fh:
            for record in records:
                fh.write(json.dumps(record) + "\n")
        return path

    return _make
