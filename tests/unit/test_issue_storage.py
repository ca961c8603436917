"""Unit tests for issue_etl.issue_storage — change-log rows."""

from __future__ import annotations

from unittest.mock import MagicMock

from issue_etl.issue_storage import IssueStorage
from issue_etl.model import FieldDiffs, Issue, IssueComment


def _uuids():
    counter = iter(range(1, 100))
    return lambda: f"chg-{next(counter)}"


def _inserted(mapper: MagicMock) -> list:
    return [c.args[0] for c in mapper.insert.call_args_list]


class TestFieldDiffsEncoding:
    def test_old_and_new(self):
        diffs = FieldDiffs(diffs={"severity": ("MINOR", "MAJOR"), "status": (None, "OPEN")})
        assert diffs.to_encoded_string() == "severity=MINOR|MAJOR,status=OPEN"

    def test_removed_value(self):
        diffs = FieldDiffs(diffs={"assignee": ("bob", None)})
        assert diffs.to_encoded_string() == "assignee=bob|"


class TestInsertChanges:
    def test_changed_issue_writes_current_change(self):
        mapper = MagicMock()
        issue = Issue(
            key="AX1", rule_key="python:S100", project_uuid="proj-1", is_changed=True,
            current_change=FieldDiffs(diffs={"line": ("4", "5")}, creation_date=77),
        )
        written = IssueStorage(clock=lambda: 1).insert_changes(mapper, issue, _uuids())
        assert written == 1
        (change,) = _inserted(mapper)
        assert change.uuid == "chg-1"
        assert change.issue_key == "AX1"
        assert change.change_type == "diff"
        assert change.change_data == "line=4|5"
        assert change.project_uuid == "proj-1"
        assert change.created_at == 77

    def test_new_issue_ignores_current_change(self):
        mapper = MagicMock()
        issue = Issue(
            key="AX1", rule_key="python:S100", is_new=True,
            current_change=FieldDiffs(diffs={"assignee": (None, "bob")}),
        )
        assert IssueStorage(clock=lambda: 1).insert_changes(mapper, issue, _uuids()) == 0
        mapper.insert.assert_not_called()

    def test_copied_issue_writes_history(self):
        mapper = MagicMock()
        issue = Issue(
            key="AX1", rule_key="python:S100", is_copied=True,
            changes=(
                FieldDiffs(diffs={"status": ("OPEN", "CONFIRMED")}, creation_date=1),
                FieldDiffs(diffs={"assignee": (None, "bob")}, creation_date=2),
            ),
            current_change=FieldDiffs(diffs={"ignored": ("a", "b")}),
        )
        IssueStorage(clock=lambda: 1).insert_changes(mapper, issue, _uuids())
        assert [c.change_data for c in _inserted(mapper)] == [
            "status=OPEN|CONFIRMED",
            "assignee=bob",
        ]

    def test_only_new_comments_written(self):
        mapper = MagicMock()
        issue = Issue(
            key="AX1", rule_key="python:S100", is_new=True,
            comments=(
                IssueComment(key="c-old", markdown_text="old"),
                IssueComment(key="c-new", markdown_text="new", user_uuid="u1", is_new=True),
            ),
        )
        IssueStorage(clock=lambda: 55).insert_changes(mapper, issue, _uuids())
        (change,) = _inserted(mapper)
        assert change.kee == "c-new"
        assert change.change_type == "comment"
        assert change.change_data == "new"
        assert change.user_login == "u1"
        assert change.created_at == 55
