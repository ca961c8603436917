"""issue_etl.model

Value types flowing through the persistence engine:

    Issue                  — one computed issue read from the cache (immutable)
    FieldDiffs / IssueComment — change-log payload carried by an Issue
    IssueRow               — the `issues` table row
    NewCodeReferenceIssue  — the `new_code_reference_issues` marker row
    IssueChange            — the `issue_changes` change-log row

Conversion helpers build rows from issues the same way for every writer so
the insert, update and conflict paths never disagree on column values.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from issue_etl.normalize import (
    format_tags,
    normalize_tags,
    parse_bool,
    parse_epoch_ms,
    trim,
)

CHANGE_TYPE_DIFF = "diff"
CHANGE_TYPE_COMMENT = "comment"


# ---------------------------------------------------------------------------
# Change-log payload
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldDiffs:
    """Field-level changes made to an issue at one point in time.

    *diffs* maps field name to (old_value, new_value), in the order the
    fields were changed.
    """

    diffs: dict[str, tuple[str | None, str | None]]
    user_uuid: str | None = None
    creation_date: int | None = None

    def to_encoded_string(self) -> str:
        parts = []
        for name, (old, new) in self.diffs.items():
            value = f"{old}|" if old is not None else ""
            if new is not None:
                value += new
            parts.append(f"{name}={value}")
        return ",".join(parts)


@dataclass(frozen=True)
class IssueComment:
    key: str
    markdown_text: str
    user_uuid: str | None = None
    created_at: int | None = None
    is_new: bool = False


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Issue:
    key: str
    rule_key: str
    component_uuid: str | None = None
    project_uuid: str | None = None
    severity: str | None = None
    manual_severity: bool = False
    message: str | None = None
    line: int | None = None
    gap: float | None = None
    effort: int | None = None
    status: str | None = None
    resolution: str | None = None
    assignee_uuid: str | None = None
    author_login: str | None = None
    checksum: str | None = None
    tags: tuple[str, ...] = ()
    type: str | None = None
    creation_date: int | None = None
    update_date: int | None = None
    close_date: int | None = None
    # lifecycle classification
    is_new: bool = False
    is_copied: bool = False
    is_changed: bool = False
    is_no_longer_new_code_reference_issue: bool = False
    is_on_referenced_branch: bool = False
    is_on_changed_line: bool = False
    # change-log payload
    current_change: FieldDiffs | None = None
    changes: tuple[FieldDiffs, ...] = ()
    comments: tuple[IssueComment, ...] = ()


def _field_diffs_from_dict(data: dict[str, Any]) -> FieldDiffs:
    diffs: dict[str, tuple[str | None, str | None]] = {}
    for name, pair in (data.get("diffs") or {}).items():
        old, new = pair if isinstance(pair, (list, tuple)) else (None, pair)
        diffs[name] = (
            None if old is None else str(old),
            None if new is None else str(new),
        )
    return FieldDiffs(
        diffs=diffs,
        user_uuid=trim(data.get("user_uuid")),
        creation_date=parse_epoch_ms(data.get("creation_date")),
    )


def _comment_from_dict(data: dict[str, Any]) -> IssueComment:
    return IssueComment(
        key=str(data["key"]),
        markdown_text=data.get("markdown_text") or "",
        user_uuid=trim(data.get("user_uuid")),
        created_at=parse_epoch_ms(data.get("created_at")),
        is_new=parse_bool(data.get("is_new")),
    )


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def issue_from_dict(data: dict[str, Any]) -> Issue:
    """Build an Issue from one decoded cache record.

    Raises KeyError/ValueError/TypeError on a structurally invalid record.
    """
    key = trim(data["key"])
    rule_key = trim(data["rule_key"])
    if not key:
        raise ValueError("issue key cannot be empty")
    if not rule_key:
        raise ValueError(f"issue {key!r} has an empty rule_key")
    current = data.get("current_change")
    return Issue(
        key=key,
        rule_key=rule_key,
        component_uuid=trim(data.get("component_uuid")),
        project_uuid=trim(data.get("project_uuid")),
        severity=trim(data.get("severity")),
        manual_severity=parse_bool(data.get("manual_severity")),
        message=data.get("message"),
        line=_optional_int(data.get("line")),
        gap=_optional_float(data.get("gap")),
        effort=_optional_int(data.get("effort")),
        status=trim(data.get("status")),
        resolution=trim(data.get("resolution")),
        assignee_uuid=trim(data.get("assignee_uuid")),
        author_login=trim(data.get("author_login")),
        checksum=trim(data.get("checksum")),
        tags=tuple(normalize_tags(data.get("tags"))),
        type=trim(data.get("type")),
        creation_date=parse_epoch_ms(data.get("creation_date")),
        update_date=parse_epoch_ms(data.get("update_date")),
        close_date=parse_epoch_ms(data.get("close_date")),
        is_new=parse_bool(data.get("is_new")),
        is_copied=parse_bool(data.get("is_copied")),
        is_changed=parse_bool(data.get("is_changed")),
        is_no_longer_new_code_reference_issue=parse_bool(
            data.get("is_no_longer_new_code_reference_issue")
        ),
        is_on_referenced_branch=parse_bool(data.get("is_on_referenced_branch")),
        is_on_changed_line=parse_bool(data.get("is_on_changed_line")),
        current_change=_field_diffs_from_dict(current) if current else None,
        changes=tuple(_field_diffs_from_dict(c) for c in data.get("changes") or []),
        comments=tuple(_comment_from_dict(c) for c in data.get("comments") or []),
    )


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------

# Column order shared by INSERT and UPDATE statements in issue_mapper.
ISSUE_COLUMNS = (
    "kee", "rule_uuid", "component_uuid", "project_uuid",
    "severity", "manual_severity", "message", "line", "gap", "effort",
    "status", "resolution", "assignee_uuid", "author_login", "checksum",
    "tags", "issue_type",
    "issue_creation_date", "issue_update_date", "issue_close_date",
    "created_at", "updated_at",
)


@dataclass
class IssueRow:
    kee: str
    rule_uuid: str | None = None
    component_uuid: str | None = None
    project_uuid: str | None = None
    severity: str | None = None
    manual_severity: bool = False
    message: str | None = None
    line: int | None = None
    gap: float | None = None
    effort: int | None = None
    status: str | None = None
    resolution: str | None = None
    assignee_uuid: str | None = None
    author_login: str | None = None
    checksum: str | None = None
    tags: str | None = None
    issue_type: str | None = None
    issue_creation_date: int | None = None
    issue_update_date: int | None = None
    issue_close_date: int | None = None
    created_at: int | None = None
    updated_at: int | None = None

    def to_params(self) -> dict[str, Any]:
        return {col: getattr(self, col) for col in ISSUE_COLUMNS}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> IssueRow:
        return cls(**{col: record.get(col) for col in ISSUE_COLUMNS})


@dataclass(frozen=True)
class NewCodeReferenceIssue:
    uuid: str
    issue_key: str
    created_at: int


@dataclass(frozen=True)
class IssueChange:
    uuid: str
    issue_key: str
    change_type: str
    change_data: str
    kee: str | None = None
    user_login: str | None = None
    project_uuid: str | None = None
    issue_change_creation_date: int | None = None
    created_at: int | None = None
    updated_at: int | None = None


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------

def _row_from_issue(issue: Issue, now: int) -> IssueRow:
    return IssueRow(
        kee=issue.key,
        component_uuid=issue.component_uuid,
        project_uuid=issue.project_uuid,
        severity=issue.severity,
        manual_severity=issue.manual_severity,
        message=issue.message,
        line=issue.line,
        gap=issue.gap,
        effort=issue.effort,
        status=issue.status,
        resolution=issue.resolution,
        assignee_uuid=issue.assignee_uuid,
        author_login=issue.author_login,
        checksum=issue.checksum,
        tags=format_tags(list(issue.tags)),
        issue_type=issue.type,
        issue_creation_date=issue.creation_date,
        issue_update_date=issue.update_date,
        issue_close_date=issue.close_date,
        updated_at=now,
    )


def to_row_for_insert(issue: Issue, rule_uuid: str, now: int) -> IssueRow:
    row = _row_from_issue(issue, now)
    row.rule_uuid = rule_uuid
    row.created_at = now
    return row


def to_row_for_update(issue: Issue, now: int) -> IssueRow:
    """Row for an UPDATE: rule_uuid and created_at are left untouched in storage."""
    return _row_from_issue(issue, now)


def new_code_reference_from_row(
    row: IssueRow,
    now: int,
    uuid_factory: Callable[[], str],
) -> NewCodeReferenceIssue:
    return NewCodeReferenceIssue(uuid=uuid_factory(), issue_key=row.kee, created_at=now)
