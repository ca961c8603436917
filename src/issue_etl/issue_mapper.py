"""issue_etl.issue_mapper

SQL for the issues, new_code_reference_issues and issue_changes tables.

Writes go through BatchSession.execute and are therefore batched; the only
read, select_by_keys_if_not_updated_at, flushes pending writes first so it
observes the conditional updates queued before it.
"""

from __future__ import annotations

from collections.abc import Sequence

from issue_etl.db import BatchSession
from issue_etl.model import (
    ISSUE_COLUMNS,
    IssueChange,
    IssueRow,
    NewCodeReferenceIssue,
)

# Columns an UPDATE may touch; identity, rule and creation stamp are fixed.
_UPDATABLE_COLUMNS = tuple(
    c for c in ISSUE_COLUMNS if c not in ("kee", "rule_uuid", "created_at")
)

_INSERT_ISSUE_SQL = (
    f"INSERT INTO issues ({', '.join(ISSUE_COLUMNS)}) "
    f"VALUES ({', '.join(f'%({c})s' for c in ISSUE_COLUMNS)})"
)

_SET_CLAUSE = ", ".join(f"{c} = %({c})s" for c in _UPDATABLE_COLUMNS)

_UPDATE_ISSUE_SQL = f"UPDATE issues SET {_SET_CLAUSE} WHERE kee = %(kee)s"

# Optimistic concurrency: only rows last written strictly before this
# batch's timestamp, or never stamped at all, are overwritten.
_UPDATE_ISSUE_IF_BEFORE_SQL = (
    f"UPDATE issues SET {_SET_CLAUSE} "
    "WHERE kee = %(kee)s AND (updated_at IS NULL OR updated_at < %(updated_at)s)"
)

_SELECT_BY_KEYS_IF_NOT_UPDATED_AT_SQL = (
    f"SELECT {', '.join(ISSUE_COLUMNS)} FROM issues "
    "WHERE kee = ANY(%(keys)s) AND updated_at IS DISTINCT FROM %(updated_at)s "
    "ORDER BY kee"
)

_INSERT_NEW_CODE_REFERENCE_SQL = """
    INSERT INTO new_code_reference_issues (uuid, issue_key, created_at)
    VALUES (%(uuid)s, %(issue_key)s, %(created_at)s)
"""

_DELETE_NEW_CODE_REFERENCE_SQL = """
    DELETE FROM new_code_reference_issues WHERE issue_key = %(issue_key)s
"""

_INSERT_ISSUE_CHANGE_SQL = """
    INSERT INTO issue_changes
      (uuid, kee, issue_key, user_login, change_type, change_data,
       created_at, updated_at, issue_change_creation_date, project_uuid)
    VALUES
      (%(uuid)s, %(kee)s, %(issue_key)s, %(user_login)s, %(change_type)s,
       %(change_data)s, %(created_at)s, %(updated_at)s,
       %(issue_change_creation_date)s, %(project_uuid)s)
"""


class IssueMapper:
    def __init__(self, session: BatchSession) -> None:
        self._session = session

    def insert(self, row: IssueRow) -> None:
        self._session.execute(_INSERT_ISSUE_SQL, row.to_params())

    def insert_as_new_code_on_reference_branch(self, marker: NewCodeReferenceIssue) -> None:
        self._session.execute(
            _INSERT_NEW_CODE_REFERENCE_SQL,
            {"uuid": marker.uuid, "issue_key": marker.issue_key, "created_at": marker.created_at},
        )

    def delete_as_new_code_on_reference_branch(self, issue_key: str) -> None:
        """Delete the marker for *issue_key*; a missing marker is a no-op."""
        self._session.execute(_DELETE_NEW_CODE_REFERENCE_SQL, {"issue_key": issue_key})

    def update(self, row: IssueRow) -> None:
        self._session.execute(_UPDATE_ISSUE_SQL, row.to_params())

    def update_if_before_selected_date(self, row: IssueRow) -> None:
        """Update only if the stored updated_at is NULL or strictly before row.updated_at."""
        self._session.execute(_UPDATE_ISSUE_IF_BEFORE_SQL, row.to_params())

    def select_by_keys_if_not_updated_at(
        self,
        keys: Sequence[str],
        updated_at: int,
    ) -> list[IssueRow]:
        if not keys:
            return []
        records = self._session.query(
            _SELECT_BY_KEYS_IF_NOT_UPDATED_AT_SQL,
            {"keys": list(keys), "updated_at": updated_at},
        )
        return [IssueRow.from_record(r) for r in records]


class IssueChangeMapper:
    def __init__(self, session: BatchSession) -> None:
        self._session = session

    def insert(self, change: IssueChange) -> None:
        self._session.execute(
            _INSERT_ISSUE_CHANGE_SQL,
            {
                "uuid": change.uuid,
                "kee": change.kee,
                "issue_key": change.issue_key,
                "user_login": change.user_login,
                "change_type": change.change_type,
                "change_data": change.change_data,
                "created_at": change.created_at,
                "updated_at": change.updated_at,
                "issue_change_creation_date": change.issue_change_creation_date,
                "project_uuid": change.project_uuid,
            },
        )
