"""issue_etl.issue_storage

Change-log writes for persisted issues (the append-only issue_changes table).
"""

from __future__ import annotations

from collections.abc import Callable

from issue_etl.issue_mapper import IssueChangeMapper
from issue_etl.model import (
    CHANGE_TYPE_COMMENT,
    CHANGE_TYPE_DIFF,
    FieldDiffs,
    Issue,
    IssueChange,
    IssueComment,
)


class IssueStorage:
    def __init__(self, clock: Callable[[], int]) -> None:
        self._clock = clock

    def insert_changes(
        self,
        mapper: IssueChangeMapper,
        issue: Issue,
        uuid_factory: Callable[[], str],
    ) -> int:
        """Write the change-log rows for one persisted issue.

        New comments are always written. A copied issue brings its whole
        diff history along; any other issue that already existed writes only
        the diff of the current analysis. Returns the number of rows queued.
        """
        written = 0
        for comment in issue.comments:
            if comment.is_new:
                mapper.insert(self._comment_change(issue, comment, uuid_factory))
                written += 1

        if issue.is_copied:
            for diffs in issue.changes:
                mapper.insert(self._diff_change(issue, diffs, uuid_factory))
                written += 1
        elif not issue.is_new and issue.current_change is not None:
            mapper.insert(self._diff_change(issue, issue.current_change, uuid_factory))
            written += 1
        return written

    def _comment_change(
        self,
        issue: Issue,
        comment: IssueComment,
        uuid_factory: Callable[[], str],
    ) -> IssueChange:
        created_at = comment.created_at if comment.created_at is not None else self._clock()
        return IssueChange(
            uuid=uuid_factory(),
            kee=comment.key,
            issue_key=issue.key,
            change_type=CHANGE_TYPE_COMMENT,
            change_data=comment.markdown_text,
            user_login=comment.user_uuid,
            project_uuid=issue.project_uuid,
            issue_change_creation_date=created_at,
            created_at=created_at,
            updated_at=created_at,
        )

    def _diff_change(
        self,
        issue: Issue,
        diffs: FieldDiffs,
        uuid_factory: Callable[[], str],
    ) -> IssueChange:
        created_at = diffs.creation_date if diffs.creation_date is not None else self._clock()
        return IssueChange(
            uuid=uuid_factory(),
            issue_key=issue.key,
            change_type=CHANGE_TYPE_DIFF,
            change_data=diffs.to_encoded_string(),
            user_login=diffs.user_uuid,
            project_uuid=issue.project_uuid,
            issue_change_creation_date=created_at,
            created_at=created_at,
            updated_at=created_at,
        )
