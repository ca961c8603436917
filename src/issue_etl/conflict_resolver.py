"""issue_etl.conflict_resolver

Merge of a locally computed issue with a row that another writer updated
after the analysis read it.

Workflow fields edited by people (assignee, status, resolution, manual
severity, gap) are taken from the stored row; everything the analysis
recomputes (message, line, checksum, tags, type, effort, dates, author,
non-manual severity) keeps the local value.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable

from issue_etl.issue_mapper import IssueMapper
from issue_etl.model import Issue, IssueRow, to_row_for_update

log = logging.getLogger(__name__)


def merge_fields(stored: IssueRow, issue: Issue) -> Issue:
    """Return *issue* with the stored row's workflow fields applied."""
    changes: dict[str, object] = {
        "assignee_uuid": stored.assignee_uuid,
        "gap": stored.gap,
        "resolution": stored.resolution,
        "status": stored.status,
    }
    if stored.manual_severity:
        changes["manual_severity"] = True
        changes["severity"] = stored.severity
    return dataclasses.replace(issue, **changes)


class UpdateConflictResolver:
    def __init__(self, clock: Callable[[], int]) -> None:
        self._clock = clock

    def resolve(self, issue: Issue, stored: IssueRow, mapper: IssueMapper) -> Issue:
        log.debug("Resolve conflict on issue %s", issue.key)
        merged = merge_fields(stored, issue)
        mapper.update(to_row_for_update(merged, self._clock()))
        return merged
