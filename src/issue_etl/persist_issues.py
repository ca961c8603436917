"""issue_etl.persist_issues

Persists the issues of one analysis run from the issue cache into the
database.

Each cached issue is routed to exactly one bucket, first match wins:

    new or copied                      → insert bucket
    changed                            → update bucket
    no longer new on reference branch  → retire bucket
    anything else                      → dropped (nothing to write)

A bucket is flushed through its writer as soon as it holds
ISSUE_BATCHING_SIZE issues, and once more at end of stream for the
remainder. All writes share one BatchSession which is committed exactly once,
after the last bucket flush.

Updated issues use optimistic concurrency: the UPDATE only applies if the
stored row was last written before this batch's timestamp. Rows that were
written concurrently are re-selected and merged by UpdateConflictResolver
instead of being overwritten.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

import psycopg

from issue_etl.conflict_resolver import UpdateConflictResolver
from issue_etl.db import MAX_BATCH_SIZE, BatchSession, open_session, system_now
from issue_etl.issue_cache import IssueCache
from issue_etl.issue_mapper import IssueChangeMapper, IssueMapper
from issue_etl.issue_storage import IssueStorage
from issue_etl.model import (
    Issue,
    new_code_reference_from_row,
    to_row_for_insert,
    to_row_for_update,
)
from issue_etl.normalize import human_readable_byte_count_si
from issue_etl.rules import RuleRepository, load_rule_repository
from issue_etl.shared import IssueStatistics, StepStatistics

log = logging.getLogger(__name__)

# Up to 2 * MAX_BATCH_SIZE issues per bucket in memory at once; large enough
# that every flush fills whole executemany batches.
ISSUE_BATCHING_SIZE = MAX_BATCH_SIZE * 2

BUCKET_INSERT = "insert"
BUCKET_UPDATE = "update"
BUCKET_RETIRE = "retire"


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify(issue: Issue) -> str | None:
    """Return the bucket name for *issue*, or None when it needs no write."""
    if issue.is_new or issue.is_copied:
        return BUCKET_INSERT
    if issue.is_changed:
        return BUCKET_UPDATE
    if issue.is_no_longer_new_code_reference_issue:
        return BUCKET_RETIRE
    return None


# ---------------------------------------------------------------------------
# Batch bucket
# ---------------------------------------------------------------------------

@dataclass
class BatchBucket:
    """Ordered in-memory buffer of issues flushed through *writer*.

    append() flushes automatically when *capacity* is reached; flush() is a
    no-op on an empty bucket.
    """

    name: str
    writer: Callable[[list[Issue]], None]
    capacity: int = ISSUE_BATCHING_SIZE
    issues: list[Issue] = field(default_factory=list)
    flush_count: int = 0

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError(f"bucket capacity must be >= 1, got {self.capacity}")

    def __len__(self) -> int:
        return len(self.issues)

    def append(self, issue: Issue) -> None:
        self.issues.append(issue)
        if len(self.issues) >= self.capacity:
            self.flush()

    def flush(self) -> None:
        if not self.issues:
            return
        log.debug("flushing %s bucket: %d issue(s)", self.name, len(self.issues))
        self.writer(self.issues)
        self.issues = []
        self.flush_count += 1


# ---------------------------------------------------------------------------
# Step
# ---------------------------------------------------------------------------

@dataclass
class ComputationContext:
    statistics: StepStatistics = field(default_factory=StepStatistics)


class PersistIssuesStep:
    description = "Persist issues"

    def __init__(
        self,
        session_factory: Callable[[], AbstractContextManager[BatchSession]],
        issue_cache: IssueCache,
        rule_repository: RuleRepository,
        *,
        clock: Callable[[], int] = system_now,
        uuid_factory: Callable[[], str] = _new_uuid,
        conflict_resolver: UpdateConflictResolver | None = None,
        issue_storage: IssueStorage | None = None,
        batching_size: int = ISSUE_BATCHING_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self._issue_cache = issue_cache
        self._rule_repository = rule_repository
        self._clock = clock
        self._uuid_factory = uuid_factory
        self._conflict_resolver = conflict_resolver or UpdateConflictResolver(clock)
        self._issue_storage = issue_storage or IssueStorage(clock)
        self._batching_size = batching_size

    def execute(self, context: ComputationContext) -> None:
        statistics = IssueStatistics()
        try:
            context.statistics.add(
                "cacheSize",
                human_readable_byte_count_si(self._issue_cache.file_size()),
            )
            with self._session_factory() as session, self._issue_cache.traverse() as issues:
                mapper = IssueMapper(session)
                change_mapper = IssueChangeMapper(session)
                buckets = {
                    BUCKET_INSERT: BatchBucket(
                        BUCKET_INSERT,
                        partial(self._persist_new_issues, statistics, mapper=mapper, change_mapper=change_mapper),
                        self._batching_size,
                    ),
                    BUCKET_UPDATE: BatchBucket(
                        BUCKET_UPDATE,
                        partial(self._persist_updated_issues, statistics, mapper=mapper, change_mapper=change_mapper),
                        self._batching_size,
                    ),
                    BUCKET_RETIRE: BatchBucket(
                        BUCKET_RETIRE,
                        partial(self._persist_no_longer_new_issues, statistics, mapper=mapper),
                        self._batching_size,
                    ),
                }
                dropped = 0
                for issue in issues:
                    target = classify(issue)
                    if target is None:
                        dropped += 1
                        continue
                    buckets[target].append(issue)

                for bucket in buckets.values():
                    bucket.flush()
                session.flush_statements()
                session.commit()
                log.debug("%d issue(s) needed no write", dropped)
        finally:
            statistics.dump_to(context.statistics)
            log.info(
                "persist issues: inserts=%d updates=%d merged=%d",
                statistics.inserts, statistics.updates, statistics.merged,
            )

    # -- writers -------------------------------------------------------------

    def _persist_new_issues(
        self,
        statistics: IssueStatistics,
        added_issues: list[Issue],
        *,
        mapper: IssueMapper,
        change_mapper: IssueChangeMapper,
    ) -> None:
        if not added_issues:
            return

        now = self._clock()
        for issue in added_issues:
            rule_uuid = self._rule_repository.get_by_key(issue.rule_key).uuid
            row = to_row_for_insert(issue, rule_uuid, now)
            mapper.insert(row)
            if issue.is_on_referenced_branch and issue.is_on_changed_line:
                mapper.insert_as_new_code_on_reference_branch(
                    new_code_reference_from_row(row, now, self._uuid_factory)
                )
            statistics.inserts += 1

        # Second pass so every change row references an already inserted issue.
        for issue in added_issues:
            self._issue_storage.insert_changes(change_mapper, issue, self._uuid_factory)

    def _persist_updated_issues(
        self,
        statistics: IssueStatistics,
        updated_issues: list[Issue],
        *,
        mapper: IssueMapper,
        change_mapper: IssueChangeMapper,
    ) -> None:
        if not updated_issues:
            return

        now = self._clock()
        for issue in updated_issues:
            mapper.update_if_before_selected_date(to_row_for_update(issue, now))
            statistics.updates += 1

        # Rows not stamped with `now` lost the race against another writer.
        keys = [i.key for i in updated_issues]
        conflicts = mapper.select_by_keys_if_not_updated_at(keys, now)
        if conflicts:
            issues_by_key = {i.key: i for i in updated_issues}
            for stored in conflicts:
                self._conflict_resolver.resolve(issues_by_key[stored.kee], stored, mapper)
                statistics.merged += 1

        for issue in updated_issues:
            self._issue_storage.insert_changes(change_mapper, issue, self._uuid_factory)

    def _persist_no_longer_new_issues(
        self,
        statistics: IssueStatistics,
        no_longer_new_issues: list[Issue],
        *,
        mapper: IssueMapper,
    ) -> None:
        for issue in no_longer_new_issues:
            mapper.delete_as_new_code_on_reference_branch(issue.key)
            statistics.updates += 1


# ---------------------------------------------------------------------------
# Run entry point
# ---------------------------------------------------------------------------

def run_persist_issues(
    db_dsn: str,
    cache_path: Path,
    *,
    dry_run: bool = False,
    batching_size: int = ISSUE_BATCHING_SIZE,
    max_batch_size: int = MAX_BATCH_SIZE,
    clock: Callable[[], int] = system_now,
    uuid_factory: Callable[[], str] = _new_uuid,
    context: ComputationContext | None = None,
) -> StepStatistics:
    """Load the rule repository, then persist every issue of *cache_path*.

    In dry-run mode all writes are executed and then rolled back. Returns the
    reported statistics; exceptions propagate after statistics are recorded
    in *context* (when given).
    """
    context = context or ComputationContext()
    with psycopg.connect(db_dsn, autocommit=True) as conn:
        rule_repository = load_rule_repository(conn)

    step = PersistIssuesStep(
        partial(open_session, db_dsn, max_batch_size=max_batch_size, dry_run=dry_run),
        IssueCache(cache_path),
        rule_repository,
        clock=clock,
        uuid_factory=uuid_factory,
        batching_size=batching_size,
    )
    step.execute(context)
    return context.statistics


def build_persist_report(statistics: StepStatistics, dry_run: bool) -> str:
    values = statistics.to_dict()
    lines = [
        "=== Persist Issues Run Report ===",
        f"dry_run    : {dry_run}",
        f"cache_size : {values.get('cacheSize', 'n/a')}",
        "",
        "--- Issues ---",
        f"inserts    : {values.get('inserts', '0')}",
        f"updates    : {values.get('updates', '0')}",
        f"merged     : {values.get('merged', '0')}",
    ]
    return "\n".join(lines)
