"""issue_etl.shared

Shared pieces used across the persistence engine and the CLI: exceptions,
the reporting sink, the per-run IssueStatistics collector, and run-report
writing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class UnknownRuleError(LookupError):
    """Raised when an issue references a rule key absent from the rule repository.

    This means the analysis step that produced the cache and the rule table
    disagree; it is never a recoverable per-issue condition.
    """


class IssueCacheError(Exception):
    """Raised when the issue cache is missing or holds a malformed record."""


# ---------------------------------------------------------------------------
# Reporting sink
# ---------------------------------------------------------------------------

@dataclass
class StepStatistics:
    """Ordered key/value statistics reported by one computation step."""

    entries: dict[str, str] = field(default_factory=dict)

    def add(self, key: str, value: Any) -> StepStatistics:
        if not key:
            raise ValueError("statistic key cannot be empty")
        if key in self.entries:
            raise ValueError(f"statistic {key!r} is already set")
        self.entries[key] = str(value)
        return self

    def to_dict(self) -> dict[str, str]:
        return dict(self.entries)


# ---------------------------------------------------------------------------
# IssueStatistics
# ---------------------------------------------------------------------------

@dataclass
class IssueStatistics:
    inserts: int = 0
    updates: int = 0
    merged: int = 0

    def dump_to(self, statistics: StepStatistics) -> None:
        (
            statistics
            .add("inserts", self.inserts)
            .add("updates", self.updates)
            .add("merged", self.merged)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "inserts": self.inserts,
            "updates": self.updates,
            "merged": self.merged,
        }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    statistics: StepStatistics,
    report_dir: Path = Path("./artifacts/reports"),
    error: str | None = None,
) -> Path:
    report: dict[str, Any] = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "statistics": statistics.to_dict(),
    }
    if error is not None:
        report["error"] = error
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
