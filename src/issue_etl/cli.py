"""issue_etl.cli

CLI entrypoint for persisting an analysis run's issue cache.

Usage:
    python -m issue_etl.cli \\
        --db-dsn "$ISSUE_ETL_DB_DSN" \\
        --cache-path "artifacts/cache/issues.jsonl.gz" \\
        --run-id "analysis-2026-10-18"
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click

from issue_etl.db import MAX_BATCH_SIZE
from issue_etl.persist_issues import (
    ISSUE_BATCHING_SIZE,
    ComputationContext,
    build_persist_report,
    run_persist_issues,
)
from issue_etl.shared import write_run_report

MODE = "persist_issues"


@click.command()
@click.option("--db-dsn", required=True, envvar="ISSUE_ETL_DB_DSN", help="PostgreSQL DSN")
@click.option("--cache-path", required=True, type=click.Path(), help="Issue cache (JSON lines, optionally .gz)")
@click.option(
    "--batch-size",
    default=ISSUE_BATCHING_SIZE,
    type=click.IntRange(min=1),
    show_default=True,
    help="Issues buffered per lifecycle bucket before a flush",
)
@click.option(
    "--statement-batch-size",
    default=MAX_BATCH_SIZE,
    type=click.IntRange(min=1),
    show_default=True,
    help="Statements sent per executemany batch",
)
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--report-dir",
    default="./artifacts/reports",
    type=click.Path(),
    show_default=True,
    help="Directory for the JSON run report",
)
@click.option("--verbose", is_flag=True, default=False, help="Debug logging to stderr")
def main(
    db_dsn: str,
    cache_path: str,
    batch_size: int,
    statement_batch_size: int,
    dry_run: bool,
    run_id: str | None,
    report_dir: str,
    verbose: bool,
) -> None:
    """Persist computed issues into the issues database."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    click.echo(f"[{run_id}] Starting {MODE} run (dry_run={dry_run})")

    cache_file = Path(cache_path)
    if not cache_file.is_file():
        click.echo(f"[{run_id}] FATAL: issue cache not found: {cache_file}", err=True)
        sys.exit(1)

    context = ComputationContext()
    error: str | None = None
    try:
        run_persist_issues(
            db_dsn,
            cache_file,
            dry_run=dry_run,
            batching_size=batch_size,
            max_batch_size=statement_batch_size,
            context=context,
        )
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"

    click.echo(build_persist_report(context.statistics, dry_run=dry_run))
    report_path = write_run_report(
        run_id, started_at, MODE, dry_run,
        {"cache_path": str(cache_file)},
        context.statistics,
        report_dir=Path(report_dir),
        error=error,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if error is not None:
        click.echo(f"[{run_id}] FATAL: {error}; nothing committed", err=True)
        sys.exit(1)
    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    else:
        click.echo(f"[{run_id}] Committed.")


if __name__ == "__main__":
    main()
