"""calendar_etl.import_events_csv

Calendar event CSV import: pipeline entry point and CLI.

Stages, strictly forward:
  1. Ingestion     : validate + decode the upload, stream RawRow records
  2. Normalization : RawRow → EventRecord (or a failed outcome)
  3. Reconciliation: upsert by natural key (slug, starts_at)
  4. Reporting     : one ImportOutcome per row, in file order

Usage:
    python -m calendar_etl.import_events_csv \\
        --db-dsn "$CALENDAR_DB_DSN" \\
        --csv-path "exports/events.csv" \\
        --reference-tz "America/New_York" \\
        --rejects-path "artifacts/rejects/events_rejects.csv"

In a real run each row commits on its own, so stopping part-way leaves
earlier rows in place.  --dry-run wraps the whole batch in one transaction
with a savepoint per row and rolls it all back at the end.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone, tzinfo
from pathlib import Path

import click
import psycopg
import yaml

from calendar_etl.config import ConfigValidationError, load_import_config
from calendar_etl.ingest import (
    ALLOWED_CONTENT_TYPES,
    DEFAULT_MAX_UPLOAD_BYTES,
    iter_raw_rows,
    missing_columns,
    validate_upload,
)
from calendar_etl.normalize import EXPECTED_COLUMNS, normalize_event_row, parse_ts
from calendar_etl.records import (
    ERROR_NORMALIZATION,
    ERROR_PARSE,
    OUTCOME_FAILED,
    ImportOutcome,
    RawRow,
)
from calendar_etl.report import format_outcome, summarize
from calendar_etl.shared import (
    BatchError,
    NormalizationError,
    RejectWriter,
    RunCounters,
    write_run_report,
)
from calendar_etl.store import EventStore, PostgresEventStore
from calendar_etl.upsert import reconcile

log = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Per-row processing
# ---------------------------------------------------------------------------

def _reject(
    raw: RawRow,
    outcome: ImportOutcome,
    counters: RunCounters,
    rejects: RejectWriter | None,
) -> None:
    counters.rows_rejected += 1
    if rejects is not None:
        rejects.write(
            {
                "_line_number": str(raw.line_number),
                **{c: raw.fields.get(c) or "" for c in EXPECTED_COLUMNS},
            },
            outcome.error or "unknown",
        )


def process_row(
    raw: RawRow,
    store: EventStore,
    reference_tz: tzinfo,
    now: datetime,
    counters: RunCounters,
    retry_transient: bool = True,
) -> ImportOutcome:
    """Carry one RawRow through normalization and reconciliation."""
    counters.rows_read += 1

    if raw.parse_error is not None:
        counters.parse_errors += 1
        return ImportOutcome(
            kind=OUTCOME_FAILED,
            name=None,
            starts_at=None,
            line_number=raw.line_number,
            error=f"csv_parse_error: {raw.parse_error}",
            error_kind=ERROR_PARSE,
        )

    try:
        candidate = normalize_event_row(raw, reference_tz)
    except NormalizationError as exc:
        counters.normalization_errors += 1
        return ImportOutcome(
            kind=OUTCOME_FAILED,
            name=raw.get("name") or None,
            starts_at=parse_ts(raw.get("starts_at"), reference_tz),
            line_number=raw.line_number,
            error=str(exc),
            error_kind=ERROR_NORMALIZATION,
        )

    return reconcile(
        store, candidate, now,
        line_number=raw.line_number,
        counters=counters,
        retry_transient=retry_transient,
    )


# ---------------------------------------------------------------------------
# Pipeline entry point
# ---------------------------------------------------------------------------

def import_events(
    buffer: bytes,
    store: EventStore,
    *,
    reference_tz: tzinfo,
    content_type: str | None = None,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    allowed_content_types: Iterable[str] = ALLOWED_CONTENT_TYPES,
    clock: Callable[[], datetime] = utc_now,
    counters: RunCounters | None = None,
    rejects: RejectWriter | None = None,
    retry_transient: bool = True,
) -> list[ImportOutcome]:
    """Import an event CSV upload into store; return one outcome per row.

    Raises BatchError (before touching the store) when the buffer itself is
    unusable.  Row-level problems never raise; they come back as failed
    outcomes in file order.
    """
    counters = counters if counters is not None else RunCounters()

    validate_upload(buffer, content_type, max_bytes, allowed_content_types)
    rows = iter_raw_rows(buffer)

    missing = missing_columns(rows.fieldnames)
    if missing:
        msg = f"missing required columns {missing}; every row will fail"
        log.warning(msg)
        counters.warnings.append(msg)

    outcomes: list[ImportOutcome] = []
    for raw in rows:
        outcome = process_row(
            raw, store, reference_tz, clock(), counters, retry_transient,
        )
        if not outcome.ok:
            _reject(raw, outcome, counters, rejects)
        outcomes.append(outcome)
    return outcomes


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option("--db-dsn", required=True, envvar="CALENDAR_DB_DSN", help="PostgreSQL DSN")
@click.option("--csv-path", required=True, type=click.Path(exists=True, dir_okay=False), help="Event CSV export")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False), help="YAML import settings")
@click.option("--reference-tz", default=None, help="IANA zone for timezone-less timestamps (overrides config)")
@click.option("--content-type", default=None, help="Declared media type of the upload, checked against the allowed set")
@click.option("--max-upload-bytes", default=None, type=int, help="Upload size limit (overrides config)")
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/calendar_event_rejects.csv",
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--report/--no-report", default=True, show_default=True, help="Write a JSON run report under ./artifacts/reports")
def main(
    db_dsn: str,
    csv_path: str,
    config_path: str | None,
    reference_tz: str | None,
    content_type: str | None,
    max_upload_bytes: int | None,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    report: bool,
) -> None:
    """Import calendar events from a legacy CSV export."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    run_id = run_id or str(uuid.uuid4())
    started_at = utc_now().isoformat()
    counters = RunCounters()

    click.echo(f"[{run_id}] Starting calendar event import (dry_run={dry_run})")

    try:
        config = load_import_config(Path(config_path) if config_path else None)
        if reference_tz:
            config.reference_timezone = reference_tz
        tz = config.tz
    except (ConfigValidationError, yaml.YAMLError) as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    if max_upload_bytes is not None:
        config.max_upload_bytes = max_upload_bytes

    buffer = Path(csv_path).read_bytes()
    rejects = RejectWriter(Path(rejects_path))

    conn = psycopg.connect(db_dsn, autocommit=False)
    store = PostgresEventStore(conn)
    try:
        kwargs = dict(
            reference_tz=tz,
            content_type=content_type,
            max_bytes=config.max_upload_bytes,
            allowed_content_types=config.allowed_content_types,
            counters=counters,
            rejects=rejects,
            retry_transient=config.retry_transient,
        )
        try:
            if dry_run:
                with conn.transaction(force_rollback=True):
                    outcomes = import_events(buffer, store, **kwargs)
                click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
            else:
                outcomes = import_events(buffer, store, **kwargs)
                conn.commit()
        except BatchError as exc:
            conn.rollback()
            click.echo(f"[{run_id}] FATAL: {exc}", err=True)
            sys.exit(1)
    finally:
        conn.close()
        rejects.close()

    lines = [format_outcome(o, tz) for o in outcomes]
    for line in lines:
        click.echo(f"[{run_id}] {line}")

    summary = summarize(outcomes)
    click.echo(
        f"[{run_id}] Done: {counters.rows_read} rows read, "
        f"{summary['created']} created, {summary['updated']} updated, "
        f"{summary['failed']} failed ({summary['ambiguous_keys']} ambiguous keys)"
    )
    if summary["ambiguous_keys"]:
        click.echo(
            f"[{run_id}] WARNING: {summary['ambiguous_keys']} natural key(s) matched "
            "more than one stored event; check calendar_event for duplicates",
            err=True,
        )

    if report:
        report_path = write_run_report(
            run_id, started_at, dry_run,
            {"csv_path": csv_path, "reference_timezone": config.reference_timezone},
            counters, lines,
        )
        click.echo(f"[{run_id}] Report written to {report_path}")

    if dry_run and summary["failed"]:
        click.echo(
            f"[{run_id}] Dry-run completed with row-level errors; exiting non-zero",
            err=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
