"""Unit tests for calendar_etl.report."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from calendar_etl.records import ImportOutcome
from calendar_etl.report import format_outcome, format_start, summarize

UTC = timezone.utc
START = datetime(2009, 10, 9, 20, 0, tzinfo=UTC)


def test_format_created():
    outcome = ImportOutcome(kind="created", name="Pumpkin Festival", starts_at=START)
    assert format_outcome(outcome, UTC) == 'Created "Pumpkin Festival" @ 2009-10-09T20:00:00'


def test_format_updated():
    outcome = ImportOutcome(kind="updated", name="Pumpkin Festival", starts_at=START)
    assert format_outcome(outcome, UTC) == 'Updated "Pumpkin Festival" @ 2009-10-09T20:00:00'


def test_format_failed_includes_error():
    outcome = ImportOutcome(
        kind="failed", name="Pumpkin Festival", starts_at=START,
        error="ambiguous natural key", error_kind="ambiguous_key",
    )
    assert format_outcome(outcome, UTC) == (
        'Failed "Pumpkin Festival" @ 2009-10-09T20:00:00: ambiguous natural key'
    )


def test_format_failed_without_name_or_start():
    outcome = ImportOutcome(kind="failed", name=None, starts_at=None, error="slug: required")
    assert format_outcome(outcome, UTC) == 'Failed "?" @ ?: slug: required'


def test_format_start_converts_to_reference_zone():
    la = ZoneInfo("America/Los_Angeles")
    assert format_start(START, la) == "2009-10-09T13:00:00"


def test_format_start_drops_offset():
    plus_two = timezone(timedelta(hours=2))
    assert format_start(START.astimezone(plus_two), UTC) == "2009-10-09T20:00:00"


def test_summarize():
    outcomes = [
        ImportOutcome(kind="created", name="a", starts_at=START),
        ImportOutcome(kind="updated", name="b", starts_at=START),
        ImportOutcome(kind="updated", name="c", starts_at=START),
        ImportOutcome(kind="failed", name="d", starts_at=START, error_kind="ambiguous_key"),
        ImportOutcome(kind="failed", name="e", starts_at=None, error_kind="normalization"),
    ]
    assert summarize(outcomes) == {
        "created": 1,
        "updated": 2,
        "failed": 2,
        "ambiguous_keys": 1,
    }


def test_summarize_empty():
    assert summarize([]) == {"created": 0, "updated": 0, "failed": 0, "ambiguous_keys": 0}
