"""calendar_etl.report

Human-readable rendering and summary counts for ImportOutcome lists.
Pure functions; callers decide where lines go.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, tzinfo

from calendar_etl.records import (
    ERROR_AMBIGUOUS_KEY,
    OUTCOME_CREATED,
    OUTCOME_FAILED,
    OUTCOME_UPDATED,
    ImportOutcome,
)

_VERBS = {
    OUTCOME_CREATED: "Created",
    OUTCOME_UPDATED: "Updated",
    OUTCOME_FAILED: "Failed",
}


def format_start(starts_at: datetime | None, reference_tz: tzinfo) -> str:
    """Wall-clock ISO time in the reference zone, without an offset."""
    if starts_at is None:
        return "?"
    return starts_at.astimezone(reference_tz).strftime("%Y-%m-%dT%H:%M:%S")


def format_outcome(outcome: ImportOutcome, reference_tz: tzinfo) -> str:
    """e.g. 'Created "Pumpkin Festival" @ 2009-10-09T20:00:00'."""
    name = outcome.name if outcome.name is not None else "?"
    line = f'{_VERBS[outcome.kind]} "{name}" @ {format_start(outcome.starts_at, reference_tz)}'
    if outcome.kind == OUTCOME_FAILED and outcome.error:
        line += f": {outcome.error}"
    return line


def summarize(outcomes: Iterable[ImportOutcome]) -> dict[str, int]:
    counts = {
        OUTCOME_CREATED: 0,
        OUTCOME_UPDATED: 0,
        OUTCOME_FAILED: 0,
        "ambiguous_keys": 0,
    }
    for outcome in outcomes:
        counts[outcome.kind] += 1
        if outcome.error_kind == ERROR_AMBIGUOUS_KEY:
            counts["ambiguous_keys"] += 1
    return counts
