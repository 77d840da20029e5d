"""calendar_etl.upsert

Natural-key reconciliation of candidate events against an EventStore.

For each candidate:
  1. Look up stored events with the same (slug, starts_at).
  2. One match   → overwrite every import field, bump updated_at, update.
  3. No match    → assign a fresh id, stamp created_at/updated_at, insert.
  4. Many match  → AmbiguousKeyError; nothing is written.

reconcile() converts every row-level exception into a failed ImportOutcome,
so a single bad row never aborts the batch.  A TransientPersistenceError is
retried once inside a fresh row scope before being reported.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime

from calendar_etl.records import (
    ERROR_AMBIGUOUS_KEY,
    ERROR_PERSISTENCE,
    OUTCOME_CREATED,
    OUTCOME_FAILED,
    OUTCOME_UPDATED,
    EventRecord,
    ImportOutcome,
)
from calendar_etl.shared import (
    AmbiguousKeyError,
    PersistenceError,
    RunCounters,
    TransientPersistenceError,
)
from calendar_etl.store import EventStore

log = logging.getLogger(__name__)

AMBIGUOUS_NATURAL_KEY = "ambiguous natural key"


def merge_event(
    existing: EventRecord, candidate: EventRecord, now: datetime
) -> EventRecord:
    """Return existing with every import field taken from candidate.

    The merge is total: a None in the candidate clears the stored value.
    id and created_at are kept from the stored record.
    """
    return dataclasses.replace(existing, **candidate.import_values(), updated_at=now)


def new_event(candidate: EventRecord, now: datetime) -> EventRecord:
    return dataclasses.replace(
        candidate,
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
    )


def upsert_event(
    store: EventStore, candidate: EventRecord, now: datetime
) -> tuple[str, EventRecord]:
    """Apply one candidate.  Returns (outcome kind, stored event).

    Raises AmbiguousKeyError or PersistenceError; caller manages the scope.
    """
    matches = store.find_by_slug_and_start(*candidate.natural_key)
    if len(matches) > 1:
        raise AmbiguousKeyError(
            f"{AMBIGUOUS_NATURAL_KEY}: slug={candidate.slug!r} "
            f"starts_at={candidate.starts_at.isoformat()} ({len(matches)} records)"
        )
    if matches:
        return OUTCOME_UPDATED, store.update(merge_event(matches[0], candidate, now))
    return OUTCOME_CREATED, store.insert(new_event(candidate, now))


def _failed(
    candidate: EventRecord, line_number: int | None, error: str, error_kind: str
) -> ImportOutcome:
    return ImportOutcome(
        kind=OUTCOME_FAILED,
        name=candidate.name,
        starts_at=candidate.starts_at,
        line_number=line_number,
        error=error,
        error_kind=error_kind,
    )


def _scoped_upsert(
    store: EventStore, candidate: EventRecord, now: datetime
) -> tuple[str, EventRecord]:
    with store.row_scope():
        return upsert_event(store, candidate, now)


def reconcile(
    store: EventStore,
    candidate: EventRecord,
    now: datetime,
    line_number: int | None = None,
    counters: RunCounters | None = None,
    retry_transient: bool = True,
) -> ImportOutcome:
    """Upsert one candidate and report the result as an ImportOutcome."""
    try:
        try:
            kind, stored = _scoped_upsert(store, candidate, now)
        except TransientPersistenceError as exc:
            if not retry_transient:
                raise
            log.warning(
                "line %s: transient store error, retrying once: %s", line_number, exc
            )
            if counters is not None:
                counters.transient_retries += 1
            kind, stored = _scoped_upsert(store, candidate, now)
    except AmbiguousKeyError as exc:
        log.warning("line %s: %s", line_number, exc)
        if counters is not None:
            counters.ambiguous_keys += 1
            counters.warnings.append(f"line {line_number}: {exc}")
        return _failed(candidate, line_number, AMBIGUOUS_NATURAL_KEY, ERROR_AMBIGUOUS_KEY)
    except PersistenceError as exc:
        if counters is not None:
            counters.db_phase_errors += 1
            counters.warnings.append(f"line {line_number} {type(exc).__name__}: {exc}")
        return _failed(candidate, line_number, str(exc), ERROR_PERSISTENCE)

    if counters is not None:
        if kind == OUTCOME_CREATED:
            counters.events_created += 1
        else:
            counters.events_updated += 1
    return ImportOutcome(
        kind=kind,
        name=stored.name,
        starts_at=stored.starts_at,
        line_number=line_number,
        event_id=stored.id,
    )
