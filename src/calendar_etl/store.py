"""calendar_etl.store

Event store access used by the upsert engine.

EventStore is the capability the pipeline is handed; it is never a
module-level singleton.  PostgresEventStore implements it over the
calendar_event table (see migrations/0001_calendar_event.sql).

SELECT ... FOR UPDATE only locks rows that already exist, so the lookup
first takes a transaction-scoped advisory lock on the natural key.  Two
imports racing on a key that is not stored yet serialize on that lock
instead of both inserting.  The lock is released at commit or rollback
of the enclosing transaction, not at savepoint release.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

import psycopg

from calendar_etl.records import EventRecord
from calendar_etl.shared import PersistenceError, TransientPersistenceError


class EventStore(Protocol):
    def find_by_slug_and_start(
        self, slug: str, starts_at: datetime
    ) -> list[EventRecord]:
        """Return every stored event with this exact natural key."""
        ...

    def insert(self, event: EventRecord) -> EventRecord:
        ...

    def update(self, event: EventRecord) -> EventRecord:
        ...

    def row_scope(self) -> Any:
        """Context manager grouping one row's read+write into a single unit."""
        ...


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_COLUMNS = (
    "id", "name", "slug", "starts_at", "ends_at", "description",
    "is_featured", "is_has_ends_at", "is_all_day", "is_active", "haunted_by",
    "created_at", "updated_at",
)
_SELECT_COLUMNS = ", ".join(_COLUMNS)


def _row_to_event(row: tuple) -> EventRecord:
    values = dict(zip(_COLUMNS, row))
    values["id"] = str(values["id"])
    return EventRecord(**values)


def natural_key_lock_args(slug: str, starts_at: datetime) -> tuple[str, str]:
    """Text halves of the advisory lock key for (slug, starts_at).

    The instant is rendered in UTC so equal instants given in different
    zones hash to the same lock.
    """
    return (slug, starts_at.astimezone(timezone.utc).isoformat())


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Re-raise psycopg errors as PersistenceError.

    OperationalError covers dropped connections and statement timeouts,
    which get one retry upstream; everything else is permanent.
    """
    try:
        yield
    except psycopg.OperationalError as exc:
        raise TransientPersistenceError(f"{type(exc).__name__}: {exc}") from exc
    except psycopg.Error as exc:
        raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc


class PostgresEventStore:
    """EventStore over a psycopg connection.  Caller owns the connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    @contextmanager
    def row_scope(self) -> Iterator[None]:
        # Nested under an outer transaction this is a savepoint, so a failed
        # row is rolled back without touching earlier rows.
        with _translate_errors():
            with self.conn.transaction():
                yield

    def find_by_slug_and_start(
        self, slug: str, starts_at: datetime
    ) -> list[EventRecord]:
        with _translate_errors():
            self.conn.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s), hashtext(%s))",
                natural_key_lock_args(slug, starts_at),
            )
            rows = self.conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM calendar_event
                WHERE slug = %s AND starts_at = %s
                ORDER BY created_at ASC, id ASC
                FOR UPDATE
                """,
                (slug, starts_at),
            ).fetchall()
        return [_row_to_event(r) for r in rows]

    def insert(self, event: EventRecord) -> EventRecord:
        with _translate_errors():
            row = self.conn.execute(
                f"""
                INSERT INTO calendar_event
                  (id, name, slug, starts_at, ends_at, description,
                   is_featured, is_has_ends_at, is_all_day, is_active,
                   haunted_by, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_SELECT_COLUMNS}
                """,
                (
                    event.id, event.name, event.slug, event.starts_at,
                    event.ends_at, event.description, event.is_featured,
                    event.is_has_ends_at, event.is_all_day, event.is_active,
                    event.haunted_by, event.created_at, event.updated_at,
                ),
            ).fetchone()
        return _row_to_event(row)

    def update(self, event: EventRecord) -> EventRecord:
        if event.id is None:
            raise PersistenceError("update requires a stored event id")
        with _translate_errors():
            row = self.conn.execute(
                f"""
                UPDATE calendar_event SET
                  name = %s,
                  slug = %s,
                  starts_at = %s,
                  ends_at = %s,
                  description = %s,
                  is_featured = %s,
                  is_has_ends_at = %s,
                  is_all_day = %s,
                  is_active = %s,
                  haunted_by = %s,
                  updated_at = %s
                WHERE id = %s
                RETURNING {_SELECT_COLUMNS}
                """,
                (
                    event.name, event.slug, event.starts_at, event.ends_at,
                    event.description, event.is_featured, event.is_has_ends_at,
                    event.is_all_day, event.is_active, event.haunted_by,
                    event.updated_at, event.id,
                ),
            ).fetchone()
        if row is None:
            raise PersistenceError(f"event {event.id} vanished before update")
        return _row_to_event(row)

    def count(self) -> int:
        with _translate_errors():
            row = self.conn.execute("SELECT count(*) FROM calendar_event").fetchone()
        return int(row[0])
