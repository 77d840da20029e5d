"""Normalization functions for legacy event CSV ingestion.

Field-level helpers accept str | None and return the appropriate type or
None.  normalize_event_row is the single place where an untyped RawRow
becomes a typed EventRecord.
"""

from __future__ import annotations

from datetime import datetime, tzinfo

from calendar_etl.records import EventRecord, RawRow
from calendar_etl.shared import NormalizationError

_SENTINEL_TS = "0000-00-00 00:00:00"
_TS_FORMAT = "%Y-%m-%d %H:%M:%S"

REASON_REQUIRED = "required"
REASON_BAD_TIMESTAMP = "bad timestamp"

REQUIRED_COLUMNS = ("name", "slug", "starts_at", "ends_at")
FLAG_COLUMNS = ("is_featured", "is_has_ends_at", "is_all_day", "is_active")
OPTIONAL_COLUMNS = ("description", "haunted_by")
EXPECTED_COLUMNS = (
    "name", "slug", "starts_at", "ends_at", "description",
    "is_featured", "is_has_ends_at", "is_all_day", "is_active", "haunted_by",
)


# ---------------------------------------------------------------------------
# Rule 1: blank_to_none
# ---------------------------------------------------------------------------

def blank_to_none(value: str | None) -> str | None:
    """Treat an absent or empty string as None; otherwise pass through as-is."""
    if value is None or value == "":
        return None
    return value


# ---------------------------------------------------------------------------
# Rule 2: parse_flag
# ---------------------------------------------------------------------------

def parse_flag(value: str | None) -> bool:
    """Legacy "0"/"1" flag.  Only the exact string "1" is true."""
    return value == "1"


# ---------------------------------------------------------------------------
# Rule 3: parse_ts
# ---------------------------------------------------------------------------

def parse_ts(value: str | None, reference_tz: tzinfo) -> datetime | None:
    """Parse '%Y-%m-%d %H:%M:%S' as wall-clock time in reference_tz.

    The legacy export carries no offset, so the caller supplies the zone.
    Sentinel '0000-00-00 00:00:00' and anything unparseable → None.
    """
    if value is None:
        return None
    v = value.strip()
    if not v or v == _SENTINEL_TS:
        return None
    try:
        naive = datetime.strptime(v, _TS_FORMAT)
    except ValueError:
        return None
    return naive.replace(tzinfo=reference_tz)


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------

def _required(row: RawRow, column: str) -> str:
    value = blank_to_none(row.get(column))
    if value is None:
        raise NormalizationError(column, REASON_REQUIRED)
    return value


def _required_ts(row: RawRow, column: str, reference_tz: tzinfo) -> datetime:
    raw = _required(row, column)
    ts = parse_ts(raw, reference_tz)
    if ts is None:
        raise NormalizationError(column, REASON_BAD_TIMESTAMP)
    return ts


def normalize_event_row(row: RawRow, reference_tz: tzinfo) -> EventRecord:
    """Map a RawRow onto a candidate EventRecord.

    Fields are checked in column order and the first failure is raised as
    NormalizationError(field, reason).  ends_at is required even when
    is_has_ends_at is "0": the stored column is NOT NULL, and a present
    ends_at is kept as-is rather than nulled out.
    """
    name = _required(row, "name")
    slug = _required(row, "slug")
    starts_at = _required_ts(row, "starts_at", reference_tz)
    ends_at = _required_ts(row, "ends_at", reference_tz)

    return EventRecord(
        name=name,
        slug=slug,
        starts_at=starts_at,
        ends_at=ends_at,
        description=blank_to_none(row.get("description")),
        is_featured=parse_flag(row.get("is_featured")),
        is_has_ends_at=parse_flag(row.get("is_has_ends_at")),
        is_all_day=parse_flag(row.get("is_all_day")),
        is_active=parse_flag(row.get("is_active")),
        haunted_by=blank_to_none(row.get("haunted_by")),
    )
