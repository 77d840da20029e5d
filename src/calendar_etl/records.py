"""calendar_etl.records

Record types that flow through the import pipeline:

  RawRow       : one untyped CSV record, as produced by ingestion
  EventRecord  : the typed calendar event (candidate or stored)
  ImportOutcome: the per-row result returned to the caller
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_FAILED = "failed"

ERROR_PARSE = "parse"
ERROR_NORMALIZATION = "normalization"
ERROR_AMBIGUOUS_KEY = "ambiguous_key"
ERROR_PERSISTENCE = "persistence"

# Import-settable fields, in column order.  id/created_at/updated_at are
# system-managed and never copied from a candidate.
IMPORT_FIELDS = (
    "name",
    "slug",
    "starts_at",
    "ends_at",
    "description",
    "is_featured",
    "is_has_ends_at",
    "is_all_day",
    "is_active",
    "haunted_by",
)


@dataclass(frozen=True)
class RawRow:
    """One CSV record keyed by (whitespace-stripped) column name."""

    line_number: int
    fields: dict[str, str] = field(default_factory=dict)
    parse_error: str | None = None

    def get(self, column: str) -> str | None:
        return self.fields.get(column)


@dataclass
class EventRecord:
    name: str
    slug: str
    starts_at: datetime
    ends_at: datetime
    description: str | None = None
    is_featured: bool = False
    is_has_ends_at: bool = False
    is_all_day: bool = False
    is_active: bool = False
    haunted_by: str | None = None
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def natural_key(self) -> tuple[str, datetime]:
        return (self.slug, self.starts_at)

    def import_values(self) -> dict[str, object]:
        """Return the import-settable fields as a dict."""
        return {name: getattr(self, name) for name in IMPORT_FIELDS}


@dataclass(frozen=True)
class ImportOutcome:
    kind: str
    name: str | None
    starts_at: datetime | None
    line_number: int | None = None
    event_id: str | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind != OUTCOME_FAILED
