"""calendar_etl.ingest

Turns an uploaded byte buffer into a lazy stream of RawRow records.

Whole-buffer problems (empty, oversized, wrong content type, not UTF-8,
no header row) raise MalformedInputError before any row is produced.
A CSV record that cannot be parsed is yielded as a RawRow carrying
parse_error so the caller can fail just that row and keep going.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Iterator

from calendar_etl.normalize import REQUIRED_COLUMNS
from calendar_etl.records import RawRow
from calendar_etl.shared import MalformedInputError, normalize_headers

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

ALLOWED_CONTENT_TYPES = frozenset({
    "text/csv",
    "application/csv",
    "text/plain",
    "application/vnd.ms-excel",
    "application/octet-stream",
})


# ---------------------------------------------------------------------------
# Upload validation
# ---------------------------------------------------------------------------

def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def validate_upload(
    buffer: bytes,
    content_type: str | None = None,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    allowed_content_types: Iterable[str] = ALLOWED_CONTENT_TYPES,
) -> None:
    """Raise MalformedInputError if the upload cannot be an event CSV.

    content_type=None skips the media-type check (e.g. a local file).
    """
    if not buffer:
        raise MalformedInputError("empty_upload")
    if len(buffer) > max_bytes:
        raise MalformedInputError(
            f"upload_too_large: {len(buffer)} bytes exceeds limit of {max_bytes}"
        )
    if content_type is not None:
        media = _media_type(content_type)
        allowed = {_media_type(c) for c in allowed_content_types}
        if media not in allowed:
            raise MalformedInputError(f"unsupported_content_type: {media!r}")


def missing_columns(fieldnames: Iterable[str]) -> list[str]:
    """Return the required columns absent from a header, in column order."""
    present = set(fieldnames)
    return [c for c in REQUIRED_COLUMNS if c not in present]


# ---------------------------------------------------------------------------
# Row stream
# ---------------------------------------------------------------------------

class CsvRowStream:
    """Single-pass iterator of RawRow over a decoded CSV buffer.

    The header is read at construction so batch-level failures surface
    before iteration starts.  Data rows are parsed one at a time.
    """

    def __init__(self, buffer: bytes) -> None:
        try:
            text = buffer.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise MalformedInputError(f"undecodable_upload: {exc}") from exc

        # skipinitialspace drops the blank after each delimiter, as in
        # "name, slug, starts_at"; trailing and embedded spaces are kept.
        self._reader = csv.DictReader(
            io.StringIO(text, newline=""), skipinitialspace=True, strict=True
        )
        try:
            raw_fieldnames = self._reader.fieldnames
        except csv.Error as exc:
            raise MalformedInputError(f"unreadable_header: {exc}") from exc
        if not raw_fieldnames:
            raise MalformedInputError("missing_header_row")
        self.fieldnames = [h.strip() for h in raw_fieldnames]
        self._started = False

    def __iter__(self) -> Iterator[RawRow]:
        if self._started:
            raise RuntimeError("CsvRowStream can only be iterated once")
        self._started = True
        return self._rows()

    def _rows(self) -> Iterator[RawRow]:
        line_number = 0
        while True:
            line_number += 1
            try:
                raw = next(self._reader)
            except StopIteration:
                return
            except csv.Error as exc:
                yield RawRow(line_number=line_number, parse_error=str(exc))
                continue
            yield RawRow(line_number=line_number, fields=normalize_headers(raw))


def iter_raw_rows(buffer: bytes) -> CsvRowStream:
    """Decode buffer and return its lazy RawRow stream."""
    return CsvRowStream(buffer)
