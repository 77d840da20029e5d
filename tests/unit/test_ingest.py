"""Unit tests for calendar_etl.ingest."""

from __future__ import annotations

import pytest

from calendar_etl.ingest import (
    CsvRowStream,
    iter_raw_rows,
    missing_columns,
    validate_upload,
)
from calendar_etl.shared import BatchError, MalformedInputError

from fakes import make_csv, make_row

HEADER = b"name,slug,starts_at,ends_at,description,is_featured,is_has_ends_at,is_all_day,is_active,haunted_by\n"
GOOD_1 = b"Pumpkin Festival,pumpkin-festival,2009-10-09 20:00:00,2009-10-09 23:00:00,Annual fall celebration,1,1,0,1,\n"
GOOD_2 = b"Hayride,hayride,2009-10-10 18:00:00,2009-10-10 21:00:00,,0,1,0,1,Ghost\n"


# ---------------------------------------------------------------------------
# validate_upload
# ---------------------------------------------------------------------------

class TestValidateUpload:
    def test_accepts_csv(self):
        validate_upload(HEADER + GOOD_1, "text/csv")

    def test_content_type_parameters_ignored(self):
        validate_upload(HEADER + GOOD_1, "text/csv; charset=utf-8")

    def test_content_type_case_insensitive(self):
        validate_upload(HEADER + GOOD_1, "Text/CSV")

    def test_none_content_type_skips_check(self):
        validate_upload(HEADER + GOOD_1, None)

    def test_rejects_unknown_content_type(self):
        with pytest.raises(MalformedInputError, match="unsupported_content_type"):
            validate_upload(HEADER + GOOD_1, "image/png")

    def test_custom_allowed_types(self):
        with pytest.raises(MalformedInputError):
            validate_upload(HEADER + GOOD_1, "text/plain", allowed_content_types=["text/csv"])

    def test_rejects_empty(self):
        with pytest.raises(MalformedInputError, match="empty_upload"):
            validate_upload(b"", "text/csv")

    def test_rejects_oversized(self):
        with pytest.raises(MalformedInputError, match="upload_too_large"):
            validate_upload(HEADER + GOOD_1, "text/csv", max_bytes=10)

    def test_is_batch_error(self):
        with pytest.raises(BatchError):
            validate_upload(b"")


# ---------------------------------------------------------------------------
# iter_raw_rows
# ---------------------------------------------------------------------------

class TestIterRawRows:
    def test_rows_keyed_by_header(self):
        rows = list(iter_raw_rows(HEADER + GOOD_1 + GOOD_2))
        assert len(rows) == 2
        assert rows[0].fields["name"] == "Pumpkin Festival"
        assert rows[0].fields["haunted_by"] == ""
        assert rows[1].fields["haunted_by"] == "Ghost"

    def test_line_numbers_start_at_one(self):
        rows = list(iter_raw_rows(HEADER + GOOD_1 + GOOD_2))
        assert [r.line_number for r in rows] == [1, 2]

    def test_header_whitespace_stripped(self):
        data = b" name , slug \nA,a\n"
        stream = iter_raw_rows(data)
        assert stream.fieldnames == ["name", "slug"]
        rows = list(stream)
        assert rows[0].fields == {"name": "A", "slug": "a"}

    def test_trailing_and_embedded_whitespace_kept(self):
        rows = list(iter_raw_rows(b"name,slug\nSpaced  Out  ,s\n"))
        assert rows[0].fields["name"] == "Spaced  Out  "

    def test_space_after_delimiter_skipped(self):
        rows = list(iter_raw_rows(b"name, slug, haunted_by\nA, a, \n"))
        assert rows[0].fields == {"name": "A", "slug": "a", "haunted_by": ""}

    def test_space_before_quoted_value_skipped(self):
        rows = list(iter_raw_rows(b'name, description\nA, "Cider, donuts"\n'))
        assert rows[0].fields["description"] == "Cider, donuts"

    def test_utf8_bom_tolerated(self):
        rows = list(iter_raw_rows(b"\xef\xbb\xbf" + HEADER + GOOD_1))
        assert rows[0].fields["name"] == "Pumpkin Festival"

    def test_quoted_comma_and_newline(self):
        data = make_csv([make_row(description="Cider, donuts\nand hayrides")])
        rows = list(iter_raw_rows(data))
        assert len(rows) == 1
        assert rows[0].fields["description"] == "Cider, donuts\nand hayrides"

    def test_extra_columns_kept_but_overflow_cells_dropped(self):
        data = b"name,slug,venue\nA,a,Barn,unexpected\n"
        rows = list(iter_raw_rows(data))
        assert rows[0].fields == {"name": "A", "slug": "a", "venue": "Barn"}

    def test_short_row_missing_values_are_none(self):
        rows = list(iter_raw_rows(b"name,slug,starts_at\nA\n"))
        assert rows[0].fields["slug"] is None

    def test_blank_lines_skipped(self):
        rows = list(iter_raw_rows(HEADER + GOOD_1 + b"\n" + GOOD_2))
        assert len(rows) == 2

    def test_header_only_yields_nothing(self):
        assert list(iter_raw_rows(HEADER)) == []

    def test_undecodable_raises_before_iteration(self):
        with pytest.raises(MalformedInputError, match="undecodable_upload"):
            iter_raw_rows(HEADER + b"\xff\xfe broken\n")

    def test_missing_header_row(self):
        with pytest.raises(MalformedInputError, match="missing_header_row"):
            iter_raw_rows(b"\n")

    def test_bad_line_is_row_scoped(self):
        bad = b'Broken,"broken"x,2009-10-09 20:00:00,2009-10-09 23:00:00,,0,0,0,0,\n'
        rows = list(iter_raw_rows(HEADER + GOOD_1 + bad + GOOD_2))
        assert len(rows) == 3
        assert rows[0].parse_error is None
        assert rows[1].parse_error is not None
        assert rows[1].fields == {}
        assert rows[2].parse_error is None
        assert rows[2].fields["name"] == "Hayride"

    def test_stream_is_lazy(self):
        stream = iter_raw_rows(HEADER + GOOD_1 + GOOD_2)
        it = iter(stream)
        first = next(it)
        assert first.fields["slug"] == "pumpkin-festival"

    def test_stream_not_restartable(self):
        stream = iter_raw_rows(HEADER + GOOD_1)
        list(stream)
        with pytest.raises(RuntimeError):
            iter(stream)

    def test_returns_row_stream(self):
        assert isinstance(iter_raw_rows(HEADER), CsvRowStream)


# ---------------------------------------------------------------------------
# missing_columns
# ---------------------------------------------------------------------------

class TestMissingColumns:
    def test_none_missing(self):
        assert missing_columns(
            ["name", "slug", "starts_at", "ends_at", "haunted_by"]
        ) == []

    def test_reports_in_column_order(self):
        assert missing_columns(["slug", "description"]) == [
            "name", "starts_at", "ends_at",
        ]

    def test_optional_columns_not_required(self):
        assert "haunted_by" not in missing_columns([])
        assert "is_featured" not in missing_columns([])
