"""Unit tests for CSV source reader."""

from pathlib import Path

from health_export_ledger.infrastructure.parsers.csv_parser import CSVSourceReader
from health_export_ledger.utils.parameters import CSVConfig


def _reader() -> CSVSourceReader:
    return CSVSourceReader(CSVConfig(encodings=["utf-8-sig", "utf-8", "latin-1"]))


def test_read_rows_as_strings(tmp_path: Path) -> None:
    """Test that every value is kept as a stripped string."""
    path = tmp_path / "weights.csv"
    path.write_text("Date,Weight\n11/15/2024, 180.2 \n11/16/2024,0\n", encoding="utf-8")

    rows = _reader().read(path)

    expected = [
        {"Date": "11/15/2024", "Weight": "180.2"},
        {"Date": "11/16/2024", "Weight": "0"},
    ]
    if rows != expected:
        raise AssertionError(f"Expected {expected}, got {rows}")


def test_read_bom_and_semicolon_delimiter(tmp_path: Path) -> None:
    """Test BOM handling and delimiter detection."""
    path = tmp_path / "steps.csv"
    path.write_bytes("Date;Value\n11/15/2024;12,345\n".encode("utf-8-sig"))

    rows = _reader().read(path)

    if rows != [{"Date": "11/15/2024", "Value": "12,345"}]:
        raise AssertionError(f"Unexpected rows: {rows}")


def test_read_latin1_fallback(tmp_path: Path) -> None:
    """Test that a non-UTF-8 file falls back to latin-1."""
    path = tmp_path / "food-logs.csv"
    path.write_bytes(b"Date,Name\n11/15/2024,Caf\xe9 latte\n")

    rows = _reader().read(path)

    if rows[0]["Name"] != "Café latte":
        raise AssertionError(f"Expected decoded name, got {rows[0]['Name']!r}")


def test_empty_file_yields_no_rows(tmp_path: Path) -> None:
    """Test that empty and header-only files yield no rows."""
    empty = tmp_path / "empty.csv"
    empty.write_text("", encoding="utf-8")
    header_only = tmp_path / "header.csv"
    header_only.write_text("Date,Value\n", encoding="utf-8")

    if _reader().read(empty) != []:
        raise AssertionError("Expected no rows for an empty file")
    if _reader().read(header_only) != []:
        raise AssertionError("Expected no rows for a header-only file")


def test_malformed_rows_skipped(tmp_path: Path) -> None:
    """Test that short and overlong rows are skipped without failing the file."""
    path = tmp_path / "sleep.csv"
    path.write_text(
        "Date,Value\n11/15/2024,7.5\n11/16/2024\n11/17/2024,8,extra\n11/18/2024,6.25\n",
        encoding="utf-8",
    )

    rows = _reader().read(path)
    dates = [row["Date"] for row in rows]

    if dates != ["11/15/2024", "11/18/2024"]:
        raise AssertionError(f"Expected malformed rows skipped, got {dates}")


def test_empty_cells_are_empty_strings(tmp_path: Path) -> None:
    """Test that empty cells are not turned into NaN."""
    path = tmp_path / "daily-calorie-summary.csv"
    path.write_text("Date,Food cals,EER\n11/15/2024,,2400\n", encoding="utf-8")

    rows = _reader().read(path)

    if rows != [{"Date": "11/15/2024", "Food cals": "", "EER": "2400"}]:
        raise AssertionError(f"Unexpected rows: {rows}")


def test_short_rows_skipped_with_empty_cells(tmp_path: Path) -> None:
    """Test that truncated rows are skipped while genuinely empty cells are kept."""
    path = tmp_path / "exercise-logs.csv"
    path.write_text(
        "Date,Exercise,Quantity\n11/15/2024,Walk,30\n11/15/2024,Run\n11/16/2024,Swim,\n",
        encoding="utf-8",
    )

    rows = _reader().read(path)

    expected = [
        {"Date": "11/15/2024", "Exercise": "Walk", "Quantity": "30"},
        {"Date": "11/16/2024", "Exercise": "Swim", "Quantity": ""},
    ]
    if rows != expected:
        raise AssertionError(f"Expected {expected}, got {rows}")


def test_unterminated_quote_read_permissively(tmp_path: Path) -> None:
    """Test the permissive re-read when a quote is never closed."""
    path = tmp_path / "sleep.csv"
    path.write_text('Date,Value\n11/15/2024,"7.5\n11/16/2024,8\n', encoding="utf-8")

    rows = _reader().read(path)

    expected = [{"Date": "11/15/2024", "Value": "7.5"}, {"Date": "11/16/2024", "Value": "8"}]
    if rows != expected:
        raise AssertionError(f"Expected {expected}, got {rows}")


def test_stray_mid_field_quote_kept_literally(tmp_path: Path) -> None:
    """Test that a quote inside an unquoted field does not break the file."""
    path = tmp_path / "food-logs.csv"
    path.write_text('Date,Name\n11/15/2024,6" sub\n11/16/2024,Apple\n', encoding="utf-8")

    rows = _reader().read(path)

    expected = [{"Date": "11/15/2024", "Name": '6" sub'}, {"Date": "11/16/2024", "Name": "Apple"}]
    if rows != expected:
        raise AssertionError(f"Expected {expected}, got {rows}")
