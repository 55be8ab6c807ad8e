"""
CSV source reader.

Reads one delimited-text source into raw rows (ordered column -> string
mappings) with encoding and delimiter detection, skipping malformed rows
and falling back to a permissive parse on quoting errors.
"""

import csv
import logging
from pathlib import Path

import pandas as pd

from health_export_ledger.utils.exceptions import ParseError
from health_export_ledger.utils.parameters import CSVConfig

logger = logging.getLogger(__name__)

RawRow = dict[str, str]


class CSVSourceReader:
    """
    Reader for per-metric CSV export files.

    Every value is kept as a string; typing happens in the field mapper.
    """

    def __init__(self, csv_config: CSVConfig) -> None:
        """
        Initialize CSV source reader.

        Args:
            csv_config: CSV parsing configuration.
        """
        self.csv_config = csv_config

    def _detect_encoding(self, file_path: Path) -> str:
        """
        Detect file encoding.

        Args:
            file_path: Path to CSV file.

        Returns:
            First configured encoding that decodes the whole file.
        """
        for encoding in self.csv_config.encodings:
            try:
                with open(file_path, encoding=encoding) as f:
                    f.read()
                logger.debug(f"Detected encoding: {encoding}")
                return encoding
            except (UnicodeDecodeError, LookupError):
                continue

        logger.warning(f"Encoding detection failed for {file_path.name}, using utf-8")
        return "utf-8"

    def _detect_delimiter(self, file_path: Path, encoding: str) -> str:
        """
        Detect CSV delimiter from the header line.

        Args:
            file_path: Path to CSV file.
            encoding: File encoding.

        Returns:
            Detected delimiter.
        """
        with open(file_path, encoding=encoding, errors="replace") as f:
            first_line = f.readline()

        for delimiter in self.csv_config.delimiters:
            if delimiter in first_line:
                logger.debug(f"Detected delimiter: {repr(delimiter)}")
                return delimiter

        return ","

    def _read_frame(
        self, file_path: Path, encoding: str, delimiter: str
    ) -> tuple[pd.DataFrame, int]:
        """
        Read the file into a string-typed DataFrame.

        Rows with too many fields are dropped by pandas. On a quoting error the
        file is re-read with quoting disabled and stray quotes stripped.

        Returns:
            The frame and the quoting mode it was read with.
        """
        options = {
            "encoding": encoding,
            "sep": delimiter,
            "dtype": str,
            "keep_default_na": False,
            "na_values": [],
            "skip_blank_lines": True,
            "on_bad_lines": "skip",
        }

        try:
            return pd.read_csv(file_path, **options), csv.QUOTE_MINIMAL
        except pd.errors.ParserError as e:
            logger.warning(f"Strict parse of {file_path.name} failed ({e}), retrying permissively")

        df = pd.read_csv(file_path, engine="python", quoting=csv.QUOTE_NONE, **options)
        df.columns = [str(col).strip('"') for col in df.columns]
        return df.map(lambda v: v.strip('"') if isinstance(v, str) else v), csv.QUOTE_NONE

    def _row_widths(
        self, file_path: Path, encoding: str, delimiter: str, quoting: int
    ) -> list[int]:
        """
        Count the fields of every data row pandas kept, in frame order.

        pandas pads short rows instead of reporting them, so widths are taken
        from the raw records. Overlong rows are left out, matching the frame.
        """
        with open(file_path, encoding=encoding, newline="") as f:
            records = csv.reader(f, delimiter=delimiter, quoting=quoting)
            widths = [len(record) for record in records if record]

        if not widths:
            return []
        header_width = widths[0]
        return [width for width in widths[1:] if width <= header_width]

    def read(self, file_path: Path) -> list[RawRow]:
        """
        Read a CSV source into raw rows.

        Rows with fewer fields than the header are skipped.

        Args:
            file_path: Path to CSV file.

        Returns:
            Raw rows in file order. Empty files yield an empty list.

        Raises:
            ParseError: If the file cannot be read at all.
        """
        try:
            if file_path.stat().st_size == 0:
                logger.info(f"{file_path.name} is empty")
                return []

            encoding = self._detect_encoding(file_path)
            delimiter = self._detect_delimiter(file_path, encoding)

            try:
                df, quoting = self._read_frame(file_path, encoding, delimiter)
            except pd.errors.EmptyDataError:
                logger.info(f"{file_path.name} has no data")
                return []

            columns = [str(col).strip() for col in df.columns]
            df.columns = columns

            widths = self._row_widths(file_path, encoding, delimiter, quoting)
            if len(widths) != len(df):
                logger.warning(
                    f"Row layout of {file_path.name} could not be matched "
                    f"({len(widths)} records, {len(df)} rows), checking cells only"
                )
                widths = [len(columns)] * len(df)

            rows: list[RawRow] = []
            skipped = 0

            for idx, values in enumerate(df.itertuples(index=False, name=None)):
                if widths[idx] < len(columns) or any(not isinstance(v, str) for v in values):
                    logger.debug(f"{file_path.name} row {idx}: short row, skipping")
                    skipped += 1
                    continue

                rows.append({col: value.strip() for col, value in zip(columns, values)})

            if skipped:
                logger.warning(f"Skipped {skipped} malformed rows in {file_path.name}")

            logger.info(f"Parsed {len(rows)} rows from {file_path.name}")
            return rows

        except Exception as e:
            raise ParseError(f"Failed to parse CSV file {file_path}: {e}") from e
