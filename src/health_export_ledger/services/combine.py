"""
Free-form combine mode.

Merges every CSV of an extracted export into one wide record per date, with
each column namespaced by the file it came from.
"""

import logging
from pathlib import Path
from typing import Any

from health_export_ledger.infrastructure.parsers.csv_parser import CSVSourceReader
from health_export_ledger.services.field_mapping import FieldMapper
from health_export_ledger.utils.exceptions import HealthLedgerError, SchemaError
from health_export_ledger.utils.parameters import CSVConfig, ReconciliationConfig

logger = logging.getLogger(__name__)


def find_csv_files(directory: Path) -> list[Path]:
    """Find CSV files under a directory, recursively, in path order."""
    return sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() == ".csv")


class CombineService:
    """Combines arbitrary dated CSV sources by date key."""

    def __init__(self, csv_config: CSVConfig, config: ReconciliationConfig) -> None:
        self.reader = CSVSourceReader(csv_config)
        self.mapper = FieldMapper(config.date_aliases)
        self.events: list[dict[str, Any]] = []

    def combine_sources(self, paths: list[Path]) -> list[dict[str, Any]]:
        """
        Combine CSV sources into one record per date.

        Directories are searched recursively. Sources without a date column
        are skipped with a warning; unreadable sources are logged as errors and
        do not stop the others. When two sources share a date, both
        contribute their namespaced columns; a repeated column within one
        source keeps its last value.

        Args:
            paths: CSV files or directories.

        Returns:
            Records of the form {"date": key, "<source>_<column>": value, ...},
            sorted by date key.
        """
        files: list[Path] = []
        for path in paths:
            files.extend(find_csv_files(path) if path.is_dir() else [path])

        self.events = []
        by_date: dict[str, dict[str, Any]] = {}

        for file_path in files:
            source_id = file_path.stem

            try:
                rows = self.reader.read(file_path)
                mapped = self.mapper.map_free_form(source_id, rows)
            except SchemaError as e:
                logger.warning(f"Skipping {file_path.name}: {e}")
                self.events.append(
                    {"file": file_path.name, "action": "combine", "status": "skipped", "reason": str(e)}
                )
                continue
            except HealthLedgerError as e:
                logger.error(f"Failed to combine {file_path.name}: {e}")
                self.events.append(
                    {"file": file_path.name, "action": "combine", "status": "error", "error": str(e)}
                )
                continue

            for value in mapped:
                record = by_date.setdefault(value.date_key, {"date": value.date_key})
                record[value.field] = value.value

            logger.info(f"Combined {len(rows)} rows from {file_path.name}")
            self.events.append(
                {"file": file_path.name, "action": "combine", "status": "success", "records": len(rows)}
            )

        combined = [by_date[key] for key in sorted(by_date)]
        logger.info(f"Combined {len(files)} files into {len(combined)} dated records")
        return combined
