"""
Output service for writing reconciled tables and run artifacts.

Handles per-table CSV and Parquet output, the combined free-form CSV, and
the JSONL ingestion log.
"""

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from health_export_ledger.domain.records import RECORD_TYPES, ReconciledSet, Table
from health_export_ledger.utils.parameters import OutputConfig

logger = logging.getLogger(__name__)


class OutputService:
    """
    Service for writing data to output files.

    Handles multiple output formats for the canonical tables.
    """

    def __init__(self, config: OutputConfig) -> None:
        """
        Initialize output service.

        Args:
            config: Output configuration.
        """
        self.config = config
        self.output_dir = Path(config.dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def write_tables(self, reconciled: dict[Table, ReconciledSet]) -> list[Path]:
        """
        Write each reconciled table to `<table>.csv` and/or `<table>.parquet`.

        Empty tables still get a header-only file.

        Returns:
            Paths written.
        """
        written: list[Path] = []
        for table, record_set in reconciled.items():
            df = pd.DataFrame(record_set.to_rows(), columns=RECORD_TYPES[table].columns())

            if "csv" in self.config.formats:
                csv_path = self.output_dir / f"{table.value}.csv"
                df.to_csv(csv_path, index=False, encoding="utf-8")
                written.append(csv_path)

            if "parquet" in self.config.formats:
                parquet_path = self.output_dir / f"{table.value}.parquet"
                df.to_parquet(  # type: ignore[call-overload]
                    parquet_path,
                    engine=self.config.parquet.engine,
                    compression=self.config.parquet.compression,
                    index=False,
                )
                written.append(parquet_path)

            logger.info(f"Wrote {len(df)} {table.value} rows to {self.output_dir}")

        return written

    def write_combined(self, records: list[dict[str, Any]]) -> Path | None:
        """
        Write combined free-form records to CSV.

        Columns are `date` followed by the union of all other keys, sorted.
        """
        if not records:
            logger.warning("No combined records to write")
            return None

        extra = sorted({key for record in records for key in record} - {"date"})
        df = pd.DataFrame(records, columns=["date", *extra])

        csv_path = self.output_dir / self.config.files.combined_csv
        df.to_csv(csv_path, index=False, encoding="utf-8")
        logger.info(f"Wrote {len(df)} combined records to {csv_path}")
        return csv_path

    def write_collisions(self, reconciled: dict[Table, ReconciledSet]) -> Path | None:
        """Write detected merge collisions to CSV, if there are any."""
        rows = [
            {"table": table.value, **collision.to_dict()}
            for table, record_set in reconciled.items()
            for collision in record_set.collisions
        ]
        if not rows:
            logger.info("No merge collisions to write")
            return None

        collisions_path = self.output_dir / self.config.files.collisions
        pd.DataFrame(rows).to_csv(collisions_path, index=False, encoding="utf-8")
        logger.info(f"Wrote {len(rows)} merge collisions to {collisions_path}")
        return collisions_path

    def write_ingestion_log(self, events: list[dict[str, Any]]) -> Path:
        """
        Write ingestion events to JSONL file.

        Args:
            events: List of event dictionaries.
        """
        log_path = self.output_dir / self.config.files.ingestion_log

        with open(log_path, "w", encoding="utf-8") as f:
            for event in events:
                f.write(json.dumps(event, default=str) + "\n")

        logger.info(f"Wrote {len(events)} events to {log_path}")
        return log_path
