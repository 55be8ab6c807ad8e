"""
Reconciliation service for merging mapped source values into canonical tables.

Maintains one record per date key for daily tables (one per entry for the
append-only food table), applies per-field merge policies, optionally reports
cross-source collisions, and returns date-ordered record sets.
"""

import logging
import warnings
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from health_export_ledger.domain.records import (
    RECORD_TYPES,
    CanonicalRecord,
    MappedValue,
    MergeCollision,
    MergePolicy,
    ReconciledSet,
    Table,
)
from health_export_ledger.infrastructure.parsers.csv_parser import CSVSourceReader
from health_export_ledger.services.field_mapping import SOURCE_CATALOGUE, FieldMapper, SourceSpec
from health_export_ledger.utils.exceptions import (
    HealthLedgerError,
    MergeCollisionWarning,
    ReconciliationError,
)
from health_export_ledger.utils.parameters import CSVConfig, ReconciliationConfig

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Merges mapped triples for one table into a ReconciledSet.

    Overwrite fields keep the last value applied; sum and count fields
    accumulate across contributing rows.
    """

    def __init__(self, detect_collisions: bool = False) -> None:
        """
        Initialize reconciler.

        Args:
            detect_collisions: Report fields written by two different sources
                for the same date. Merge results are unaffected.
        """
        self.detect_collisions = detect_collisions

    def _apply(
        self,
        record: CanonicalRecord,
        value: MappedValue,
        provenance: dict[str, str],
        collisions: list[MergeCollision],
    ) -> None:
        current = getattr(record, value.field)

        if value.policy is MergePolicy.SUM:
            if value.value is not None:
                setattr(record, value.field, (current or 0) + value.value)
            return

        if value.policy is MergePolicy.COUNT:
            setattr(record, value.field, (current or 0) + 1)
            return

        # Absent values never clear a populated field.
        if value.value is None:
            return

        previous_source = provenance.get(value.field)
        if (
            self.detect_collisions
            and previous_source is not None
            and previous_source != value.source
            and current is not None
        ):
            collision = MergeCollision(
                date=record.date,
                field=value.field,
                previous_source=previous_source,
                source=value.source,
            )
            collisions.append(collision)
            message = (
                f"{value.source} overwrote {record.table.value}.{value.field} "
                f"for {record.date} previously set by {previous_source}"
            )
            logger.warning(message)
            warnings.warn(message, MergeCollisionWarning, stacklevel=2)

        setattr(record, value.field, value.value)
        provenance[value.field] = value.source

    def reconcile(self, table: Table, mapped: Iterable[MappedValue]) -> ReconciledSet:
        """
        Reconcile mapped values into date-ordered canonical records.

        Args:
            table: Target canonical table.
            mapped: Triples in the declared source order.

        Returns:
            ReconciledSet with records sorted by date key.

        Raises:
            ReconciliationError: If a value cannot be applied to the table's schema.
        """
        record_type = RECORD_TYPES[table]
        records: dict[Any, CanonicalRecord] = {}
        provenance: dict[Any, dict[str, str]] = {}
        collisions: list[MergeCollision] = []

        for value in mapped:
            if table.has_unique_date:
                key: Any = value.date_key
            else:
                key = (value.source, value.entry, value.date_key)

            record = records.get(key)
            if record is None:
                record = record_type(date=value.date_key)
                records[key] = record
                provenance[key] = {}

            try:
                self._apply(record, value, provenance[key], collisions)
            except HealthLedgerError:
                raise
            except Exception as e:
                raise ReconciliationError(
                    f"Cannot apply {value.field}={value.value!r} from {value.source} "
                    f"to {table.value}: {e}"
                ) from e

        # Stable sort keeps food entries in source order within a date.
        ordered = sorted(records.values(), key=lambda r: r.date)

        logger.info(f"Reconciled {len(ordered)} records for {table.value}")
        return ReconciledSet(table=table, records=ordered, collisions=collisions)


class ReconciliationPipeline:
    """
    Runs a whole-export reconciliation pass over the source catalogue.

    Sources are read sequentially in declared order. A failing source is
    logged and skipped; the remaining sources are still processed.
    """

    def __init__(
        self,
        csv_config: CSVConfig,
        config: ReconciliationConfig,
        sources: list[SourceSpec] | None = None,
    ) -> None:
        """
        Initialize reconciliation pipeline.

        Args:
            csv_config: CSV parsing configuration.
            config: Reconciliation configuration.
            sources: Source declarations; defaults to the built-in catalogue.
        """
        self.config = config
        self.reader = CSVSourceReader(csv_config)
        self.mapper = FieldMapper(config.date_aliases)
        self.reconciler = Reconciler(config.detect_collisions)
        self.sources = sources if sources is not None else SOURCE_CATALOGUE
        self.events: list[dict[str, Any]] = []

    def _event(self, file_name: str, status: str, **details: Any) -> None:
        event: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "file": file_name,
            "action": "reconcile",
            "status": status,
        }
        event.update(details)
        self.events.append(event)

    def _map_table(self, raw_dir: Path, table: Table) -> list[MappedValue]:
        mapped: list[MappedValue] = []

        for spec in self.sources:
            if spec.table is not table:
                continue

            file_path = next(
                (raw_dir / name for name in spec.candidates() if (raw_dir / name).is_file()),
                None,
            )
            if file_path is None:
                logger.info(f"Skipping {spec.filename}: not present in export")
                self._event(spec.filename, "skipped", reason="missing")
                continue

            try:
                rows = self.reader.read(file_path)
                values = self.mapper.map_source(spec, rows)
            except HealthLedgerError as e:
                logger.error(f"Failed to process {file_path.name}: {e}")
                self._event(file_path.name, "error", error=str(e))
                continue

            mapped.extend(values)
            self._event(file_path.name, "success", records=len(rows))

        return mapped

    def run(self, raw_dir: Path) -> dict[Table, ReconciledSet]:
        """
        Reconcile every canonical table from an extracted export directory.

        Args:
            raw_dir: Directory holding the raw per-metric CSV files.

        Returns:
            Mapping of table to its ReconciledSet, in table order.

        Raises:
            ReconciliationError: If the export directory does not exist.
        """
        if not raw_dir.is_dir():
            raise ReconciliationError(f"Raw export directory not found: {raw_dir}")

        self.events = []
        results: dict[Table, ReconciledSet] = {}

        for table in Table:
            mapped = self._map_table(raw_dir, table)
            results[table] = self.reconciler.reconcile(table, mapped)

        statuses = {event["status"] for event in self.events}
        if "error" in statuses and "success" not in statuses:
            raise ReconciliationError(f"No source in {raw_dir} could be reconciled")

        return results
