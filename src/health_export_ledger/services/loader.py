"""
Table loader for persisting reconciled record sets.

Supports idempotent incremental upserts keyed by date, delete-and-replace by
date for the append-only food table, and destructive full reloads. Each table
load runs in one transaction, written in fixed-size sequential batches.
"""

import logging
from enum import Enum
from typing import Any

from health_export_ledger.domain.records import RECORD_TYPES, ReconciledSet, Table
from health_export_ledger.infrastructure.store.sql_store import Store
from health_export_ledger.utils.exceptions import StoreError
from health_export_ledger.utils.parameters import StoreConfig

logger = logging.getLogger(__name__)


class LoadMode(str, Enum):
    """Table load mode."""

    INCREMENTAL = "incremental"
    FULL = "full"


SCHEMA: dict[Table, str] = {
    Table.MARKERS: """
        CREATE TABLE IF NOT EXISTS markers (
            date VARCHAR(32) NOT NULL UNIQUE,
            weight DOUBLE PRECISION,
            body_fat DOUBLE PRECISION,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    Table.ACTIVITY: """
        CREATE TABLE IF NOT EXISTS activity (
            date VARCHAR(32) NOT NULL UNIQUE,
            steps INTEGER,
            sleep_hours DOUBLE PRECISION,
            exercise_minutes DOUBLE PRECISION,
            exercise_count INTEGER,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    Table.CALORIES: """
        CREATE TABLE IF NOT EXISTS calories (
            date VARCHAR(32) NOT NULL UNIQUE,
            food_calories DOUBLE PRECISION,
            exercise_calories DOUBLE PRECISION,
            calorie_budget DOUBLE PRECISION,
            tdee DOUBLE PRECISION,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    Table.MACROS: """
        CREATE TABLE IF NOT EXISTS macros (
            date VARCHAR(32) NOT NULL UNIQUE,
            protein_grams DOUBLE PRECISION,
            carbs_grams DOUBLE PRECISION,
            fiber_grams DOUBLE PRECISION,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    Table.FOOD: """
        CREATE TABLE IF NOT EXISTS food (
            date VARCHAR(32) NOT NULL,
            food_name TEXT,
            meal VARCHAR(64),
            quantity DOUBLE PRECISION,
            units VARCHAR(64),
            calories DOUBLE PRECISION,
            nutrients TEXT
        )
    """,
}


class LoadResult:
    """Outcome of loading one table."""

    def __init__(self, table: Table, mode: LoadMode) -> None:
        self.table = table
        self.mode = mode
        self.rows_written = 0
        self.rows_deleted = 0
        self.batches = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table.value,
            "mode": self.mode.value,
            "rows_written": self.rows_written,
            "rows_deleted": self.rows_deleted,
            "batches": self.batches,
        }


def _chunks(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class TableLoader:
    """
    Writes ReconciledSets to the durable store.

    A failing row aborts and rolls back the whole table load; rows are
    never retried individually.
    """

    def __init__(self, store: Store, config: StoreConfig) -> None:
        """
        Initialize table loader.

        Args:
            store: Durable store exposing query and transaction.
            config: Store configuration (batch size, default load mode).
        """
        self.store = store
        self.config = config

    @property
    def default_mode(self) -> LoadMode:
        return LoadMode.FULL if self.config.full_reload else LoadMode.INCREMENTAL

    def ensure_schema(self) -> None:
        """Create the canonical tables if they do not exist."""
        with self.store.transaction() as tx:
            for ddl in SCHEMA.values():
                tx.query(ddl)
        logger.debug("Canonical schema ensured")

    def _insert_sql(self, table: Table, columns: list[str]) -> str:
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {table.value} ({', '.join(columns)}) VALUES ({placeholders})"

    def _upsert_sql(self, table: Table, columns: list[str]) -> str:
        updates = ", ".join(f"{col} = excluded.{col}" for col in columns if col != "date")
        return (
            f"{self._insert_sql(table, columns)} "
            f"ON CONFLICT (date) DO UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP"
        )

    def _delete_dates(self, tx: Store, table: Table, dates: list[str]) -> int:
        deleted = 0
        for batch in _chunks(dates, self.config.batch_size):
            placeholders = ", ".join("?" for _ in batch)
            count = tx.query(
                f"SELECT COUNT(*) FROM {table.value} WHERE date IN ({placeholders})", batch
            )
            deleted += int(count.rows[0][0])
            tx.query(f"DELETE FROM {table.value} WHERE date IN ({placeholders})", batch)
        return deleted

    def load(
        self, table: Table, reconciled: ReconciledSet, mode: LoadMode | None = None
    ) -> LoadResult:
        """
        Load one reconciled table.

        Args:
            table: Target table.
            reconciled: Records for the table.
            mode: Load mode; defaults to the configured full_reload setting.

        Returns:
            Load result with row counts.

        Raises:
            StoreError: If any statement fails; the table is rolled back.
        """
        mode = mode or self.default_mode
        result = LoadResult(table, mode)

        if reconciled.table is not table:
            raise StoreError(
                f"Record set for {reconciled.table.value} cannot be loaded into {table.value}"
            )

        if not reconciled.records:
            logger.warning(f"No data for {table.value}, skipping load")
            return result

        columns = RECORD_TYPES[table].columns()
        rows = reconciled.to_rows()

        logger.info(f"Loading {len(rows)} rows into {table.value} ({mode.value})")

        if mode is LoadMode.FULL or not table.has_unique_date:
            sql = self._insert_sql(table, columns)
        else:
            sql = self._upsert_sql(table, columns)

        with self.store.transaction() as tx:
            if mode is LoadMode.FULL:
                count = tx.query(f"SELECT COUNT(*) FROM {table.value}")
                result.rows_deleted = int(count.rows[0][0])
                tx.query(f"DELETE FROM {table.value}")
                logger.info(f"Cleared existing data from {table.value}")
            elif not table.has_unique_date:
                result.rows_deleted = self._delete_dates(tx, table, reconciled.dates())
                logger.info(f"Cleared {result.rows_deleted} existing {table.value} rows")

            for batch in _chunks(rows, self.config.batch_size):
                for row in batch:
                    tx.query(sql, [row[col] for col in columns])
                result.rows_written += len(batch)
                result.batches += 1
                logger.debug(f"{table.value}: {result.rows_written}/{len(rows)} rows written")

        logger.info(f"Loaded {result.rows_written} rows into {table.value}")
        return result

    def load_all(
        self, reconciled: dict[Table, ReconciledSet], mode: LoadMode | None = None
    ) -> list[LoadResult]:
        """
        Load every reconciled table in canonical order.

        Raises:
            StoreError: On the first failing table; earlier tables stay loaded.
        """
        self.ensure_schema()
        results: list[LoadResult] = []
        for table in Table:
            if table in reconciled:
                results.append(self.load(table, reconciled[table], mode))
        return results

    def table_counts(self) -> dict[str, int]:
        """Row count per canonical table."""
        counts: dict[str, int] = {}
        for table in Table:
            result = self.store.query(f"SELECT COUNT(*) FROM {table.value}")
            counts[table.value] = int(result.rows[0][0])
        return counts
