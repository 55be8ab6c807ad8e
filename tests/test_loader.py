"""Unit tests for the table loader and SQL store."""

from typing import Any

import pytest

from health_export_ledger.domain.records import (
    RECORD_TYPES,
    ActivityRecord,
    FoodRecord,
    MarkerRecord,
    ReconciledSet,
    Table,
)
from health_export_ledger.infrastructure.store.sql_store import SqlStore, bind_positional
from health_export_ledger.services.loader import LoadMode, TableLoader
from health_export_ledger.utils.exceptions import StoreError
from health_export_ledger.utils.parameters import StoreConfig


def _markers(*values: tuple[str, float | None, float | None]) -> ReconciledSet:
    records = [MarkerRecord(date=d, weight=w, body_fat=b) for d, w, b in values]
    return ReconciledSet(table=Table.MARKERS, records=records)


def _rows(store: SqlStore, table: str) -> list[list[Any]]:
    """Canonical columns only; the updated_at load stamp is left out."""
    if table == "food":
        columns, order = "date, food_name, calories, nutrients", "date, food_name"
    else:
        columns, order = ", ".join(RECORD_TYPES[Table(table)].columns()), "date"
    return store.query(f"SELECT {columns} FROM {table} ORDER BY {order}").rows


def test_bind_positional() -> None:
    """Test placeholder rewriting and count validation."""
    statement, params = bind_positional("SELECT * FROM t WHERE a = ? AND b IN (?, ?)", [1, 2, 3])

    if statement != "SELECT * FROM t WHERE a = :p0 AND b IN (:p1, :p2)":
        raise AssertionError(f"Unexpected statement: {statement}")
    if params != {"p0": 1, "p1": 2, "p2": 3}:
        raise AssertionError(f"Unexpected params: {params}")

    with pytest.raises(StoreError):
        bind_positional("SELECT ?", [])


def test_full_load_is_idempotent(store: SqlStore, loader: TableLoader) -> None:
    """Test that loading the same set twice in full mode leaves identical tables."""
    data = _markers(("2024-11-15", 180.2, 22.1), ("2024-11-16", 179.8, None))

    loader.load(Table.MARKERS, data, LoadMode.FULL)
    first = _rows(store, "markers")
    result = loader.load(Table.MARKERS, data, LoadMode.FULL)
    second = _rows(store, "markers")

    if first != second:
        raise AssertionError(f"Expected identical tables, got {first} and {second}")
    if result.rows_deleted != 2 or result.rows_written != 2:
        raise AssertionError(f"Unexpected result: {result.to_dict()}")

    unstamped = store.query("SELECT COUNT(*) FROM markers WHERE updated_at IS NULL").rows
    if unstamped != [[0]]:
        raise AssertionError(f"Expected every row stamped, got {unstamped}")


def test_full_load_replaces_contents(store: SqlStore, loader: TableLoader) -> None:
    """Test that a full load drops rows absent from the new set."""
    loader.load(Table.MARKERS, _markers(("2024-11-14", 181.0, None)), LoadMode.FULL)
    loader.load(Table.MARKERS, _markers(("2024-11-15", 180.2, None)), LoadMode.FULL)

    if [row[0] for row in _rows(store, "markers")] != ["2024-11-15"]:
        raise AssertionError("Expected only the new date after a full reload")


def test_incremental_load_upserts_by_date(store: SqlStore, loader: TableLoader) -> None:
    """Test that incremental loads keep one row per date and update values."""
    loader.load(
        Table.MARKERS,
        _markers(("2024-11-15", 180.2, 22.1), ("2024-11-16", 179.8, None)),
        LoadMode.INCREMENTAL,
    )
    loader.load(
        Table.MARKERS,
        _markers(("2024-11-16", 179.5, 21.9), ("2024-11-17", 179.0, None)),
        LoadMode.INCREMENTAL,
    )

    rows = _rows(store, "markers")
    expected = [
        ["2024-11-15", 180.2, 22.1],
        ["2024-11-16", 179.5, 21.9],
        ["2024-11-17", 179.0, None],
    ]
    if rows != expected:
        raise AssertionError(f"Expected {expected}, got {rows}")


def test_incremental_food_replaces_by_date(store: SqlStore, loader: TableLoader) -> None:
    """Test that reloading food replaces entries only for dates in the set."""
    first = ReconciledSet(
        table=Table.FOOD,
        records=[
            FoodRecord(date="2024-11-01", food_name="Apple", calories=95),
            FoodRecord(date="2024-11-01", food_name="Oatmeal", calories=150),
            FoodRecord(date="2024-11-02", food_name="Rice", calories=200, nutrients={"carbs": 45}),
        ],
    )
    second = ReconciledSet(
        table=Table.FOOD,
        records=[FoodRecord(date="2024-11-02", food_name="Pasta", calories=300)],
    )

    loader.load(Table.FOOD, first, LoadMode.INCREMENTAL)
    if len(_rows(store, "food")) != 3:
        raise AssertionError("Expected both same-date food entries kept")

    result = loader.load(Table.FOOD, second, LoadMode.INCREMENTAL)

    rows = _rows(store, "food")
    expected = [
        ["2024-11-01", "Apple", 95.0, "{}"],
        ["2024-11-01", "Oatmeal", 150.0, "{}"],
        ["2024-11-02", "Pasta", 300.0, "{}"],
    ]
    if rows != expected:
        raise AssertionError(f"Expected {expected}, got {rows}")
    if result.rows_deleted != 1:
        raise AssertionError(f"Expected 1 replaced row, got {result.rows_deleted}")


def test_empty_set_skips_load(store: SqlStore, loader: TableLoader) -> None:
    """Test that an empty set leaves the table untouched, even in full mode."""
    loader.load(Table.MARKERS, _markers(("2024-11-15", 180.2, None)), LoadMode.FULL)

    result = loader.load(Table.MARKERS, _markers(), LoadMode.FULL)

    if result.rows_written != 0 or len(_rows(store, "markers")) != 1:
        raise AssertionError("Expected empty set to skip the load")


def test_batches_follow_batch_size(loader: TableLoader) -> None:
    """Test sequential batching of writes."""
    data = _markers(*[(f"2024-11-{day:02d}", 180.0, None) for day in range(1, 6)])

    result = loader.load(Table.MARKERS, data, LoadMode.FULL)

    if result.batches != 3 or result.rows_written != 5:
        raise AssertionError(f"Expected 3 batches of size 2, got {result.to_dict()}")


class FailingStore(SqlStore):
    """Store that fails on the nth insert."""

    def __init__(self, config: StoreConfig, fail_on: int) -> None:
        super().__init__(config)
        self.fail_on = fail_on
        self.inserts = 0

    def query(self, sql: str, params=()):
        if sql.startswith("INSERT"):
            self.inserts += 1
            if self.inserts == self.fail_on:
                raise StoreError("simulated failure")
        return super().query(sql, params)


def test_failed_load_rolls_back_table(store_config: StoreConfig, loader: TableLoader) -> None:
    """Test that a failing row aborts the whole table load."""
    loader.load(Table.MARKERS, _markers(("2024-11-15", 180.2, None)), LoadMode.FULL)

    failing = FailingStore(store_config, fail_on=3)
    try:
        failing_loader = TableLoader(failing, store_config)
        data = _markers(*[(f"2024-11-{day:02d}", 170.0, None) for day in range(1, 6)])
        with pytest.raises(StoreError):
            failing_loader.load(Table.MARKERS, data, LoadMode.FULL)
    finally:
        failing.close()

    rows = _rows(loader.store, "markers")
    if rows != [["2024-11-15", 180.2, None]]:
        raise AssertionError(f"Expected previous contents after rollback, got {rows}")


def test_load_rejects_mismatched_table(loader: TableLoader) -> None:
    """Test that a set cannot be loaded into another table."""
    with pytest.raises(StoreError):
        loader.load(Table.ACTIVITY, _markers(("2024-11-15", 180.2, None)))


def test_load_all_and_counts(loader: TableLoader) -> None:
    """Test loading several tables and reporting row counts."""
    reconciled = {
        Table.MARKERS: _markers(("2024-11-15", 180.2, None)),
        Table.ACTIVITY: ReconciledSet(
            table=Table.ACTIVITY,
            records=[
                ActivityRecord(date="2024-11-15", steps=9000),
                ActivityRecord(date="2024-11-16", steps=0),
            ],
        ),
        Table.FOOD: ReconciledSet(table=Table.FOOD),
    }

    results = loader.load_all(reconciled)

    if [r.table for r in results] != [Table.MARKERS, Table.ACTIVITY, Table.FOOD]:
        raise AssertionError(f"Unexpected load order: {[r.table for r in results]}")
    counts = loader.table_counts()
    expected = {"markers": 1, "activity": 2, "calories": 0, "macros": 0, "food": 0}
    if counts != expected:
        raise AssertionError(f"Expected {expected}, got {counts}")
