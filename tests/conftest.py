"""Shared fixtures for store-backed tests."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from health_export_ledger.infrastructure.store.sql_store import SqlStore
from health_export_ledger.services.loader import TableLoader
from health_export_ledger.utils.parameters import StoreConfig


@pytest.fixture
def store_config(tmp_path: Path) -> StoreConfig:
    return StoreConfig(connection_string=f"sqlite:///{tmp_path / 'health.db'}", batch_size=2)


@pytest.fixture
def store(store_config: StoreConfig) -> Iterator[SqlStore]:
    sql_store = SqlStore(store_config)
    yield sql_store
    sql_store.close()


@pytest.fixture
def loader(store: SqlStore, store_config: StoreConfig) -> TableLoader:
    table_loader = TableLoader(store, store_config)
    table_loader.ensure_schema()
    return table_loader
