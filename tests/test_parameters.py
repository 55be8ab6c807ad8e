"""Unit tests for configuration loading."""

import logging
from pathlib import Path

import pytest

from health_export_ledger.utils.exceptions import ConfigurationError
from health_export_ledger.utils.logging_config import setup_logging
from health_export_ledger.utils.parameters import LoggingConfig, ParameterLoader


def test_load_yaml_with_defaults(tmp_path: Path) -> None:
    """Test that omitted sections fall back to defaults."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "store:\n  batch_size: 50\nreconciliation:\n  detect_collisions: true\n",
        encoding="utf-8",
    )

    loader = ParameterLoader(str(path))

    if loader.get_store_config().batch_size != 50:
        raise AssertionError("Expected batch_size from YAML")
    if not loader.get_reconciliation_config().detect_collisions:
        raise AssertionError("Expected detect_collisions from YAML")
    if loader.get_processing_config().timezone != "UTC":
        raise AssertionError("Expected default timezone")
    if "date" not in loader.get_reconciliation_config().date_aliases:
        raise AssertionError("Expected default date aliases")


def test_environment_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test nested environment overrides."""
    path = tmp_path / "config.yaml"
    path.write_text("{}\n", encoding="utf-8")
    monkeypatch.setenv("HEL_STORE__CONNECTION_STRING", "sqlite:///:memory:")

    loader = ParameterLoader(str(path))

    if loader.get_store_config().connection_string != "sqlite:///:memory:":
        raise AssertionError("Expected connection string from environment")


def test_missing_or_invalid_config(tmp_path: Path) -> None:
    """Test configuration errors."""
    with pytest.raises(ConfigurationError):
        ParameterLoader(str(tmp_path / "missing.yaml"))

    invalid = tmp_path / "invalid.yaml"
    invalid.write_text("store:\n  batch_size: 0\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ParameterLoader(str(invalid))


def test_setup_logging(tmp_path: Path) -> None:
    """Test handler setup and level validation."""
    log_file = tmp_path / "logs" / "ledger.log"
    logger = setup_logging(
        LoggingConfig(level="debug", file=str(log_file), console=False), "health_export_ledger_test"
    )

    logger.debug("hello")

    if logger.level != logging.DEBUG:
        raise AssertionError(f"Expected DEBUG, got {logger.level}")
    if "hello" not in log_file.read_text(encoding="utf-8"):
        raise AssertionError("Expected message in log file")

    with pytest.raises(ConfigurationError):
        setup_logging(LoggingConfig(level="chatty"))
