"""
Configuration and parameter loading using Pydantic.

This module provides centralized configuration management for the entire application.
All parameters are loaded from YAML and validated using Pydantic models.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from health_export_ledger.utils.exceptions import ConfigurationError

DEFAULT_DATE_ALIASES = ["date", "datetime", "timestamp", "created", "date created"]


class StoreConfig(BaseModel):
    """Durable store configuration shared by the loader and the query side."""

    connection_string: str = "sqlite:///data/health.db"
    batch_size: int = Field(100, gt=0)
    full_reload: bool = False


class CSVConfig(BaseModel):
    """CSV parsing configuration."""

    encodings: list[str] = Field(default_factory=lambda: ["utf-8-sig", "utf-8", "latin-1"])
    delimiters: list[str] = Field(default_factory=lambda: [",", ";", "\t"])


class ReconciliationConfig(BaseModel):
    """Reconciliation pass configuration."""

    export_dir: str = "exports"
    raw_dir: str = "raw_export"
    detect_collisions: bool = False
    date_aliases: list[str] = Field(default_factory=lambda: list(DEFAULT_DATE_ALIASES))


class ProcessingConfig(BaseModel):
    """Query-side processing configuration."""

    timezone: str = "UTC"


class OutputFilesConfig(BaseModel):
    """Output file names configuration."""

    combined_csv: str = "latest_data.csv"
    ingestion_log: str = "ingestion_log.jsonl"
    collisions: str = "merge_collisions.csv"


class ParquetConfig(BaseModel):
    """Parquet output configuration."""

    compression: str = "snappy"
    engine: str = "pyarrow"


class OutputConfig(BaseModel):
    """Output configuration."""

    dir: str = "transformed"
    files: OutputFilesConfig = Field(default_factory=OutputFilesConfig)
    formats: list[str] = Field(default_factory=lambda: ["csv"])
    parquet: ParquetConfig = Field(default_factory=ParquetConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str = ""
    console: bool = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    csv: CSVConfig = Field(default_factory=CSVConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="HEL_", env_nested_delimiter="__", case_sensitive=False
    )


class ParameterLoader:
    """
    Centralized parameter loader for the application.

    Loads and validates configuration from YAML files using Pydantic models.
    Provides type-safe access to all configuration parameters.
    """

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        """
        Initialize parameter loader.

        Args:
            config_path: Path to the YAML configuration file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        self.config_path = Path(config_path)
        self.config: AppConfig
        self._load_config()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config_dict = yaml.safe_load(f) or {}

            self.config = AppConfig(**config_dict)

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def get_store_config(self) -> StoreConfig:
        """Get durable store configuration."""
        return self.config.store

    def get_csv_config(self) -> CSVConfig:
        """Get CSV parsing configuration."""
        return self.config.csv

    def get_reconciliation_config(self) -> ReconciliationConfig:
        """Get reconciliation configuration."""
        return self.config.reconciliation

    def get_processing_config(self) -> ProcessingConfig:
        """Get query-side processing configuration."""
        return self.config.processing

    def get_output_config(self) -> OutputConfig:
        """Get output configuration."""
        return self.config.output

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self.config.logging
