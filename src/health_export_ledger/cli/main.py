"""
Command-line interface for Health Export Ledger.

Provides commands for extracting, reconciling, loading, and querying exported
health data.
"""

import json
from pathlib import Path

import typer

from health_export_ledger.domain.records import ReconciledSet, Table
from health_export_ledger.infrastructure.export.archive import extract_export, find_latest_export
from health_export_ledger.infrastructure.store.sql_store import SqlStore
from health_export_ledger.services.combine import CombineService
from health_export_ledger.services.loader import LoadMode, TableLoader
from health_export_ledger.services.output import OutputService
from health_export_ledger.services.queries import HealthQueryService
from health_export_ledger.services.reconciliation import ReconciliationPipeline
from health_export_ledger.utils.exceptions import HealthLedgerError
from health_export_ledger.utils.logging_config import get_logger, setup_logging
from health_export_ledger.utils.parameters import ParameterLoader

app = typer.Typer(help="Health Export Ledger - Health export reconciliation and trends")

logger = get_logger(__name__)


def init_config(config_path: str = "config/config.yaml") -> ParameterLoader:
    """
    Initialize configuration and logging.

    Args:
        config_path: Path to configuration file.

    Returns:
        Parameter loader instance.
    """
    param_loader = ParameterLoader(config_path)
    setup_logging(param_loader.get_logging_config(), "health_export_ledger")
    return param_loader


def _reconcile(param_loader: ParameterLoader) -> tuple[dict[Table, ReconciledSet], list[dict]]:
    pipeline = ReconciliationPipeline(
        param_loader.get_csv_config(), param_loader.get_reconciliation_config()
    )
    raw_dir = Path(param_loader.get_reconciliation_config().raw_dir)
    reconciled = pipeline.run(raw_dir)
    return reconciled, pipeline.events


@app.command()
def combine(
    zip_path: str | None = typer.Argument(None, help="Export archive; defaults to the latest"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Extract an export archive and combine every CSV by date.

    Writes one wide row per date with columns namespaced by source file.
    """
    try:
        param_loader = init_config(config_path)
        rec_config = param_loader.get_reconciliation_config()
        output_config = param_loader.get_output_config()

        archive = Path(zip_path) if zip_path else find_latest_export(Path(rec_config.export_dir))
        if archive is None:
            raise HealthLedgerError(f"No export archive found in {rec_config.export_dir}")

        raw_dir = Path(rec_config.raw_dir)
        extracted = extract_export(archive, raw_dir)
        typer.echo(f"Extracted {len(extracted)} files from {archive.name}")

        service = CombineService(param_loader.get_csv_config(), rec_config)
        records = service.combine_sources([raw_dir])

        output_service = OutputService(output_config)
        output_service.write_combined(records)
        output_service.write_ingestion_log(service.events)

        typer.echo(f"Combined {len(records)} dated records")
        typer.echo(f"Output written to {output_config.dir}/")

    except HealthLedgerError as e:
        logger.error(f"Combine failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def transform(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    detect_collisions: bool = typer.Option(
        False, help="Report fields overwritten by a different source"
    ),
    output_format: str | None = typer.Option(None, help="Output format: csv, parquet, or both"),
) -> None:
    """
    Reconcile the extracted export into the canonical tables.

    Writes one file per table plus the ingestion log.
    """
    try:
        param_loader = init_config(config_path)
        output_config = param_loader.get_output_config()

        if detect_collisions:
            param_loader.get_reconciliation_config().detect_collisions = True
        if output_format:
            if output_format == "both":
                output_config.formats = ["csv", "parquet"]
            else:
                output_config.formats = [output_format]

        logger.info("Starting transform")

        reconciled, events = _reconcile(param_loader)

        output_service = OutputService(output_config)
        output_service.write_tables(reconciled)
        output_service.write_collisions(reconciled)
        output_service.write_ingestion_log(events)

        for table, record_set in reconciled.items():
            typer.echo(f"  {table.value}: {len(record_set)} records")
        collisions = sum(len(s.collisions) for s in reconciled.values())
        if collisions:
            typer.echo(f"Found {collisions} merge collisions")
        typer.echo(f"Output written to {output_config.dir}/")

    except HealthLedgerError as e:
        logger.error(f"Transform failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def load(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    full: bool = typer.Option(False, "--full", help="Replace table contents instead of upserting"),
) -> None:
    """
    Reconcile the extracted export and load it into the store.

    Incremental by default; --full clears each table before loading.
    """
    try:
        param_loader = init_config(config_path)
        store_config = param_loader.get_store_config()

        mode = LoadMode.FULL if full or store_config.full_reload else LoadMode.INCREMENTAL
        logger.info(f"Starting {mode.value} load")

        reconciled, _ = _reconcile(param_loader)

        store = SqlStore(store_config)
        try:
            loader = TableLoader(store, store_config)
            results = loader.load_all(reconciled, mode)
            counts = loader.table_counts()
        finally:
            store.close()

        for result in results:
            typer.echo(
                f"  {result.table.value}: {result.rows_written} written, "
                f"{result.rows_deleted} replaced"
            )
        typer.echo(f"Table counts: {counts}")

    except HealthLedgerError as e:
        logger.error(f"Load failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def trends(
    start_date: str = typer.Option(..., "--start", help="Start date (MM/DD/YYYY)"),
    end_date: str = typer.Option(..., "--end", help="End date (MM/DD/YYYY)"),
    metrics: list[str] = typer.Option(..., "--metric", "-m", help="Metric to aggregate"),
    group_by: str = typer.Option("day", help="Grouping: day, week, or month"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Aggregate metrics over a date range and print the trend report as JSON.
    """
    try:
        param_loader = init_config(config_path)
        store = SqlStore(param_loader.get_store_config())
        try:
            service = HealthQueryService(store, param_loader.get_processing_config())
            report = service.get_trends(start_date, end_date, metrics, group_by)
        finally:
            store.close()

        typer.echo(json.dumps(report, indent=2, default=str))

    except HealthLedgerError as e:
        logger.error(f"Trends failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def summary(
    date: str = typer.Option("today", help="Date (MM/DD/YYYY, today, or yesterday)"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Print the combined daily summary for one date as JSON.
    """
    try:
        param_loader = init_config(config_path)
        store = SqlStore(param_loader.get_store_config())
        try:
            service = HealthQueryService(store, param_loader.get_processing_config())
            result = service.get_daily_summary(date)
        finally:
            store.close()

        typer.echo(json.dumps(result, indent=2, default=str))

    except HealthLedgerError as e:
        logger.error(f"Summary failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def all(
    zip_path: str | None = typer.Argument(None, help="Export archive; defaults to the latest"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    full: bool = typer.Option(False, "--full", help="Replace table contents instead of upserting"),
) -> None:
    """
    Run complete pipeline: combine, transform, and load.

    Executes the full workflow from export archive to loaded store.
    """
    try:
        typer.echo("=== Step 1: Extracting and combining export ===")
        combine(zip_path=zip_path, config_path=config_path)

        typer.echo("\n=== Step 2: Reconciling canonical tables ===")
        transform(config_path=config_path, detect_collisions=False, output_format=None)

        typer.echo("\n=== Step 3: Loading store ===")
        load(config_path=config_path, full=full)

        typer.echo("\n=== Pipeline completed successfully ===")

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Pipeline failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
