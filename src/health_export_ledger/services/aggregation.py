"""
Trend aggregation over reconciled tables.

Reads the canonical tables back from the store, groups the requested metrics
into day, ISO-week or month periods, averages them over present values only,
and classifies each metric's trend across the ordered period means.
"""

import logging
from collections.abc import Sequence

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from health_export_ledger.domain.records import (
    AggregationWindow,
    GroupBy,
    Table,
    Trend,
    TrendReport,
    TrendStatistic,
)
from health_export_ledger.infrastructure.store.sql_store import Store
from health_export_ledger.utils.dates import denormalize, parse_external_date
from health_export_ledger.utils.exceptions import SchemaError, ValidationError

logger = logging.getLogger(__name__)

# Requested metric name -> (table, column)
METRIC_COLUMNS: dict[str, tuple[Table, str]] = {
    "weight": (Table.MARKERS, "weight"),
    "body_fat": (Table.MARKERS, "body_fat"),
    "calories": (Table.CALORIES, "food_calories"),
    "exercise_calories": (Table.CALORIES, "exercise_calories"),
    "calorie_budget": (Table.CALORIES, "calorie_budget"),
    "tdee": (Table.CALORIES, "tdee"),
    "steps": (Table.ACTIVITY, "steps"),
    "sleep_hours": (Table.ACTIVITY, "sleep_hours"),
    "exercise_minutes": (Table.ACTIVITY, "exercise_minutes"),
    "protein": (Table.MACROS, "protein_grams"),
    "carbs": (Table.MACROS, "carbs_grams"),
    "fiber": (Table.MACROS, "fiber_grams"),
}

TREND_THRESHOLD = 0.05


def build_window(
    start_date: str, end_date: str, group_by: str = "day", timezone_str: str = "UTC"
) -> AggregationWindow:
    """
    Build an aggregation window from external MM/DD/YYYY arguments.

    Raises:
        ValidationError: If a date is malformed, the range is inverted, or
            group_by is not day, week or month.
    """
    if not start_date or not end_date:
        raise ValidationError("start_date and end_date are required")

    start_key = parse_external_date(start_date, timezone_str)
    end_key = parse_external_date(end_date, timezone_str)

    try:
        return AggregationWindow(start_date=start_key, end_date=end_key, group_by=group_by)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid aggregation window: {e}") from e


def classify_trend(values: Sequence[float]) -> Trend | None:
    """
    Classify the trend of ordered period means.

    The first and second halves are compared by mean; with an odd count the
    middle value belongs to neither half. A change above 5% of the first-half
    mean is increasing or decreasing, anything else stable.

    Returns:
        Trend label, or None for fewer than two values.
    """
    count = len(values)
    if count < 2:
        return None

    half = count // 2
    first = sum(values[:half]) / half
    second = sum(values[count - half :]) / half

    if first == 0:
        if second > 0:
            return Trend.INCREASING
        if second < 0:
            return Trend.DECREASING
        return Trend.STABLE

    change = (second - first) / abs(first)
    if change > TREND_THRESHOLD:
        return Trend.INCREASING
    if change < -TREND_THRESHOLD:
        return Trend.DECREASING
    return Trend.STABLE


def summarize(values: Sequence[float]) -> TrendStatistic | None:
    """Overall avg/min/max and trend of ordered period means."""
    if not values:
        return None
    return TrendStatistic(
        avg=sum(values) / len(values),
        min=min(values),
        max=max(values),
        trend=classify_trend(values),
    )


def _period_keys(dates: pd.Series, group_by: GroupBy) -> pd.Series:
    if group_by is GroupBy.WEEK:
        iso = dates.dt.isocalendar()
        return iso["year"].astype(str) + "-W" + iso["week"].astype(int).map("{:02d}".format)
    if group_by is GroupBy.MONTH:
        return dates.dt.strftime("%Y-%m")
    return dates.dt.strftime("%Y-%m-%d")


class TrendAggregator:
    """
    Read-only aggregation over the canonical tables.

    Never writes to the store.
    """

    def __init__(self, store: Store) -> None:
        """
        Initialize trend aggregator.

        Args:
            store: Durable store exposing the query capability.
        """
        self.store = store

    def _resolve(self, metrics: Sequence[str]) -> dict[Table, list[tuple[str, str]]]:
        if not metrics:
            raise ValidationError("At least one metric is required")

        by_table: dict[Table, list[tuple[str, str]]] = {}
        for metric in dict.fromkeys(metrics):
            if metric not in METRIC_COLUMNS:
                raise SchemaError(f"Unknown metric: {metric}")
            table, column = METRIC_COLUMNS[metric]
            by_table.setdefault(table, []).append((metric, column))
        return by_table

    def _read_table(
        self, table: Table, selections: list[tuple[str, str]], window: AggregationWindow
    ) -> pd.DataFrame:
        select = ", ".join(f"{column} AS {metric}" for metric, column in selections)
        result = self.store.query(
            f"SELECT date, {select} FROM {table.value} "
            "WHERE date >= ? AND date <= ? ORDER BY date",
            [window.start_date, window.end_date],
        )
        return pd.DataFrame(result.rows, columns=result.columns)

    def _empty(self, window: AggregationWindow) -> TrendReport:
        return TrendReport(period=window.group_by, data=[], statistics=None)

    def aggregate(self, metrics: Sequence[str], window: AggregationWindow) -> TrendReport:
        """
        Aggregate metrics per period over an inclusive window.

        Args:
            metrics: Metric names (see METRIC_COLUMNS).
            window: Canonical date range and grouping.

        Returns:
            Report with the ordered period series and per-metric statistics.
            A window without data yields an empty series and null statistics.

        Raises:
            SchemaError: If any metric name is unknown (before any query).
            StoreError: If a query fails.
        """
        by_table = self._resolve(metrics)
        names = list(dict.fromkeys(metrics))

        merged: pd.DataFrame | None = None
        for table, selections in by_table.items():
            frame = self._read_table(table, selections, window)
            merged = frame if merged is None else merged.merge(frame, on="date", how="outer")

        if merged is None or merged.empty:
            return self._empty(window)

        for name in names:
            merged[name] = pd.to_numeric(merged[name], errors="coerce")
        merged = merged.dropna(subset=names, how="all")

        dates = pd.to_datetime(merged["date"], format="%Y-%m-%d", errors="coerce")
        invalid = int(dates.isna().sum())
        if invalid:
            logger.warning(f"Ignoring {invalid} rows with non-canonical date keys")
        merged = merged[dates.notna()].copy()

        if merged.empty:
            return self._empty(window)

        merged["period"] = _period_keys(dates[dates.notna()], window.group_by)
        grouped = merged.groupby("period", sort=True)[names].mean()

        data = []
        for period, row in grouped.iterrows():
            label = denormalize(str(period)) if window.group_by is GroupBy.DAY else str(period)
            record: dict[str, object] = {"period_label": label}
            for name in names:
                value = row[name]
                record[name] = None if pd.isna(value) else float(value)
            data.append(record)

        statistics: dict[str, TrendStatistic] = {}
        for name in names:
            values = [float(v) for v in grouped[name].dropna()]
            stat = summarize(values)
            if stat is not None:
                statistics[name] = stat

        logger.info(
            f"Aggregated {len(merged)} rows into {len(data)} {window.group_by.value} periods"
        )
        return TrendReport(period=window.group_by, data=data, statistics=statistics)
