"""
Point and range queries over the canonical tables.

Every filter is passed to the store as a bound parameter. Dates come in and
go out in the external MM/DD/YYYY form.
"""

import json
import logging
from collections.abc import Sequence
from typing import Any

from health_export_ledger.infrastructure.store.sql_store import Store
from health_export_ledger.services.aggregation import TrendAggregator, build_window
from health_export_ledger.utils.dates import denormalize, parse_external_date
from health_export_ledger.utils.exceptions import ValidationError
from health_export_ledger.utils.parameters import ProcessingConfig

logger = logging.getLogger(__name__)


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


class HealthQueryService:
    """Read-only query operations returning JSON-shaped results."""

    def __init__(self, store: Store, config: ProcessingConfig | None = None) -> None:
        """
        Initialize query service.

        Args:
            store: Durable store exposing the query capability.
            config: Processing configuration (timezone for relative dates).
        """
        self.store = store
        self.config = config or ProcessingConfig()
        self.aggregator = TrendAggregator(store)

    def _date_filter(
        self, date: str | None, start_date: str | None, end_date: str | None
    ) -> tuple[str, list[str]] | None:
        if date:
            return "date = ?", [parse_external_date(date, self.config.timezone)]
        if start_date and end_date:
            start_key = parse_external_date(start_date, self.config.timezone)
            end_key = parse_external_date(end_date, self.config.timezone)
            if start_key > end_key:
                raise ValidationError(f"start_date {start_date} is after end_date {end_date}")
            return "date >= ? AND date <= ?", [start_key, end_key]
        return None

    def _require_dates(
        self, date: str | None, start_date: str | None, end_date: str | None
    ) -> tuple[str, list[str]]:
        date_filter = self._date_filter(date, start_date, end_date)
        if date_filter is None:
            raise ValidationError("Must provide either date or both start_date and end_date")
        return date_filter

    def _select(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        records = self.store.query(sql, params).records()
        for record in records:
            record["date"] = denormalize(str(record["date"]))
        return records

    def get_weight(
        self,
        date: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict[str, Any]:
        """Weight and body fat for a date or range, with a range summary."""
        where, params = self._require_dates(date, start_date, end_date)
        records = self._select(
            f"SELECT date, weight, body_fat FROM markers WHERE {where} "
            "AND (weight IS NOT NULL OR body_fat IS NOT NULL) ORDER BY date",
            params,
        )
        if not records:
            return {"records": [], "summary": None}

        summary = None
        weights = [r["weight"] for r in records if r["weight"] is not None]
        if len(weights) > 1:
            summary = {
                "avg_weight": _mean(weights),
                "min_weight": min(weights),
                "max_weight": max(weights),
                "weight_change": weights[-1] - weights[0],
            }

        return {"records": records, "summary": summary}

    def get_calories(
        self,
        date: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict[str, Any]:
        """Calorie intake, expenditure and budget, with net and surplus values."""
        where, params = self._require_dates(date, start_date, end_date)
        records = self._select(
            "SELECT date, food_calories, exercise_calories, calorie_budget, tdee "
            f"FROM calories WHERE {where} ORDER BY date",
            params,
        )
        if not records:
            return {"records": [], "summary": None}

        for r in records:
            food = r["food_calories"] or 0
            r["net_calories"] = food - (r["exercise_calories"] or 0)
            r["surplus_deficit"] = food - (r["calorie_budget"] or 0)

        summary = None
        valid = [r for r in records if r["food_calories"] is not None]
        if len(records) > 1 and valid:
            summary = {
                "avg_food_calories": _mean([r["food_calories"] for r in valid]),
                "avg_net_calories": _mean([r["net_calories"] for r in valid]),
                "total_surplus_deficit": sum(r["surplus_deficit"] for r in valid),
                "days_over_budget": sum(1 for r in valid if r["surplus_deficit"] > 0),
                "days_under_budget": sum(1 for r in valid if r["surplus_deficit"] <= 0),
            }

        return {"records": records, "summary": summary}

    def get_activity(
        self,
        date: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict[str, Any]:
        """Steps, sleep and exercise for a date or range."""
        where, params = self._require_dates(date, start_date, end_date)
        records = self._select(
            "SELECT date, steps, sleep_hours, exercise_minutes, exercise_count "
            f"FROM activity WHERE {where} ORDER BY date",
            params,
        )
        if not records:
            return {"records": [], "summary": None}

        summary = None
        if len(records) > 1:
            exercised = [r for r in records if (r["exercise_count"] or 0) > 0]
            summary = {
                "avg_steps": _mean([r["steps"] for r in records if r["steps"] is not None]),
                "avg_sleep_hours": _mean(
                    [r["sleep_hours"] for r in records if r["sleep_hours"] is not None]
                ),
                "total_exercise_minutes": sum(r["exercise_minutes"] or 0 for r in exercised),
                "days_exercised": len(exercised),
            }

        return {"records": records, "summary": summary}

    def get_macros(
        self,
        date: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict[str, Any]:
        """Protein, carbohydrate and fiber intake with macro calories."""
        where, params = self._require_dates(date, start_date, end_date)
        records = self._select(
            "SELECT date, protein_grams, carbs_grams, fiber_grams "
            f"FROM macros WHERE {where} ORDER BY date",
            params,
        )
        if not records:
            return {"records": [], "summary": None}

        for r in records:
            protein, carbs = r["protein_grams"], r["carbs_grams"]
            r["protein_calories"] = protein * 4 if protein is not None else None
            r["carb_calories"] = carbs * 4 if carbs is not None else None

        summary = None
        if len(records) > 1:
            summary = {
                "avg_protein": _mean(
                    [r["protein_grams"] for r in records if r["protein_grams"] is not None]
                ),
                "avg_carbs": _mean(
                    [r["carbs_grams"] for r in records if r["carbs_grams"] is not None]
                ),
                "avg_fiber": _mean(
                    [r["fiber_grams"] for r in records if r["fiber_grams"] is not None]
                ),
            }

        return {"records": records, "summary": summary}

    def get_food_logs(
        self,
        date: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        meal: str | None = None,
        search: str | None = None,
        limit: int = 100,
    ) -> dict[str, Any]:
        """
        Food log entries filtered by date, range, meal and name search.

        Raises:
            ValidationError: If no date, range or search is given, or limit
                is not a positive integer.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")

        conditions: list[str] = []
        params: list[Any] = []

        date_filter = self._date_filter(date, start_date, end_date)
        if date_filter is not None:
            conditions.append(date_filter[0])
            params.extend(date_filter[1])

        if date_filter is None and not search:
            raise ValidationError("Must provide date, date range, or search criteria")

        if meal:
            conditions.append("meal = ?")
            params.append(meal)

        if search:
            conditions.append("food_name LIKE ?")
            params.append(f"%{search}%")

        params.append(limit)
        records = self._select(
            "SELECT date, food_name, meal, quantity, units, calories, nutrients FROM food "
            f"WHERE {' AND '.join(conditions)} ORDER BY date LIMIT ?",
            params,
        )
        if not records:
            return {"records": [], "summary": None}

        by_meal: dict[str, float] = {}
        for r in records:
            r["nutrients"] = self._decode_nutrients(r["nutrients"])
            if r["meal"]:
                by_meal[r["meal"]] = by_meal.get(r["meal"], 0) + (r["calories"] or 0)

        summary = {
            "total_entries": len(records),
            "total_calories": sum(r["calories"] or 0 for r in records),
            "by_meal": by_meal,
        }
        return {"records": records, "summary": summary}

    def _decode_nutrients(self, value: Any) -> dict[str, float]:
        if isinstance(value, dict):
            return value
        if not value:
            return {}
        try:
            decoded = json.loads(value)
        except (TypeError, ValueError):
            logger.warning(f"Undecodable nutrients value: {value!r}")
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def get_daily_summary(self, date: str) -> dict[str, Any]:
        """
        Combined view of every table for one date.

        Sections are None when the table has nothing for the date.
        """
        if not date:
            raise ValidationError("date parameter is required")

        key = parse_external_date(date, self.config.timezone)

        def first(sql: str) -> dict[str, Any] | None:
            records = self.store.query(sql, [key]).records()
            if not records:
                return None
            row = records[0]
            row.pop("date", None)
            return row if any(v is not None for v in row.values()) else None

        markers = first("SELECT date, weight, body_fat FROM markers WHERE date = ?")
        calories = first(
            "SELECT date, food_calories, exercise_calories, calorie_budget, tdee "
            "FROM calories WHERE date = ?"
        )
        activity = first(
            "SELECT date, steps, sleep_hours, exercise_minutes, exercise_count "
            "FROM activity WHERE date = ?"
        )
        macros = first(
            "SELECT date, protein_grams, carbs_grams, fiber_grams FROM macros WHERE date = ?"
        )

        if calories is not None:
            food = calories["food_calories"] or 0
            calories["net_calories"] = food - (calories["exercise_calories"] or 0)
            calories["surplus_deficit"] = food - (calories["calorie_budget"] or 0)

        food_rows = self.store.query(
            "SELECT meal, COUNT(*) AS items, SUM(calories) AS total "
            "FROM food WHERE date = ? GROUP BY meal ORDER BY meal",
            [key],
        ).records()

        total_items = sum(int(r["items"]) for r in food_rows)
        food_summary = None
        if total_items:
            food_summary = {
                "total_items": total_items,
                "by_meal": {r["meal"]: r["total"] for r in food_rows},
            }

        return {
            "date": denormalize(key),
            "markers": markers,
            "calories": calories,
            "activity": activity,
            "macros": macros,
            "food_summary": food_summary,
        }

    def get_trends(
        self,
        start_date: str,
        end_date: str,
        metrics: Sequence[str],
        group_by: str = "day",
    ) -> dict[str, Any]:
        """Trend report for metrics over a range (see TrendAggregator)."""
        window = build_window(start_date, end_date, group_by, self.config.timezone)
        return self.aggregator.aggregate(metrics, window).to_dict()
