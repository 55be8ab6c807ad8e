"""
Canonical table records and reconciliation/aggregation value types.

Daily tables (markers, activity, calories, macros) hold one record per date
key. The food table is append-only and holds one record per logged entry.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Table(str, Enum):
    """Canonical tables, in load order."""

    MARKERS = "markers"
    ACTIVITY = "activity"
    CALORIES = "calories"
    MACROS = "macros"
    FOOD = "food"

    @property
    def has_unique_date(self) -> bool:
        return self is not Table.FOOD


class MergePolicy(str, Enum):
    """How an incoming value is merged into a record field."""

    OVERWRITE = "overwrite"
    SUM = "sum"
    COUNT = "count"


class GroupBy(str, Enum):
    """Aggregation period."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class Trend(str, Enum):
    """Trend classification over ordered period means."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class CanonicalRecord(BaseModel):
    """Base for canonical table records, keyed by normalized date."""

    table: ClassVar[Table]

    date: str = Field(description="Canonical date key (YYYY-MM-DD)")

    model_config = ConfigDict(validate_assignment=True)

    @classmethod
    def columns(cls) -> list[str]:
        """Persisted column names, date first."""
        return list(cls.model_fields)

    def to_row(self) -> dict[str, Any]:
        """Convert to a flat row suitable for CSV output and SQL parameters."""
        return self.model_dump()


class MarkerRecord(CanonicalRecord):
    """Body markers for one date."""

    table: ClassVar[Table] = Table.MARKERS

    weight: float | None = None
    body_fat: float | None = None


class ActivityRecord(CanonicalRecord):
    """Steps, sleep and exercise totals for one date."""

    table: ClassVar[Table] = Table.ACTIVITY

    steps: int | None = None
    sleep_hours: float | None = None
    exercise_minutes: float | None = None
    exercise_count: int | None = None


class CalorieRecord(CanonicalRecord):
    """Daily calorie summary for one date."""

    table: ClassVar[Table] = Table.CALORIES

    food_calories: float | None = None
    exercise_calories: float | None = None
    calorie_budget: float | None = None
    tdee: float | None = None


class MacroRecord(CanonicalRecord):
    """Macronutrient totals for one date."""

    table: ClassVar[Table] = Table.MACROS

    protein_grams: float | None = None
    carbs_grams: float | None = None
    fiber_grams: float | None = None


class FoodRecord(CanonicalRecord):
    """A single food log entry. Several entries may share a date."""

    table: ClassVar[Table] = Table.FOOD

    food_name: str = ""
    meal: str = ""
    quantity: float | None = None
    units: str = ""
    calories: float | None = None
    nutrients: dict[str, float] = Field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        data = self.model_dump()
        data["nutrients"] = json.dumps(data["nutrients"], sort_keys=True)
        return data


RECORD_TYPES: dict[Table, type[CanonicalRecord]] = {
    Table.MARKERS: MarkerRecord,
    Table.ACTIVITY: ActivityRecord,
    Table.CALORIES: CalorieRecord,
    Table.MACROS: MacroRecord,
    Table.FOOD: FoodRecord,
}


class MappedValue(BaseModel):
    """
    One (date_key, field, value) triple produced by the field mapper.

    `entry` identifies the source row for append-only tables so that every
    row becomes its own record; daily tables leave it unset.
    """

    date_key: str
    field: str
    value: Any = None
    source: str
    policy: MergePolicy = MergePolicy.OVERWRITE
    entry: int | None = None


@dataclass
class MergeCollision:
    """A field written by two different sources for the same date."""

    date: str
    field: str
    previous_source: str
    source: str

    def to_dict(self) -> dict[str, str]:
        return {
            "date": self.date,
            "field": self.field,
            "previous_source": self.previous_source,
            "source": self.source,
        }


@dataclass
class ReconciledSet:
    """Date-ordered records for one table, produced by one reconciliation pass."""

    table: Table
    records: list[CanonicalRecord] = field(default_factory=list)
    collisions: list[MergeCollision] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def dates(self) -> list[str]:
        """Distinct date keys, in record order."""
        return list(dict.fromkeys(r.date for r in self.records))

    def to_rows(self) -> list[dict[str, Any]]:
        return [r.to_row() for r in self.records]


class AggregationWindow(BaseModel):
    """Inclusive date range and grouping period for a trend query."""

    start_date: str = Field(description="Canonical start date key")
    end_date: str = Field(description="Canonical end date key")
    group_by: GroupBy = GroupBy.DAY

    @model_validator(mode="after")
    def _check_order(self) -> "AggregationWindow":
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date} is after end_date {self.end_date}"
            )
        return self


class TrendStatistic(BaseModel):
    """Summary of one metric over the ordered period means."""

    avg: float
    min: float
    max: float
    trend: Trend | None = None

    model_config = ConfigDict(use_enum_values=True)


class TrendReport(BaseModel):
    """Aggregated series plus per-metric statistics."""

    period: GroupBy
    data: list[dict[str, Any]] = Field(default_factory=list)
    statistics: dict[str, TrendStatistic] | None = None

    model_config = ConfigDict(use_enum_values=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON-shaped report."""
        return self.model_dump()
