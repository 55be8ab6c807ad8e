"""
Field mapping from raw source rows to canonical (date, field, value) triples.

Fixed-schema sources map known columns onto canonical table fields. The
free-form mode namespaces every column by its source so unrelated files can
be merged by date without colliding.
"""

import logging
import math
import re
from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, Field

from health_export_ledger.domain.records import MappedValue, MergePolicy, Table
from health_export_ledger.infrastructure.parsers.csv_parser import RawRow
from health_export_ledger.utils.dates import normalize
from health_export_ledger.utils.exceptions import SchemaError
from health_export_ledger.utils.parameters import DEFAULT_DATE_ALIASES

logger = logging.getLogger(__name__)

_THOUSANDS_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")


class FieldKind(str, Enum):
    """Value type of a mapped field."""

    FLOAT = "float"
    INT = "int"
    TEXT = "text"


class FieldSpec(BaseModel):
    """Mapping of one source column onto one canonical field."""

    column: str
    field: str
    kind: FieldKind = FieldKind.FLOAT
    policy: MergePolicy = MergePolicy.OVERWRITE


class SourceSpec(BaseModel):
    """A well-known export file and the canonical fields it feeds."""

    filename: str
    aliases: list[str] = Field(default_factory=list, description="Alternative file names")
    table: Table
    fields: list[FieldSpec] = Field(default_factory=list)
    count_field: str | None = Field(None, description="Field incremented once per row")
    nutrients: dict[str, str] = Field(
        default_factory=dict, description="Source column -> nutrient key"
    )

    def candidates(self) -> list[str]:
        """File names to look for, preferred name first."""
        return [self.filename, *self.aliases]


FOOD_NUTRIENTS = {
    "Fat (g)": "fat",
    "Protein (g)": "protein",
    "Carbohydrates (g)": "carbs",
    "Saturated Fat (g)": "sat_fat",
    "Sugars (g)": "sugar",
    "Fiber (g)": "fiber",
    "Cholesterol (mg)": "cholesterol",
    "Sodium (mg)": "sodium",
}

# Declared processing order. Later sources win an overwrite on the same field.
SOURCE_CATALOGUE: list[SourceSpec] = [
    SourceSpec(
        filename="body-fat.csv",
        table=Table.MARKERS,
        fields=[FieldSpec(column="Value", field="body_fat")],
    ),
    SourceSpec(
        filename="weights.csv",
        aliases=["weight.csv"],
        table=Table.MARKERS,
        fields=[
            FieldSpec(column="Value", field="weight"),
            FieldSpec(column="Weight", field="weight"),
        ],
    ),
    SourceSpec(
        filename="steps.csv",
        table=Table.ACTIVITY,
        fields=[FieldSpec(column="Value", field="steps", kind=FieldKind.INT)],
    ),
    SourceSpec(
        filename="sleep.csv",
        table=Table.ACTIVITY,
        fields=[FieldSpec(column="Value", field="sleep_hours")],
    ),
    SourceSpec(
        filename="exercise-logs.csv",
        table=Table.ACTIVITY,
        fields=[
            FieldSpec(column="Quantity", field="exercise_minutes", policy=MergePolicy.SUM)
        ],
        count_field="exercise_count",
    ),
    SourceSpec(
        filename="daily-calorie-summary.csv",
        table=Table.CALORIES,
        fields=[
            FieldSpec(column="Food cals", field="food_calories"),
            FieldSpec(column="Exercise cals", field="exercise_calories"),
            FieldSpec(column="Budget cals", field="calorie_budget"),
            FieldSpec(column="EER", field="tdee"),
        ],
    ),
    SourceSpec(
        filename="protein.csv",
        table=Table.MACROS,
        fields=[FieldSpec(column="Value", field="protein_grams")],
    ),
    SourceSpec(
        filename="carbohydrates.csv",
        table=Table.MACROS,
        fields=[FieldSpec(column="Value", field="carbs_grams")],
    ),
    SourceSpec(
        filename="fiber.csv",
        table=Table.MACROS,
        fields=[FieldSpec(column="Value", field="fiber_grams")],
    ),
    SourceSpec(
        filename="food-logs.csv",
        table=Table.FOOD,
        fields=[
            FieldSpec(column="Name", field="food_name", kind=FieldKind.TEXT),
            FieldSpec(column="Meal", field="meal", kind=FieldKind.TEXT),
            FieldSpec(column="Quantity", field="quantity"),
            FieldSpec(column="Units", field="units", kind=FieldKind.TEXT),
            FieldSpec(column="Calories", field="calories"),
        ],
        nutrients=FOOD_NUTRIENTS,
    ),
]


def parse_number(value: object) -> float | None:
    """
    Permissively parse a numeric value.

    Accepts thousands separators ("12,345") and comma decimals ("75,5").
    Anything unparsable, empty or non-finite is absent (None), never zero.
    """
    if value is None:
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        if _THOUSANDS_RE.match(text):
            text = text.replace(",", "")
        else:
            text = text.replace(",", ".")
        try:
            number = float(text)
        except ValueError:
            return None

    if not math.isfinite(number):
        return None
    return number


def _convert(value: str, kind: FieldKind) -> float | int | str | None:
    if kind is FieldKind.TEXT:
        return value
    number = parse_number(value)
    if number is None:
        return None
    if kind is FieldKind.INT:
        return int(round(number))
    return number


def find_date_column(columns: Iterable[str], aliases: Iterable[str] | None = None) -> str | None:
    """
    Find the date column of a source.

    Matches case-insensitively against the alias set, or any column whose
    name contains "date". The first matching column in header order wins.
    """
    alias_set = {a.lower() for a in (aliases if aliases is not None else DEFAULT_DATE_ALIASES)}

    for column in columns:
        name = column.strip().lower()
        if name in alias_set or "date" in name:
            return column

    return None


class FieldMapper:
    """
    Maps raw rows onto canonical field triples.

    Provides the fixed-schema transform mode (`map_source`) and the
    namespaced free-form combine mode (`map_free_form`).
    """

    def __init__(self, date_aliases: list[str] | None = None) -> None:
        """
        Initialize field mapper.

        Args:
            date_aliases: Column names recognised as the date column.
        """
        self.date_aliases = date_aliases if date_aliases is not None else list(DEFAULT_DATE_ALIASES)

    def _date_column(self, source: str, rows: list[RawRow]) -> str:
        date_column = find_date_column(rows[0].keys(), self.date_aliases)
        if date_column is None:
            raise SchemaError(f"No date column found in {source}")
        return date_column

    def map_source(self, spec: SourceSpec, rows: list[RawRow]) -> list[MappedValue]:
        """
        Map rows of a fixed-schema source onto canonical fields.

        Args:
            spec: Source declaration.
            rows: Raw rows read from the source file.

        Returns:
            Mapped triples in row order.

        Raises:
            SchemaError: If the source has no date column.
        """
        if not rows:
            return []

        date_column = self._date_column(spec.filename, rows)
        mapped: list[MappedValue] = []

        for idx, row in enumerate(rows):
            raw_date = row.get(date_column, "")
            if not raw_date:
                logger.debug(f"{spec.filename} row {idx}: empty date, skipping")
                continue

            date_key = normalize(raw_date)
            entry = idx if not spec.table.has_unique_date else None

            for field_spec in spec.fields:
                if field_spec.column not in row:
                    continue
                value = _convert(row[field_spec.column], field_spec.kind)
                if value is None and field_spec.policy is not MergePolicy.OVERWRITE:
                    continue
                mapped.append(
                    MappedValue(
                        date_key=date_key,
                        field=field_spec.field,
                        value=value,
                        source=spec.filename,
                        policy=field_spec.policy,
                        entry=entry,
                    )
                )

            if spec.count_field:
                mapped.append(
                    MappedValue(
                        date_key=date_key,
                        field=spec.count_field,
                        value=1,
                        source=spec.filename,
                        policy=MergePolicy.COUNT,
                        entry=entry,
                    )
                )

            if spec.nutrients:
                nutrients = {}
                for column, key in spec.nutrients.items():
                    number = parse_number(row.get(column))
                    if number is not None:
                        nutrients[key] = number
                mapped.append(
                    MappedValue(
                        date_key=date_key,
                        field="nutrients",
                        value=nutrients,
                        source=spec.filename,
                        entry=entry,
                    )
                )

        logger.debug(f"Mapped {len(mapped)} values from {spec.filename}")
        return mapped

    def map_free_form(self, source_id: str, rows: list[RawRow]) -> list[MappedValue]:
        """
        Map rows of an arbitrary source, namespacing fields by source id.

        Every non-date column becomes `<source_id>_<column>` with its raw
        string value.

        Raises:
            SchemaError: If the source has no date column.
        """
        if not rows:
            return []

        date_column = self._date_column(source_id, rows)
        mapped: list[MappedValue] = []

        for row in rows:
            raw_date = row.get(date_column, "")
            if not raw_date:
                continue

            date_key = normalize(raw_date)

            for column, value in row.items():
                if column.lower() == date_column.lower():
                    continue
                mapped.append(
                    MappedValue(
                        date_key=date_key,
                        field=f"{source_id}_{column}",
                        value=value,
                        source=source_id,
                    )
                )

        return mapped
