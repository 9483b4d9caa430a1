"""Consumed-nutrient aggregation for logs, drafts and favorites."""

from collections.abc import Iterable
from datetime import date
from typing import Protocol

from food_drafts.domain.drafts import MAX_PERCENTAGE_EATEN
from food_drafts.domain.nutrition import DailyNutrients, MacroNutrients


class NutrientEntry(Protocol):
    """Anything carrying raw macro values and an eaten percentage."""

    calories: float | None
    protein: float | None
    carbs: float | None
    fat: float | None
    percentage_eaten: int | None


class DatedNutrientEntry(NutrientEntry, Protocol):
    """Nutrient entry attributed to a calendar date."""

    log_date: date


def consumed(entry: NutrientEntry) -> MacroNutrients:
    """Return the macros actually consumed for a single entry.

    Each raw value is scaled by ``percentage_eaten`` (100 when unset); missing
    macro values count as zero. No rounding is applied.
    """
    factor = _eaten_factor(entry)
    return MacroNutrients(
        calories=_value(entry, "calories") * factor,
        protein=_value(entry, "protein") * factor,
        carbs=_value(entry, "carbs") * factor,
        fat=_value(entry, "fat") * factor,
    )


def aggregate(entries: Iterable[NutrientEntry]) -> MacroNutrients:
    """Sum consumed macros over a collection of entries."""
    total = MacroNutrients()
    for entry in entries:
        total = total + consumed(entry)
    return total


def aggregate_by_date(
    entries: Iterable[DatedNutrientEntry],
) -> dict[date, DailyNutrients]:
    """Group consumed macros by each entry's log date in a single pass."""
    index: dict[date, DailyNutrients] = {}
    for entry in entries:
        existing = index.get(entry.log_date, DailyNutrients())
        summed = existing + consumed(entry)
        index[entry.log_date] = DailyNutrients(
            calories=summed.calories,
            protein=summed.protein,
            carbs=summed.carbs,
            fat=summed.fat,
            exists=True,
        )
    return index


def _eaten_factor(entry: NutrientEntry) -> float:
    percentage = getattr(entry, "percentage_eaten", None)
    if percentage is None:
        percentage = MAX_PERCENTAGE_EATEN
    return percentage / MAX_PERCENTAGE_EATEN


def _value(entry: NutrientEntry, key: str) -> float:
    value = getattr(entry, key, None)
    if isinstance(value, int | float):
        return float(value)
    return 0.0
