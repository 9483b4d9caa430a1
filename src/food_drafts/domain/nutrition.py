"""Nutrition domain models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class MacroNutrients:
    """Calories (kcal) and macronutrients (g)."""

    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0

    def __add__(self, other: "MacroNutrients") -> "MacroNutrients":
        return MacroNutrients(
            calories=self.calories + other.calories,
            protein=self.protein + other.protein,
            carbs=self.carbs + other.carbs,
            fat=self.fat + other.fat,
        )


@dataclass(frozen=True)
class DailyNutrients(MacroNutrients):
    """Consumed totals for one date, flagged when any entry exists."""

    exists: bool = False
