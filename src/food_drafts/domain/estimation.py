"""Models for nutrition estimation results."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from food_drafts.domain.drafts import FoodComponent, RecommendedMeasurement


class _EstimatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MeasurementEstimate(_EstimatePayload):
    """Measurable equivalent suggested for a piece-counted component."""

    amount: float = Field(ge=0)
    unit: Literal["g", "ml"]


class ComponentEstimate(_EstimatePayload):
    """Single estimated food component."""

    name: str
    amount: float = Field(ge=0)
    unit: Literal["g", "ml", "piece"]
    recommended_measurement: MeasurementEstimate | None = Field(
        default=None, alias="recommendedMeasurement"
    )
    calories: float | None = Field(default=None, ge=0)
    protein: float | None = Field(default=None, ge=0)
    carbs: float | None = Field(default=None, ge=0)
    fat: float | None = Field(default=None, ge=0)

    def to_component(self) -> FoodComponent:
        """Convert to the draft-side component model."""
        measurement = (
            RecommendedMeasurement(
                amount=self.recommended_measurement.amount,
                unit=self.recommended_measurement.unit,
            )
            if self.recommended_measurement
            else None
        )
        return FoodComponent(
            name=self.name,
            amount=self.amount,
            unit=self.unit,
            recommended_measurement=measurement,
            calories=self.calories,
            protein=self.protein,
            carbs=self.carbs,
            fat=self.fat,
        )


class RefinedEstimate(_EstimatePayload):
    """Structured output of a refinement; totals default to component sums."""

    food_components: list[ComponentEstimate] = Field(alias="foodComponents")
    calories: float | None = Field(default=None, ge=0)
    protein: float | None = Field(default=None, ge=0)
    carbs: float | None = Field(default=None, ge=0)
    fat: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _fill_missing_totals(self) -> "RefinedEstimate":
        for key in ("calories", "protein", "carbs", "fat"):
            if getattr(self, key) is None:
                total = sum(
                    getattr(component, key) or 0.0
                    for component in self.food_components
                )
                setattr(self, key, float(total))
        return self

    def components(self) -> tuple[FoodComponent, ...]:
        """Return the estimated components as domain objects."""
        return tuple(item.to_component() for item in self.food_components)


class FoodEstimate(RefinedEstimate):
    """Structured output of an initial text or image estimation."""

    generated_title: str = Field(default="", alias="generatedTitle")
