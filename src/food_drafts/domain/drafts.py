"""Domain models for food log drafts, persisted logs and favorites."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal
from uuid import UUID

FoodUnit = Literal["g", "ml", "piece"]
MeasurementUnit = Literal["g", "ml"]

MAX_PERCENTAGE_EATEN = 100

# Fields fixed for the lifetime of a draft.
IMMUTABLE_DRAFT_FIELDS = frozenset({"id", "log_date", "created_at"})


@dataclass(frozen=True)
class RecommendedMeasurement:
    """Measurable equivalent for a component counted in pieces."""

    amount: float
    unit: MeasurementUnit


@dataclass(frozen=True)
class FoodComponent:
    """Named sub-item of a log entry with its own macro breakdown."""

    name: str
    amount: float
    unit: FoodUnit
    recommended_measurement: RecommendedMeasurement | None = None
    calories: float | None = None
    protein: float | None = None
    carbs: float | None = None
    fat: float | None = None


@dataclass(frozen=True)
class Draft:
    """In-progress food log entry held only in memory.

    Macro fields describe the current description/image pairing only and are
    trustworthy once ``is_estimating`` is false.
    """

    id: UUID
    log_date: date
    created_at: datetime
    title: str = ""
    description: str = ""
    local_image_path: str | None = None
    remote_image_path: str | None = None
    percentage_eaten: int = MAX_PERCENTAGE_EATEN
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    food_components: tuple[FoodComponent, ...] = ()
    baseline_food_components: tuple[FoodComponent, ...] = ()
    is_estimating: bool = False
    estimation_failed: bool = False

    def __post_init__(self) -> None:
        _validate_percentage(self.percentage_eaten)

    @property
    def has_remote_image(self) -> bool:
        """Return whether the draft references an uploaded image."""
        return bool(self.remote_image_path)

    @classmethod
    def from_log(cls, log: "FoodLog") -> "Draft":
        """Seed a draft from a persisted log, keeping its identity."""
        return cls(
            id=log.id,
            log_date=log.log_date,
            created_at=log.created_at,
            title=log.title,
            description=log.description,
            local_image_path=log.local_image_path,
            remote_image_path=log.remote_image_path,
            percentage_eaten=log.percentage_eaten,
            calories=log.calories,
            protein=log.protein,
            carbs=log.carbs,
            fat=log.fat,
            food_components=tuple(log.food_components),
            baseline_food_components=tuple(log.food_components),
        )


@dataclass(frozen=True)
class FoodLog:
    """Committed food log entry."""

    id: UUID
    log_date: date
    created_at: datetime
    title: str
    description: str = ""
    local_image_path: str | None = None
    remote_image_path: str | None = None
    percentage_eaten: int = MAX_PERCENTAGE_EATEN
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    food_components: tuple[FoodComponent, ...] = ()


@dataclass(frozen=True)
class Favorite:
    """Reusable snapshot of a log's content, without draft-only fields."""

    id: UUID
    title: str
    description: str = ""
    local_image_path: str | None = None
    remote_image_path: str | None = None
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    food_components: tuple[FoodComponent, ...] = field(default_factory=tuple)
    percentage_eaten: int = MAX_PERCENTAGE_EATEN

    @classmethod
    def from_draft(cls, draft: Draft) -> "Favorite":
        """Snapshot a draft's content as a favorite."""
        return cls(
            id=draft.id,
            title=draft.title,
            description=draft.description,
            local_image_path=draft.local_image_path,
            remote_image_path=draft.remote_image_path,
            calories=draft.calories,
            protein=draft.protein,
            carbs=draft.carbs,
            fat=draft.fat,
            food_components=tuple(draft.food_components),
            percentage_eaten=draft.percentage_eaten,
        )


def _validate_percentage(value: int) -> None:
    if not 0 <= value <= MAX_PERCENTAGE_EATEN:
        raise ValueError(f"percentage_eaten must be within 0-100, got {value}")
