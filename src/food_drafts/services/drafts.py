"""In-memory registry of open food log drafts."""

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from typing import Protocol
from uuid import UUID, uuid4

from food_drafts.domain.drafts import (
    IMMUTABLE_DRAFT_FIELDS,
    MAX_PERCENTAGE_EATEN,
    Draft,
    Favorite,
    FoodLog,
)

_logger = logging.getLogger(__name__)


class ImageReferenceRepository(Protocol):
    """Read-only view of persisted logs and favorites."""

    def is_local_image_referenced(self, local_image_path: str) -> bool:
        """Return whether any committed log or favorite uses the local path."""


class LocalImageStore(Protocol):
    """Durable on-device image storage."""

    async def delete(self, local_image_path: str) -> None:
        """Delete a stored image file."""

    def resolve(self, local_image_path: str) -> str:
        """Return the path the file is actually stored under."""


@dataclass
class DraftStore:
    """Authoritative record for concurrently open drafts.

    All mutation goes through ``update``, which merges fields into the current
    value so overlapping async writers never need a read-then-write cycle.
    Unknown ids are tolerated everywhere: a producer that raced ``clear`` gets
    ``None`` back instead of an exception.
    """

    reference_repository: ImageReferenceRepository
    local_images: LocalImageStore
    _drafts: dict[UUID, Draft] = field(default_factory=dict, init=False, repr=False)

    def create(self, log_date: date) -> UUID:
        """Allocate an empty draft for the given date and return its id."""
        draft = Draft(id=uuid4(), log_date=log_date, created_at=datetime.now(tz=UTC))
        self._drafts[draft.id] = draft
        return draft.id

    def start_editing_from(self, log: FoodLog) -> UUID:
        """Open a draft seeded from a committed log, keeping the log's id."""
        draft = Draft.from_log(log)
        self._drafts[draft.id] = draft
        return draft.id

    def create_from_favorite(
        self,
        favorite: Favorite,
        log_date: date,
        percentage_eaten: int | None = None,
    ) -> UUID:
        """Instantiate a favorite as a new draft with fresh identity."""
        draft = Draft(
            id=uuid4(),
            log_date=log_date,
            created_at=datetime.now(tz=UTC),
            title=favorite.title,
            description=favorite.description,
            local_image_path=favorite.local_image_path,
            remote_image_path=favorite.remote_image_path,
            percentage_eaten=_first_set(
                percentage_eaten, favorite.percentage_eaten, MAX_PERCENTAGE_EATEN
            ),
            calories=favorite.calories,
            protein=favorite.protein,
            carbs=favorite.carbs,
            fat=favorite.fat,
            food_components=tuple(favorite.food_components),
            baseline_food_components=tuple(favorite.food_components),
        )
        self._drafts[draft.id] = draft
        return draft.id

    def get(self, draft_id: UUID) -> Draft | None:
        """Return the current snapshot of a draft, if open."""
        return self._drafts.get(draft_id)

    def exists(self, draft_id: UUID) -> bool:
        """Return whether the draft is still open."""
        return draft_id in self._drafts

    def update(self, draft_id: UUID, **changes: object) -> Draft | None:
        """Merge fields into a draft and return the new snapshot.

        Returns ``None`` when the draft is unknown.
        """
        locked = IMMUTABLE_DRAFT_FIELDS.intersection(changes)
        if locked:
            raise ValueError(f"Draft fields cannot be changed: {sorted(locked)}")
        existing = self._drafts.get(draft_id)
        if existing is None:
            _logger.debug("Ignoring update for unknown draft %s", draft_id)
            return None
        updated = replace(existing, **changes)
        self._drafts[draft_id] = updated
        return updated

    def is_image_referenced(
        self, local_image_path: str, *, exclude: UUID | None = None
    ) -> bool:
        """Return whether a local image is used outside the excluded draft."""
        for draft in self._drafts.values():
            if draft.id != exclude and draft.local_image_path == local_image_path:
                return True
        return self.reference_repository.is_local_image_referenced(local_image_path)

    async def release_image(
        self, local_image_path: str, *, exclude: UUID | None = None
    ) -> bool:
        """Delete a local image unless something else still references it.

        Best-effort: lookup and delete failures are logged, never raised.
        Returns whether a delete was attempted successfully.
        """
        try:
            resolved = self.local_images.resolve(local_image_path)
            if any(
                self.is_image_referenced(path, exclude=exclude)
                for path in dict.fromkeys((local_image_path, resolved))
            ):
                return False
        except Exception:
            _logger.warning(
                "Reference lookup failed, keeping image %s", local_image_path
            )
            return False
        try:
            await self.local_images.delete(resolved)
        except Exception as exc:
            _logger.warning("Failed to delete image %s: %s", local_image_path, exc)
            return False
        return True

    async def clear(self, draft_id: UUID) -> bool:
        """Remove a draft and reclaim its exclusively owned image file."""
        draft = self._drafts.pop(draft_id, None)
        if draft is None:
            return False
        if draft.local_image_path:
            await self.release_image(draft.local_image_path, exclude=draft_id)
        return True


def _first_set(*values: int | None) -> int:
    for value in values:
        if value is not None:
            return value
    return MAX_PERCENTAGE_EATEN
