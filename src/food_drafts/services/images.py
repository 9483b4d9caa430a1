"""Image capture pipeline: normalize, store durably, upload."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from food_drafts.domain.drafts import Draft
from food_drafts.services.drafts import DraftStore, LocalImageStore
from food_drafts.services.estimation import EstimationCoordinator

_logger = logging.getLogger(__name__)


class ImageNormalizer(Protocol):
    """Resizes and re-encodes captured images."""

    async def normalize(self, source_path: str) -> str:
        """Write a bounded JPEG copy to cache storage and return its path."""


class DurableImageStore(LocalImageStore, Protocol):
    """Local image storage that survives app restarts."""

    async def relocate(self, source_path: str) -> str:
        """Move a file into durable storage under a fresh unique name."""


class ImageUploader(Protocol):
    """Remote object storage for images."""

    async def upload(self, local_image_path: str) -> str:
        """Upload a local image and return its remote storage path."""


class ImageProcessingError(RuntimeError):
    """Raised when any pipeline step fails; no durable file is left behind."""

    def __init__(self, step: str, source_uri: str) -> None:
        super().__init__(f"Image processing failed at {step}: {source_uri}")
        self.step = step
        self.source_uri = source_uri


@dataclass(frozen=True)
class ProcessedImage:
    """Local and remote handles to the same processed image."""

    local_image_path: str
    remote_image_path: str


@dataclass
class ImagePipeline:
    """Processes captured images and attaches them to drafts."""

    normalizer: ImageNormalizer
    local_images: DurableImageStore
    uploader: ImageUploader
    draft_store: DraftStore
    estimation_coordinator: EstimationCoordinator | None = None
    normalize_attempts: int = 3
    retry_base_delay_seconds: float = 0.1

    async def process(self, source_uri: str) -> ProcessedImage:
        """Normalize, relocate and upload an image.

        If the upload fails the relocated file is deleted before the error
        propagates, so a failed attempt never leaves a durable orphan.
        """
        normalized_path = await self._normalize_with_retry(source_uri)

        try:
            local_path = await self.local_images.relocate(normalized_path)
        except Exception as exc:
            await self._discard(normalized_path)
            raise ImageProcessingError("relocate", source_uri) from exc

        try:
            remote_path = await self.uploader.upload(local_path)
        except Exception as exc:
            await self._discard(local_path)
            raise ImageProcessingError("upload", source_uri) from exc

        _logger.info("Processed image %s -> %s", local_path, remote_path)
        return ProcessedImage(
            local_image_path=local_path, remote_image_path=remote_path
        )

    async def attach(self, draft_id: UUID, source_uri: str) -> Draft | None:
        """Process an image and make it the draft's current image.

        Macro fields are zeroed and any in-flight estimation is cancelled in the
        same update. Returns ``None`` when the draft is unknown or was cleared
        while processing.
        """
        if not self.draft_store.exists(draft_id):
            return None

        processed = await self.process(source_uri)

        previous = self.draft_store.get(draft_id)
        if previous is None:
            _logger.info("Draft %s closed during image processing", draft_id)
            await self._discard(processed.local_image_path)
            return None

        updated = self.draft_store.update(
            draft_id,
            local_image_path=processed.local_image_path,
            remote_image_path=processed.remote_image_path,
            calories=0.0,
            protein=0.0,
            carbs=0.0,
            fat=0.0,
            **self._cancel_estimation(draft_id),
        )
        replaced = previous.local_image_path
        if replaced and replaced != processed.local_image_path:
            await self.draft_store.release_image(replaced, exclude=draft_id)
        return updated

    async def remove(self, draft_id: UUID) -> bool:
        """Detach the draft's image and delete the file if nothing else uses it."""
        draft = self.draft_store.get(draft_id)
        if draft is None:
            return False
        self.draft_store.update(
            draft_id,
            local_image_path=None,
            remote_image_path=None,
            **self._cancel_estimation(draft_id),
        )
        if draft.local_image_path:
            await self.draft_store.release_image(
                draft.local_image_path, exclude=draft_id
            )
        return True

    def _cancel_estimation(self, draft_id: UUID) -> dict[str, object]:
        if self.estimation_coordinator is None:
            return {}
        if not self.estimation_coordinator.cancel(draft_id):
            return {}
        _logger.info("Cancelled estimation for draft %s after image change", draft_id)
        return {"is_estimating": False}

    async def _normalize_with_retry(self, source_uri: str) -> str:
        attempt = 0
        while True:
            try:
                return await self.normalizer.normalize(source_uri)
            except FileNotFoundError as exc:
                raise ImageProcessingError("normalize", source_uri) from exc
            except Exception as exc:
                attempt += 1
                _logger.warning(
                    "Image normalize failed (attempt %s/%s): %s",
                    attempt,
                    self.normalize_attempts,
                    exc,
                )
                if attempt >= self.normalize_attempts:
                    raise ImageProcessingError("normalize", source_uri) from exc
                await asyncio.sleep(self.retry_base_delay_seconds * 2 ** (attempt - 1))

    async def _discard(self, path: str) -> None:
        try:
            await self.local_images.delete(path)
        except OSError as exc:
            _logger.warning("Failed to clean up image %s: %s", path, exc)
