"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from supabase import create_client

from food_drafts.adapters.local_image_store import FileSystemImageStore
from food_drafts.adapters.openai_estimation_client import OpenAIEstimationClient
from food_drafts.adapters.pillow_image_normalizer import PillowImageNormalizer
from food_drafts.adapters.supabase_functions_client import (
    HttpxSupabaseFunctionsClient,
)
from food_drafts.adapters.supabase_image_uploader import SupabaseImageUploader
from food_drafts.adapters.supabase_reference_repository import (
    SupabaseImageReferenceRepository,
)
from food_drafts.app_logging import configure_logging
from food_drafts.config import Settings, parse_estimation_backend
from food_drafts.services.drafts import DraftStore
from food_drafts.services.estimation import EstimationCoordinator, EstimationService
from food_drafts.services.images import ImagePipeline
from food_drafts.services.transcription import TranscriptionMerger


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    draft_store: DraftStore
    image_pipeline: ImagePipeline
    estimation_coordinator: EstimationCoordinator
    estimation_service: EstimationService
    close_resources: Callable[[], Awaitable[None]]

    def transcription_for(
        self, draft_id: UUID, on_volume: Callable[[float], None] | None = None
    ) -> TranscriptionMerger:
        """Return a fresh dictation merger bound to one draft."""
        return TranscriptionMerger(
            draft_store=self.draft_store, draft_id=draft_id, on_volume=on_volume
        )

    async def close_draft(self, draft_id: UUID) -> bool:
        """Cancel the draft's pending estimation, then remove the draft."""
        self.estimation_coordinator.cancel(draft_id)
        return await self.draft_store.clear(draft_id)


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    configure_logging(resolved_settings.log_level)
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    local_images = FileSystemImageStore(root=resolved_settings.image_storage_dir)
    draft_store = DraftStore(
        reference_repository=SupabaseImageReferenceRepository(supabase_client),
        local_images=local_images,
    )
    estimation_coordinator = EstimationCoordinator()
    image_pipeline = ImagePipeline(
        normalizer=PillowImageNormalizer(
            max_dimension=resolved_settings.image_max_dimension,
            quality=resolved_settings.image_jpeg_quality,
        ),
        local_images=local_images,
        uploader=SupabaseImageUploader(
            supabase_client, bucket=resolved_settings.image_bucket
        ),
        draft_store=draft_store,
        estimation_coordinator=estimation_coordinator,
    )

    backend = parse_estimation_backend(resolved_settings.estimation_backend)
    estimation_client: HttpxSupabaseFunctionsClient | OpenAIEstimationClient
    if backend == "openai":
        if not resolved_settings.openai_api_key:
            raise ValueError("openai_api_key is required for the openai backend")
        estimation_client = OpenAIEstimationClient.create(
            api_key=resolved_settings.openai_api_key,
            model=resolved_settings.openai_model,
            reasoning_effort=resolved_settings.openai_reasoning_effort,
            store=resolved_settings.openai_store,
        )
    else:
        estimation_client = HttpxSupabaseFunctionsClient.create(
            supabase_url=resolved_settings.supabase_url,
            api_key=resolved_settings.supabase_service_key,
        )

    estimation_service = EstimationService(
        client=estimation_client,
        draft_store=draft_store,
        coordinator=estimation_coordinator,
        may_estimate=lambda: resolved_settings.estimation_enabled,
        language=resolved_settings.estimation_language,
        retry_attempts=resolved_settings.estimation_retry_attempts,
    )

    async def close_resources() -> None:
        await estimation_client.close()

    return AppContainer(
        settings=resolved_settings,
        draft_store=draft_store,
        image_pipeline=image_pipeline,
        estimation_coordinator=estimation_coordinator,
        estimation_service=estimation_service,
        close_resources=close_resources,
    )
