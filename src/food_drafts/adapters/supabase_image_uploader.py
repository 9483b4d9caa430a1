"""Supabase Storage image uploads."""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from supabase import Client

from food_drafts.services.images import ImageUploader


@dataclass
class SupabaseImageUploader(ImageUploader):
    """Uploads processed JPEGs into a Supabase Storage bucket."""

    client: Client
    bucket: str = "food-images"
    folder: str = "signed"

    async def upload(self, local_image_path: str) -> str:
        """Upload the image and return its object key within the bucket."""
        return await asyncio.to_thread(self._upload, local_image_path)

    def _upload(self, local_image_path: str) -> str:
        remote_path = f"{self.folder}/food-image-{uuid4().hex}.jpg"
        content = Path(local_image_path).read_bytes()
        self.client.storage.from_(self.bucket).upload(
            path=remote_path,
            file=content,
            file_options={"content-type": "image/jpeg", "upsert": "false"},
        )
        return remote_path
