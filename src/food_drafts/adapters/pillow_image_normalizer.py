"""Pillow-based image normalization."""

import asyncio
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4

from PIL import Image, ImageOps

from food_drafts.adapters.local_image_store import path_from_uri
from food_drafts.services.images import ImageNormalizer


@dataclass
class PillowImageNormalizer(ImageNormalizer):
    """Bounds image size and re-encodes as JPEG into a cache directory."""

    max_dimension: int = 768
    quality: int = 65
    cache_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    async def normalize(self, source_path: str) -> str:
        """Write a resized JPEG copy of the source and return its path."""
        return await asyncio.to_thread(self._normalize, source_path)

    def _normalize(self, source_path: str) -> str:
        source = path_from_uri(source_path)
        if not source.exists():
            raise FileNotFoundError(f"Source image does not exist: {source_path}")
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.cache_dir / f"normalized-{uuid4().hex}.jpg"
        with Image.open(source) as img:
            rgb_img = _to_rgb(ImageOps.exif_transpose(img))
            rgb_img.thumbnail((self.max_dimension, self.max_dimension))
            rgb_img.save(target, format="JPEG", quality=self.quality, optimize=True)
        return str(target)


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten transparency onto white and convert to RGB."""
    if img.mode in ("RGBA", "LA", "P"):
        if img.mode == "P":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img
