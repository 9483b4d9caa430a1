"""Durable on-disk image storage."""

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from food_drafts.services.images import DurableImageStore

_FILE_SCHEME = "file://"


def path_from_uri(uri: str) -> Path:
    """Return a filesystem path for a plain path or ``file://`` URI."""
    if uri.startswith(_FILE_SCHEME):
        return Path(uri[len(_FILE_SCHEME) :])
    return Path(uri)


@dataclass
class FileSystemImageStore(DurableImageStore):
    """Keeps processed images under a single storage directory."""

    root: Path

    async def relocate(self, source_path: str) -> str:
        """Move a file into the storage directory under a UUID filename."""
        return await asyncio.to_thread(self._relocate, source_path)

    async def delete(self, local_image_path: str) -> None:
        """Delete an image; a missing file is not an error."""
        path = Path(self.resolve(local_image_path))
        await asyncio.to_thread(path.unlink, missing_ok=True)

    def resolve(self, local_image_path: str) -> str:
        """Map a stale or bare path onto the current storage directory.

        Stored paths can outlive the directory they were written under, so a
        missing file is looked up by filename in ``root``.
        """
        path = path_from_uri(local_image_path)
        if path.exists():
            return str(path)
        if len(path.parts) == 1:
            return str(self.root / path.name)
        candidate = self.root / path.name
        if candidate.exists():
            return str(candidate)
        return str(path)

    def _relocate(self, source_path: str) -> str:
        source = path_from_uri(source_path)
        if not source.exists():
            raise FileNotFoundError(f"Source file does not exist: {source_path}")
        self.root.mkdir(parents=True, exist_ok=True)
        target = self.root / f"{uuid4()}{source.suffix or '.jpg'}"
        shutil.move(source, target)
        return str(target)
