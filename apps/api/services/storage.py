"""Artifact storage for generated media."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

EXTENSION_BY_MIME = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


class LocalArtifactStorage:
    """Writes artifacts under a local directory served at ``base_url``."""

    def __init__(self, root: str, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def upload(self, data: bytes, mime_type: str, *, owner_id: str = "shared") -> str:
        extension = EXTENSION_BY_MIME.get((mime_type or "").lower(), ".bin")
        relative = Path(owner_id) / f"{uuid.uuid4()}{extension}"
        await asyncio.to_thread(self._write, self.root / relative, data)
        logger.info("Stored artifact %s (%s bytes)", relative, len(data))
        return f"{self.base_url}/{relative.as_posix()}"

    def path_for(self, url: str) -> Path:
        """Map a URL returned by ``upload`` back to its file under ``root``."""
        prefix = f"{self.base_url}/"
        if not url or not url.startswith(prefix):
            raise ValueError(f"Artifact URL {url!r} is not served from {self.base_url}")
        root = self.root.resolve()
        target = (root / url[len(prefix):]).resolve()
        if root not in target.parents:
            raise ValueError(f"Artifact URL {url!r} escapes the storage root")
        return target

    async def delete(self, url: str) -> None:
        target = self.path_for(url)
        await asyncio.to_thread(target.unlink, missing_ok=True)
        logger.info("Deleted artifact %s", target.relative_to(self.root.resolve()))
