"""Blob storage for generated emoji images.

:class:`LocalBlobStore` keeps each artifact as a file in the media directory,
which the API serves as static files under ``media_url_prefix``.  Names are
chosen by the caller and are never overwritten: a write to an existing name
fails instead of replacing the stored bytes.

Anything implementing :class:`BlobStore` can be passed to the application
factory in its place, which is how tests observe (or break) storage writes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from emojiforge.core.errors import StorageWriteFailed

logger = logging.getLogger(__name__)

# Content types accepted for stored artifacts and the extension used for each.
CONTENT_TYPE_EXTENSIONS: dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class BlobStore(Protocol):
    def write(self, name: str, data: bytes, content_type: str) -> str: ...

    def public_url(self, name: str) -> str: ...

    def read(self, name: str) -> bytes: ...


class LocalBlobStore:
    """File-system blob store rooted at a single directory."""

    def __init__(self, root: Path, url_prefix: str = "/media"):
        """Initialize the store.

        Args:
            root: Directory that holds stored blobs
            url_prefix: Public URL prefix under which ``root`` is served
        """
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, name: str) -> Path:
        # Blob names are flat; anything that could escape the root is refused.
        if not name or "/" in name or "\\" in name or name in {".", ".."}:
            raise ValueError(f"Invalid blob name: {name!r}")
        return self.root / name

    def write(self, name: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``name`` without overwriting.

        Args:
            name: Unique blob name
            data: Raw bytes
            content_type: MIME type of ``data``

        Returns:
            The stored name

        Raises:
            StorageWriteFailed: The name exists, the content type is not
                accepted, or the file could not be written
        """
        if content_type not in CONTENT_TYPE_EXTENSIONS:
            raise StorageWriteFailed(f"Unsupported content type: {content_type}")

        try:
            path = self._path_for(name)
            # "x" mode fails if the file already exists.
            handle = open(path, "xb")
        except FileExistsError as e:
            raise StorageWriteFailed(f"Blob already exists: {name}") from e
        except (OSError, ValueError) as e:
            logger.error(f"Error writing blob {name}: {e}")
            raise StorageWriteFailed(f"Failed to upload image to storage: {e}") from e

        try:
            with handle:
                handle.write(data)
        except OSError as e:
            # The name was claimed by this call, so the partial file is ours.
            path.unlink(missing_ok=True)
            logger.error(f"Error writing blob {name}: {e}")
            raise StorageWriteFailed(f"Failed to upload image to storage: {e}") from e

        logger.info(f"Stored blob {name} ({len(data)} bytes, {content_type})")
        return name

    def public_url(self, name: str) -> str:
        return f"{self.url_prefix}/{name}"

    def read(self, name: str) -> bytes:
        """Return the stored bytes.

        Raises:
            FileNotFoundError: No blob with this name exists
        """
        return self._path_for(name).read_bytes()
