"""Blob storage for recorded story audio."""

import logging
import os
import uuid
from pathlib import Path

from fastapi import UploadFile

from app.config import get_settings

logger = logging.getLogger("storycoach.storage")

ALLOWED_EXTENSIONS = {".mp3", ".m4a", ".mp4", ".wav", ".webm", ".ogg", ".flac"}
ALLOWED_MIME_TYPES = {
    "audio/mpeg",
    "audio/mp4",
    "audio/x-m4a",
    "audio/m4a",
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
    "audio/ogg",
    "audio/flac",
    "audio/x-flac",
    "video/webm",  # MediaRecorder in some browsers tags audio-only webm as video
}


class StorageError(ValueError):
    """Raised when an upload is rejected or cannot be stored."""


class MediaStorage:
    """Stores uploaded recordings on local disk, one folder per user.

    A media reference has the form ``<user_id>/<uuid><ext>`` and is resolved
    against ``UPLOAD_DIR``.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root is not None else None

    @property
    def root(self) -> Path:
        return self._root if self._root is not None else Path(get_settings().UPLOAD_DIR)

    def validate_upload_metadata(self, filename: str, content_type: str | None) -> str | None:
        """Validate upload file metadata (extension + MIME). Returns error message or None if valid."""
        ext = Path(filename).suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            return f"Unsupported file type '{ext}'. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

        if content_type and content_type not in ALLOWED_MIME_TYPES and not content_type.startswith("audio/"):
            return f"Invalid content type '{content_type}'. Must be an audio file."

        return None

    async def upload(self, user_id: str, upload: UploadFile) -> str:
        """Stream an upload to disk with a size limit. Returns the media reference.

        Raises StorageError if the file is rejected or exceeds the max upload size.
        """
        error = self.validate_upload_metadata(upload.filename or "", upload.content_type)
        if error:
            raise StorageError(error)

        settings = get_settings()
        max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        ext = Path(upload.filename or "audio.webm").suffix.lower()
        media_ref = f"{user_id}/{uuid.uuid4()}{ext}"
        file_path = self.path_for(media_ref)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_size = 0
        chunk_size = 1024 * 64

        try:
            with open(file_path, "wb") as f:
                while True:
                    chunk = await upload.read(chunk_size)
                    if not chunk:
                        break
                    file_size += len(chunk)
                    if file_size > max_bytes:
                        raise StorageError(
                            f"File too large ({file_size // (1024 * 1024)}MB). Maximum: {settings.MAX_UPLOAD_SIZE_MB}MB"
                        )
                    f.write(chunk)
        except StorageError:
            if file_path.exists():
                os.remove(file_path)
            raise
        except OSError as e:
            if file_path.exists():
                os.remove(file_path)
            raise StorageError(f"Could not store recording: {e}") from e

        if file_size == 0:
            os.remove(file_path)
            raise StorageError("Recording is empty")

        logger.info("Stored %d bytes for user %s as %s", file_size, user_id, media_ref)
        return media_ref

    def path_for(self, media_ref: str) -> Path:
        """Resolve a media reference to a path inside the storage root."""
        root = self.root.resolve()
        path = (root / media_ref).resolve()
        if root not in path.parents:
            raise StorageError(f"Invalid media reference '{media_ref}'")
        return path

    def remove(self, media_ref: str) -> bool:
        """Delete a stored recording. Returns False if it was already gone."""
        path = self.path_for(media_ref)
        if not path.exists():
            return False
        os.remove(path)
        return True


_media_storage: MediaStorage | None = None


def get_media_storage() -> MediaStorage:
    """Get singleton media storage instance."""
    global _media_storage
    if _media_storage is None:
        _media_storage = MediaStorage()
    return _media_storage
