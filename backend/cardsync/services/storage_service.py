"""
CardSync Pro Backend — Blob Storage Service
============================================

What:  Validates and stores contact attachments (card photos, voice notes).
Why:   Centralizes all file system operations with security checks.
How:   Objects live under STORAGE_ROOT at caller-chosen keys such as
       `contact-images/<owner>/<contact id>.jpg`, and are served back through
       GET /api/files/<key>.
Who:   ContactService (upload after create, delete after delete), the extract
       route (validation only), the files route (resolve for download).

Security Model:
    1. Extension check:  fast rejection of obviously wrong files
    2. Size check:       bounded per attachment kind
    3. MIME type check:  libmagic reads the header bytes, so renamed files
                         are caught
    4. Key check:        keys are resolved under the root and anything that
                         escapes it (`..`, absolute paths) is refused
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Set

import aiofiles

from cardsync.config import Settings
from cardsync.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

# MIME type → canonical extension
IMAGE_MIME_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}

# Browsers record voice notes as webm/ogg; libmagic often labels webm as video
AUDIO_MIME_TYPES = {
    "audio/webm": ".webm",
    "video/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "video/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
}
AUDIO_EXTENSIONS = {".webm", ".ogg", ".mp3", ".m4a", ".wav"}

# Used when libmagic is unavailable
_EXTENSION_MIME_FALLBACK = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
}


@dataclass
class Attachment:
    """An uploaded file read into memory, before validation."""
    filename: str
    content: bytes


@dataclass
class ValidatedFile:
    extension: str
    mime_type: str


class StorageService:
    """
    Filesystem-backed blob store.

    Directory Structure:
        storage/
        ├── contact-images/
        │   └── <owner>/
        │       └── <contact id>.jpg
        └── voice-notes/
            └── <owner>/
                └── <contact id>.webm
    """

    FILES_PATH = "/api/files/"

    def __init__(self, settings: Settings, storage_root: Optional[str] = None):
        """
        Args:
            settings: Application settings (size limits, public base URL)
            storage_root: Override the configured root (used in tests)
        """
        self.settings = settings
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = settings.public_base_url.rstrip("/")
        logger.info("StorageService initialized with storage_root=%s", self.storage_root)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_image(self, attachment: Attachment) -> ValidatedFile:
        return self._validate(
            attachment,
            field="photo",
            extensions=IMAGE_EXTENSIONS,
            mime_types=IMAGE_MIME_TYPES,
            max_size=self.settings.max_image_size,
            kind="image (PNG, JPEG or WebP)",
        )

    def validate_audio(self, attachment: Attachment) -> ValidatedFile:
        return self._validate(
            attachment,
            field="voice_note",
            extensions=AUDIO_EXTENSIONS,
            mime_types=AUDIO_MIME_TYPES,
            max_size=self.settings.max_audio_size,
            kind="audio recording (WebM, Ogg, MP3, M4A or WAV)",
        )

    def _validate(
        self,
        attachment: Attachment,
        field: str,
        extensions: Set[str],
        mime_types: Dict[str, str],
        max_size: int,
        kind: str,
    ) -> ValidatedFile:
        """
        Validation order (cheapest first):
            1. Extension
            2. Size
            3. MIME type from magic bytes
        """
        ext = Path(attachment.filename or "").suffix.lower()
        if ext not in extensions:
            raise ValidationError(
                message=(
                    f"File type '{ext or 'unknown'}' is not supported. "
                    f"Allowed types: {', '.join(sorted(extensions))}"
                ),
                field=field,
                context={"extension": ext, "allowed": sorted(extensions)},
            )

        size = len(attachment.content)
        max_mb = max_size / (1024 * 1024)
        if size == 0:
            raise ValidationError(message="The uploaded file is empty.", field=field)
        if size > max_size:
            raise ValidationError(
                message=f"File size ({size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field=field,
                context={"max_size_mb": max_mb, "actual_size": size},
            )

        mime_type = self._detect_mime_type(attachment)
        if mime_type not in mime_types:
            raise ValidationError(
                message=f"File content type '{mime_type}' is not supported. The file must be a valid {kind}.",
                field=field,
                context={"detected_mime": mime_type, "allowed": sorted(mime_types)},
            )

        # Store under the extension matching the content, not the client's name
        return ValidatedFile(extension=mime_types[mime_type], mime_type=mime_type)

    def _detect_mime_type(self, attachment: Attachment) -> str:
        try:
            import magic
            return magic.from_buffer(attachment.content, mime=True)
        except ImportError:
            # python-magic not installed (e.g., in CI without libmagic)
            logger.warning(
                "python-magic not available; falling back to extension-based type detection. "
                "Install libmagic for production security."
            )
            ext = Path(attachment.filename or "").suffix.lower()
            return _EXTENSION_MIME_FALLBACK.get(ext, "application/octet-stream")
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

    # ── Keys and URLs ─────────────────────────────────────────────────────

    @staticmethod
    def contact_image_key(owner_id: str, contact_id, extension: str) -> str:
        return f"contact-images/{owner_id}/{contact_id}{extension}"

    @staticmethod
    def voice_note_key(owner_id: str, contact_id, extension: str) -> str:
        return f"voice-notes/{owner_id}/{contact_id}{extension}"

    def resolve_path(self, key: str) -> Path:
        """
        Absolute path for a key.

        Raises:
            ValidationError if the key would resolve outside the storage root
        """
        path = (self.storage_root / key).resolve()
        if not key or os.path.isabs(key) or not path.is_relative_to(self.storage_root) or path == self.storage_root:
            raise ValidationError(message="Invalid file key", field="key", context={"key": key})
        return path

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}{self.FILES_PATH}{key}"

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        """
        Key for a URL this store issued; None for external or empty URLs.

        External image URLs are never ours to delete.
        """
        prefix = f"{self.public_base_url}{self.FILES_PATH}"
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):] or None

    @staticmethod
    def owner_of(key: str) -> Optional[str]:
        """Owner segment of an attachment key (`<kind>/<owner>/<file>`)."""
        parts = key.split("/")
        return parts[1] if len(parts) == 3 else None

    # ── Blob operations ───────────────────────────────────────────────────

    async def upload(self, key: str, content: bytes) -> str:
        """
        Write an object and return its retrievable URL.

        Raises:
            FileStorageError if the directory or file cannot be written
        """
        path = self.resolve_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store object %s: %s", key, str(e))
            raise FileStorageError(
                message="Failed to save the uploaded file. Please try again.",
                context={"key": key, "os_error": str(e)},
            ) from e

        logger.info("Object stored: %s (%d bytes)", key, len(content))
        return self.url_for(key)

    async def delete(self, key: str) -> None:
        """
        Remove an object. Idempotent: a missing object is not an error.

        Raises:
            FileStorageError for any other OS failure
        """
        path = self.resolve_path(key)
        try:
            os.remove(path)
            logger.info("Object deleted: %s", key)
        except FileNotFoundError:
            logger.debug("Delete: object already gone: %s", key)
        except OSError as e:
            raise FileStorageError(
                message="Failed to delete stored file",
                context={"key": key, "os_error": str(e)},
            ) from e
