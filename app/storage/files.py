"""Storage path validation, naming, and the Signed-URL Provider."""

import logging
import os
import re
from typing import Optional

from app.config import Settings
from app.db.supabase_client import run_blocking

logger = logging.getLogger(__name__)

MAX_SIGNED_URL_SECONDS = 86400
MAX_PATH_LENGTH = 1000

ALLOWED_EXTENSIONS = {
    ".mp3", ".wav", ".m4a",
    ".pdf", ".txt", ".md", ".doc", ".docx", ".rtf", ".odt",
    ".jpg", ".jpeg", ".png", ".gif", ".tiff", ".bmp", ".webp",
}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tiff"}

_TRAVERSAL_SEQUENCES = ("../", "..\\", "./", ".\\", "//", "\\\\", "%2e%2e", "%2f", "%5c")
_GENERATED_PREFIXES = ("summaries/", "cornell-notes/", "transcriptions/")


class StorageError(Exception):
    """A storage operation failed or returned nothing usable."""


# ---------------------------------------------------------------------------
# Path checks and naming
# ---------------------------------------------------------------------------

def validate_file_path(path: str, user_id: Optional[str] = None) -> Optional[str]:
    """Check a client-supplied storage path.

    Returns:
        None when the path is acceptable, otherwise the reason it was rejected.
    """
    if not path:
        return "File path is required"
    if len(path) > MAX_PATH_LENGTH:
        return "File path is too long"
    lowered = path.lower()
    if any(seq in lowered for seq in _TRAVERSAL_SEQUENCES):
        return "File path contains invalid sequences"
    if path.startswith("/") or path.startswith("\\") or re.match(r"^[a-zA-Z]:", path):
        return "Absolute file paths are not allowed"
    if file_extension(path) not in ALLOWED_EXTENSIONS:
        return "File type is not allowed"
    if user_id and not path.startswith(f"{user_id}/"):
        return "File path does not belong to the current user"
    return None


def file_extension(path: str) -> str:
    return os.path.splitext(path)[1].lower()


def is_image_path(path: str) -> bool:
    return file_extension(path) in IMAGE_EXTENSIONS


def secure_file_path(user_id: str, filename: str, prefix: str) -> str:
    """Build ``<user>/<prefix>/<sanitized filename>``."""
    sanitized = re.sub(r"[^a-zA-Z0-9.-]", "_", filename)
    sanitized = re.sub(r"_+", "_", sanitized)
    return f"{user_id}/{prefix}/{sanitized}"


def clean_title(raw: str, default: str) -> str:
    title = re.sub(r"\.[^/.]+$", "", raw or "")
    title = re.sub(r"[_-]+", " ", title)
    title = re.sub(r"\s+", " ", title).strip()
    return title or default


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower())
    return slug.strip("-") or "notes"


def safe_filename(title: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", title)


def bucket_for_path(path: str, settings: Settings) -> str:
    """Generated outputs live in the generated bucket; everything else is an upload."""
    if any(f"/{prefix}" in path or path.startswith(prefix) for prefix in _GENERATED_PREFIXES):
        return settings.generated_bucket
    return settings.uploads_bucket


def _truncate(url: str) -> str:
    return url[:60] + "..." if len(url) > 60 else url


# ---------------------------------------------------------------------------
# Signed-URL Provider
# ---------------------------------------------------------------------------

class SignedUrlProvider:
    """Mints time-limited URLs and moves blobs in Supabase Storage."""

    def __init__(self, client, settings: Settings):
        self._client = client
        self._settings = settings
        self._timeout = settings.storage_timeout_seconds

    async def _call(self, description: str, fn):
        try:
            return await run_blocking(fn, timeout=self._timeout)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"{description}: {e}") from e

    async def sign(self, bucket: str, path: str, expires_in: int) -> str:
        if expires_in <= 0 or expires_in > MAX_SIGNED_URL_SECONDS:
            raise StorageError(
                f"Signed URL lifetime must be between 1 and {MAX_SIGNED_URL_SECONDS} seconds"
            )

        def _sign():
            return self._client.storage.from_(bucket).create_signed_url(path, expires_in)

        result = await self._call(f"Failed to sign {bucket}/{path}", _sign)
        url = None
        if isinstance(result, dict):
            url = result.get("signedURL") or result.get("signedUrl") or result.get("signed_url")
        if not url:
            raise StorageError(f"No signed URL returned for {bucket}/{path}")
        logger.debug("Signed %s/%s -> %s", bucket, path, _truncate(url))
        return url

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        def _upload():
            return self._client.storage.from_(bucket).upload(
                path,
                data,
                file_options={"content-type": content_type, "upsert": "true"},
            )

        await self._call(f"Failed to upload {bucket}/{path}", _upload)
        logger.info("Uploaded %d bytes to %s/%s", len(data), bucket, path)
        return path

    async def download(self, bucket: str, path: str) -> bytes:
        def _download():
            return self._client.storage.from_(bucket).download(path)

        data = await self._call(f"Failed to download {bucket}/{path}", _download)
        if not data:
            raise StorageError(f"{bucket}/{path} is empty")
        return data

    async def copy(
        self,
        src_bucket: str,
        src_path: str,
        dst_bucket: str,
        dst_path: str,
        content_type: str,
    ) -> str:
        data = await self.download(src_bucket, src_path)
        return await self.upload(dst_bucket, dst_path, data, content_type)
