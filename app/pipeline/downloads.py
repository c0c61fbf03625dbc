"""Owner-scoped retrieval of a job's generated files."""

import logging
from dataclasses import dataclass
from typing import Optional

from app.config import Settings
from app.jobs.models import JobStatus
from app.pipeline.errors import ErrorCode, PipelineError, invalid_request
from app.pipeline.orchestrator import content_type_for
from app.storage.files import StorageError, bucket_for_path, file_extension, safe_filename

logger = logging.getLogger(__name__)

FORMATS = ("pdf", "txt", "md", "original")


@dataclass
class DownloadPayload:
    content: bytes
    media_type: str
    filename: str


def _not_found(message: str, code: ErrorCode = ErrorCode.STORAGE_ERROR) -> PipelineError:
    return PipelineError(404, code, message)


class DownloadService:
    def __init__(self, store, files, settings: Settings):
        self._store = store
        self._files = files
        self._settings = settings

    async def _fetch(self, path: str) -> bytes:
        """Read from the bucket the path implies, then once from the other one."""
        primary = bucket_for_path(path, self._settings)
        fallback = (
            self._settings.uploads_bucket
            if primary == self._settings.generated_bucket
            else self._settings.generated_bucket
        )
        try:
            return await self._files.download(primary, path)
        except StorageError as first:
            logger.info("%s not in %s (%s), trying %s", path, primary, first, fallback)
            try:
                return await self._files.download(fallback, path)
            except StorageError:
                raise _not_found("File not found in storage")

    async def _note_content(self, job_id: str, user_id: str) -> Optional[str]:
        note = await self._store.get_latest_note(job_id, user_id)
        return note.content if note else None

    async def fetch(self, user_id: str, job_id: str, fmt: str = "pdf") -> DownloadPayload:
        if fmt not in FORMATS:
            raise invalid_request(f"Invalid format. Must be one of: {', '.join(FORMATS)}")

        try:
            job = await self._store.get(job_id, user_id)
        except Exception as e:
            raise PipelineError(500, ErrorCode.DATABASE_ERROR, "Failed to load job", details=str(e))
        if job is None:
            raise _not_found("Job not found", ErrorCode.INVALID_REQUEST)

        if job.status is JobStatus.PROCESSING:
            raise invalid_request("Job is still processing")
        if job.status is JobStatus.FAILED:
            raise invalid_request(f"Job processing failed: {job.error_message or 'unknown error'}")

        base = safe_filename(job.lecture_title)

        if fmt == "pdf":
            if not job.output_pdf_path:
                raise _not_found("PDF file not found")
            data = await self._fetch(job.output_pdf_path)
            return DownloadPayload(data, "application/pdf", f"{base}_notes.pdf")

        if fmt == "original":
            path = job.audio_file_path or job.pdf_file_path
            if not path:
                raise _not_found("Original file not found")
            data = await self._fetch(path)
            return DownloadPayload(data, content_type_for(path), f"{base}_original{file_extension(path)}")

        stored_path = job.txt_file_path if fmt == "txt" else job.md_file_path
        data = None
        if stored_path:
            try:
                data = await self._fetch(stored_path)
            except PipelineError:
                logger.info("Stored %s for job %s missing, rebuilding from notes", fmt, job_id)
        if data is None:
            content = await self._note_content(job_id, user_id)
            if content is None:
                raise _not_found(f"No {fmt} content available for this job")
            data = content.encode("utf-8")

        if fmt == "txt":
            return DownloadPayload(data, "text/plain; charset=utf-8", f"{base}_transcription.txt")
        return DownloadPayload(data, "text/markdown; charset=utf-8", f"{base}_notes.md")
