"""Pipeline orchestrator for lecture and document processing.

Stages run strictly in sequence. Each external call runs under its own
deadline, and any fatal stage failure marks the job ``failed`` with the
stage tag before the tagged error is returned to the caller.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple, Union

from app.adapters.base import AdapterFailure, ExtractedText, with_deadline
from app.adapters.note_generation import CLEAN_DOCUMENT, CORNELL_NOTES
from app.config import Settings
from app.jobs.models import ErrorStep, JobRecord, JobStatus, ProcessingMode, utcnow
from app.pipeline.errors import ErrorCode, PipelineError, invalid_request
from app.pipeline.requests import GenerateRequest, ProcessDocumentRequest
from app.storage.files import (
    StorageError,
    clean_title,
    file_extension,
    is_image_path,
    safe_filename,
    secure_file_path,
    slugify,
    validate_file_path,
)
from app.usage.limiter import UsageDecision, UsageLookupError

logger = logging.getLogger(__name__)

COMPLETED = "completed"
NOT_REQUIRED = "not_required"

_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".rtf": "application/rtf",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".tiff": "image/tiff",
}


def content_type_for(path: str) -> str:
    return _CONTENT_TYPES.get(file_extension(path), "application/octet-stream")


def store_mode_content(title: str, transcript: Optional[str], document_text: Optional[str]) -> str:
    """Raw content handed to verbatim formatting in ``store`` mode."""
    if transcript and document_text:
        return (
            f"# {title}\n\n## Audio Transcript\n\n{transcript}"
            f"\n\n## Document Content\n\n{document_text}"
        )
    return f"# {title}\n\n{transcript or document_text or ''}"


class PipelineOrchestrator:
    def __init__(
        self,
        settings: Settings,
        store,
        limiter,
        files,
        transcriber,
        document_extractor,
        image_ocr,
        note_generator,
        renderer,
        notifier,
    ):
        self._settings = settings
        self._store = store
        self._limiter = limiter
        self._files = files
        self._transcriber = transcriber
        self._document_extractor = document_extractor
        self._image_ocr = image_ocr
        self._notes = note_generator
        self._renderer = renderer
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _require_environment(self) -> None:
        missing = self._settings.missing_pipeline_settings()
        if missing:
            raise PipelineError(
                500,
                ErrorCode.ENVIRONMENT_ERROR,
                "Server configuration error",
                details=f"Missing settings: {', '.join(missing)}",
            )

    @staticmethod
    def _require_safe_path(path: Optional[str], name: str, user_id: str) -> None:
        if path:
            problem = validate_file_path(path, user_id=user_id)
            if problem:
                raise invalid_request(f"Invalid {name}: {problem}")

    async def _check_usage(
        self, user_id: str, file_size_mb: float, duration_minutes: Optional[float]
    ) -> UsageDecision:
        try:
            decision = await self._limiter.check(user_id, file_size_mb, duration_minutes)
        except UsageLookupError as e:
            raise PipelineError(
                500, ErrorCode.DATABASE_ERROR, "Failed to check usage limits", details=str(e)
            )
        if not decision.can_process:
            raise PipelineError(
                429,
                ErrorCode.PROCESSING_FAILED,
                decision.message,
                details={
                    "currentUsageMinutes": decision.current_usage_minutes,
                    "monthlyLimitMinutes": decision.monthly_limit_minutes,
                    "estimatedDurationMinutes": decision.estimated_duration_minutes,
                    "filesThisMonth": decision.files_this_month,
                    "userTier": decision.user_tier,
                    "limit": decision.limit,
                    "upgradeUrl": self._settings.upgrade_url,
                },
            )
        return decision

    async def _create_job(self, user_id: str, **fields) -> JobRecord:
        try:
            return await self._store.create(user_id, **fields)
        except Exception as e:
            logger.error("Job creation failed for %s: %s", user_id, e)
            raise PipelineError(
                500, ErrorCode.DATABASE_ERROR, "Failed to initialize job", details=str(e)
            )

    async def _fail(self, job: JobRecord, step: ErrorStep, message: str) -> None:
        """Record a stage failure on the job and tell the user. Never raises."""
        logger.error("Job %s failed at %s: %s", job.job_id, step.value, message)
        try:
            await self._store.mark_failed(job.job_id, job.user_id, step, message)
        except Exception:
            logger.exception("Could not mark job %s as failed", job.job_id)
        try:
            await self._notifier.lecture_failed(job.user_id, job.job_id, job.lecture_title, message)
        except Exception as e:
            logger.warning("Failure notification for job %s not sent: %s", job.job_id, e)

    async def _stage_error(
        self,
        job: JobRecord,
        step: ErrorStep,
        code: ErrorCode,
        client_message: str,
        detail: str,
        job_message: Optional[str] = None,
    ) -> PipelineError:
        await self._fail(job, step, job_message or detail)
        return PipelineError(500, code, client_message, details=detail)

    async def _sign_input(self, job: JobRecord, path: str, expires_in: int) -> str:
        try:
            return await self._files.sign(self._settings.uploads_bucket, path, expires_in)
        except StorageError as e:
            raise await self._stage_error(
                job, ErrorStep.PROCESSING_FAILED, ErrorCode.STORAGE_ERROR,
                "Failed to generate secure file URLs", str(e),
            )

    async def _extract_document(
        self, path: str, url: str
    ) -> Union[ExtractedText, AdapterFailure]:
        if is_image_path(path):
            logger.info("Extracting text from image %s with OCR", path)
            call = self._image_ocr.extract(url)
            service = "Image OCR service"
        else:
            logger.info("Extracting text from document %s", path)
            call = self._document_extractor.extract(url)
            service = "Document extraction service"
        return await with_deadline(call, self._settings.extraction_timeout_seconds, service)

    async def _persist_note(self, job: JobRecord, content: str) -> None:
        try:
            await self._store.insert_note(job.job_id, job.user_id, content)
        except Exception as e:
            logger.warning("Note for job %s not stored: %s", job.job_id, e)

    async def _upload_optional(self, path: str, data: bytes, content_type: str) -> Optional[str]:
        try:
            return await self._files.upload(self._settings.generated_bucket, path, data, content_type)
        except StorageError as e:
            logger.warning("Optional output %s not stored: %s", path, e)
            return None

    async def _render(self, job: JobRecord, mode: ProcessingMode, content: str, subject: Optional[str]):
        if mode is ProcessingMode.STORE:
            call = self._renderer.render_document_pdf(content, job.lecture_title)
        else:
            call = self._renderer.render_notes_pdf(content, job.lecture_title, subject)
        result = await with_deadline(call, self._settings.rendering_timeout_seconds, "PDF rendering service")
        if not result.ok:
            raise await self._stage_error(
                job, ErrorStep.PDF_GENERATION, ErrorCode.PDF_GENERATION_ERROR,
                "Failed to generate PDF", result.message,
                job_message=f"PDF generation failed: {result.message}",
            )
        return result.data

    async def _store_pdf(self, job: JobRecord, path: str, data: bytes) -> str:
        """Upload the PDF and return a long-lived download URL."""
        try:
            await self._files.upload(self._settings.generated_bucket, path, data, "application/pdf")
            return await self._files.sign(
                self._settings.generated_bucket, path, self._settings.signed_url_long_seconds
            )
        except StorageError as e:
            raise await self._stage_error(
                job, ErrorStep.PDF_STORAGE, ErrorCode.STORAGE_ERROR,
                "Failed to store generated PDF", str(e),
            )

    async def _complete(self, job: JobRecord, fields: Dict[str, Any]) -> JobRecord:
        try:
            return await self._store.update(job.job_id, job.user_id, {
                **fields,
                "status": JobStatus.COMPLETED,
                "processing_completed_at": utcnow(),
            })
        except Exception as e:
            raise await self._stage_error(
                job, ErrorStep.PROCESSING_FAILED, ErrorCode.DATABASE_ERROR,
                "Failed to update job status", str(e),
            )

    async def _after_success(self, job: JobRecord, usage: Optional[Tuple[float, float]] = None) -> None:
        try:
            await self._notifier.lecture_completed(job.user_id, job.job_id, job.lecture_title)
        except Exception as e:
            logger.warning("Completion notification for job %s not sent: %s", job.job_id, e)
        if usage is not None:
            duration, size = usage
            try:
                await self._limiter.track_usage(job.job_id, job.user_id, duration, size)
            except Exception as e:
                logger.warning("Usage for job %s not tracked: %s", job.job_id, e)

    async def _guarded(self, job: JobRecord, run):
        """Run the post-creation stages; unexpected errors fail the job generically."""
        try:
            return await run
        except PipelineError:
            raise
        except Exception as e:
            logger.exception("Unexpected error processing job %s", job.job_id)
            await self._fail(job, ErrorStep.PROCESSING_FAILED, f"AI processing failed: {e}")
            raise PipelineError(
                500, ErrorCode.EXTERNAL_API_ERROR, "AI processing failed", details=str(e)
            )

    # ------------------------------------------------------------------
    # POST /generate
    # ------------------------------------------------------------------

    async def generate(self, user_id: str, request: GenerateRequest, base_url: str) -> Dict[str, Any]:
        """Process an audio and/or document upload into notes and a PDF."""
        self._require_environment()
        self._require_safe_path(request.audio_file_path, "audioFilePath", user_id)
        self._require_safe_path(request.pdf_file_path, "pdfFilePath", user_id)

        size_mb = request.file_size_mb or self._settings.default_estimate_file_size_mb
        duration = None
        if request.audio_file_path:
            decision = await self._check_usage(user_id, size_mb, request.client_duration_minutes)
            duration = decision.estimated_duration_minutes
        elif not self._settings.document_uploads_unlimited:
            await self._check_usage(user_id, size_mb, None)

        job = await self._create_job(
            user_id,
            lecture_title=request.lecture_title,
            audio_file_path=request.audio_file_path,
            pdf_file_path=request.pdf_file_path,
            course_subject=request.course_subject,
            study_node_id=request.study_node_id,
        )
        job, result = await self._guarded(job, self._run_generate(job, request, base_url))

        if request.audio_file_path:
            await self._after_success(job, (duration, size_mb))
        else:
            await self._after_success(job)
        return result

    async def _run_generate(
        self, job: JobRecord, request: GenerateRequest, base_url: str
    ) -> Tuple[JobRecord, Dict[str, Any]]:
        s = self._settings
        audio_url = None
        document_url = None
        if request.audio_file_path:
            audio_url = await self._sign_input(job, request.audio_file_path, s.signed_url_medium_seconds)
        if request.pdf_file_path:
            document_url = await self._sign_input(job, request.pdf_file_path, s.signed_url_medium_seconds)

        transcript = None
        language = None
        document_text = None
        metadata: Dict[str, Any] = {}

        if audio_url:
            transcription = await with_deadline(
                self._transcriber.transcribe_with_fallback(audio_url),
                s.transcription_timeout_seconds,
                "Transcription service",
            )
            if not transcription.ok:
                raise await self._stage_error(
                    job, ErrorStep.TRANSCRIPTION, ErrorCode.TRANSCRIPTION_ERROR,
                    "Failed to transcribe audio", transcription.message,
                    job_message=f"Transcription failed: {transcription.message}",
                )
            transcript = transcription.text
            language = transcription.language

            if document_url:
                supplementary = await self._extract_document(request.pdf_file_path, document_url)
                if supplementary.ok:
                    document_text = supplementary.text
                    metadata["extractionMethod"] = supplementary.method
                else:
                    logger.warning(
                        "Supplementary extraction for job %s skipped: %s", job.job_id, supplementary.message
                    )
        else:
            extraction = await self._extract_document(request.pdf_file_path, document_url)
            if not extraction.ok:
                raise await self._stage_error(
                    job, ErrorStep.DOCUMENT_EXTRACTION, ErrorCode.PDF_EXTRACTION_ERROR,
                    "Failed to extract text from document", extraction.message,
                    job_message=f"Document extraction failed: {extraction.message}",
                )
            document_text = extraction.text
            metadata["extractionMethod"] = extraction.method

        title = clean_title(request.lecture_title, s.default_notes_title)
        update: Dict[str, Any] = {"lecture_title": title}
        if metadata:
            update["metadata"] = metadata
        job = await self._store.update(job.job_id, job.user_id, update)

        mode = request.processing_mode
        if mode is ProcessingMode.STORE:
            call = self._notes.apply_light_formatting(
                store_mode_content(title, transcript, document_text), title, "verbatim"
            )
        else:
            call = self._notes.generate_notes(
                title,
                transcript=transcript,
                document_text=document_text,
                subject=request.course_subject,
                language=language,
                format_mode=CORNELL_NOTES,
            )
        notes = await with_deadline(call, s.generation_timeout_seconds, "Note generation service")
        if not notes.ok:
            raise await self._stage_error(
                job, ErrorStep.NOTES_GENERATION, ErrorCode.NOTES_GENERATION_ERROR,
                "Failed to generate Mindsy Notes", notes.message,
                job_message=f"Notes generation failed: {notes.message}",
            )
        content = notes.content
        await self._persist_note(job, content)

        base_name = safe_filename(title)
        txt_path = None
        if transcript and transcript.strip():
            txt_path = await self._upload_optional(
                secure_file_path(job.user_id, f"{base_name}_transcription.txt", "transcriptions"),
                transcript.encode("utf-8"),
                "text/plain",
            )
        md_path = await self._upload_optional(
            secure_file_path(job.user_id, f"{base_name}_notes.md", "summaries"),
            content.encode("utf-8"),
            "text/markdown",
        )

        pdf_bytes = await self._render(job, mode, content, request.course_subject)
        pdf_path = secure_file_path(job.user_id, f"{slugify(title)}.pdf", "cornell-notes")
        download_url = await self._store_pdf(job, pdf_path, pdf_bytes)

        job = await self._complete(job, {
            "output_pdf_path": pdf_path,
            "txt_file_path": txt_path,
            "md_file_path": md_path,
        })
        logger.info("Job %s completed (%s mode)", job.job_id, mode.value)

        return job, {
            "success": True,
            "message": "Processing completed successfully",
            "jobId": job.job_id,
            "downloadUrl": download_url,
            "apiDownloadUrl": f"{base_url.rstrip('/')}/api/download/{job.job_id}",
            "processingStatus": {
                "transcription": COMPLETED if transcript else NOT_REQUIRED,
                "pdfExtraction": COMPLETED if document_text else NOT_REQUIRED,
                "notesGeneration": COMPLETED,
                "pdfGeneration": COMPLETED,
            },
        }

    # ------------------------------------------------------------------
    # POST /process-document
    # ------------------------------------------------------------------

    async def process_document(self, user_id: str, request: ProcessDocumentRequest) -> Dict[str, Any]:
        """Turn a single uploaded document or image into notes (enhance) or a clean copy (store)."""
        self._require_environment()
        self._require_safe_path(request.document_file_path, "documentFilePath", user_id)
        if not self._settings.document_uploads_unlimited:
            size_mb = request.file_size_mb or self._settings.default_estimate_file_size_mb
            await self._check_usage(user_id, size_mb, None)

        job = await self._create_job(
            user_id,
            lecture_title=request.document_title,
            pdf_file_path=request.document_file_path,
            course_subject=request.course_subject,
        )
        job, result = await self._guarded(job, self._run_document(job, request))
        await self._after_success(job)
        return result

    async def _run_document(
        self, job: JobRecord, request: ProcessDocumentRequest
    ) -> Tuple[JobRecord, Dict[str, Any]]:
        s = self._settings
        mode = request.processing_mode
        source_path = request.document_file_path
        title = clean_title(request.document_title, s.default_notes_title)
        slug = slugify(title)
        stamp = int(time.time() * 1000)

        document_url = await self._sign_input(job, source_path, s.signed_url_short_seconds)

        original_path = None
        if mode is ProcessingMode.STORE:
            candidate = secure_file_path(
                job.user_id, f"{slug}_original_{stamp}{file_extension(source_path)}", "summaries"
            )
            try:
                original_path = await self._files.copy(
                    s.uploads_bucket, source_path, s.generated_bucket, candidate,
                    content_type_for(source_path),
                )
            except StorageError as e:
                logger.warning("Original document for job %s not copied: %s", job.job_id, e)

        extraction = await self._extract_document(source_path, document_url)
        if not extraction.ok:
            raise await self._stage_error(
                job, ErrorStep.DOCUMENT_EXTRACTION, ErrorCode.PDF_EXTRACTION_ERROR,
                "Failed to extract text from document", extraction.message,
                job_message=f"Document extraction failed: {extraction.message}",
            )

        metadata: Dict[str, Any] = {"extractionMethod": extraction.method, "processingMode": mode.value}
        if original_path:
            metadata["originalDocumentPath"] = original_path
        job = await self._store.update(job.job_id, job.user_id, {"lecture_title": title, "metadata": metadata})

        notes = await with_deadline(
            self._notes.generate_notes(
                title,
                document_text=extraction.text,
                subject=request.course_subject,
                format_mode=CLEAN_DOCUMENT if mode is ProcessingMode.STORE else CORNELL_NOTES,
            ),
            s.generation_timeout_seconds,
            "Note generation service",
        )
        if not notes.ok:
            raise await self._stage_error(
                job, ErrorStep.NOTES_GENERATION, ErrorCode.NOTES_GENERATION_ERROR,
                "Failed to generate Mindsy Notes", notes.message,
                job_message=f"Notes generation failed: {notes.message}",
            )
        content = notes.content
        await self._persist_note(job, content)

        pdf_bytes = await self._render(job, mode, content, request.course_subject)
        pdf_path = secure_file_path(job.user_id, f"{slug}_{stamp}.pdf", "summaries")
        pdf_url = await self._store_pdf(job, pdf_path, pdf_bytes)

        md_path = await self._upload_optional(
            secure_file_path(job.user_id, f"{slug}_{stamp}.md", "summaries"),
            content.encode("utf-8"),
            "text/markdown",
        )
        markdown_url = await self._sign_optional(s.generated_bucket, md_path)
        original_url = await self._sign_optional(s.generated_bucket, original_path)

        job = await self._complete(job, {"output_pdf_path": pdf_path, "md_file_path": md_path})
        logger.info("Document job %s completed (%s mode)", job.job_id, mode.value)

        formats: Dict[str, str] = {"pdf": pdf_url}
        if markdown_url:
            formats["markdown"] = markdown_url
        if original_url:
            formats["originalDocument"] = original_url
        return job, {
            "success": True,
            "message": f"Document processed successfully in {mode.value} mode",
            "jobId": job.job_id,
            "downloadUrl": pdf_url,
            "formats": formats,
        }

    async def _sign_optional(self, bucket: str, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        try:
            return await self._files.sign(bucket, path, self._settings.signed_url_long_seconds)
        except StorageError as e:
            logger.warning("Could not sign %s: %s", path, e)
            return None
