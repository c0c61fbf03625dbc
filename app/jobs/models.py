"""Job and note records persisted by the processing pipeline."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


class ErrorStep(str, Enum):
    """Stage tag stored on a failed job and echoed to the client."""
    TRANSCRIPTION = "transcription"
    DOCUMENT_EXTRACTION = "document_extraction"
    NOTES_GENERATION = "notes_generation"
    PDF_GENERATION = "pdf_generation"
    PDF_STORAGE = "pdf_storage"
    PROCESSING_FAILED = "processing_failed"


class ProcessingMode(str, Enum):
    ENHANCE = "enhance"
    STORE = "store"


class JobRecord(BaseModel):
    """One row of the ``jobs`` table."""
    job_id: str
    user_id: str
    lecture_title: str
    course_subject: Optional[str] = None
    status: JobStatus = JobStatus.PROCESSING
    audio_file_path: Optional[str] = None
    pdf_file_path: Optional[str] = None
    output_pdf_path: Optional[str] = None
    txt_file_path: Optional[str] = None
    md_file_path: Optional[str] = None
    error_message: Optional[str] = None
    error_step: Optional[ErrorStep] = None
    study_node_id: Optional[str] = None
    file_size_mb: Optional[float] = None
    duration_minutes: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NoteRecord(BaseModel):
    """One row of the ``notes`` table."""
    id: Optional[str] = None
    job_id: str
    user_id: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
