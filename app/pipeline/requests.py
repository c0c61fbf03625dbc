"""Request bodies for the processing endpoints."""

import math
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.jobs.models import ProcessingMode

MAX_TITLE_LENGTH = 200
MAX_SUBJECT_LENGTH = 100

_PATH_PATTERN = re.compile(r"^[a-zA-Z0-9_\-/.]+$")


def first_error_message(exc: ValidationError) -> str:
    """Human-readable message for the first validation error."""
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    error = errors[0]
    cause = (error.get("ctx") or {}).get("error")
    if cause:
        return str(cause)
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else error.get("msg", "Invalid request body")


def _storage_path(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    value = value.strip()
    if not value:
        return None
    if ".." in value or not _PATH_PATTERN.match(value):
        raise ValueError(f"Invalid {name}")
    return value


def _positive_number(value: Any) -> Optional[float]:
    """Keep a client hint only when it parses to a finite positive number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number <= 0:
        return None
    return number


def _title(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    value = value.strip()
    if len(value) > MAX_TITLE_LENGTH:
        raise ValueError(f"{name} must be less than {MAX_TITLE_LENGTH} characters")
    return value or None


def _subject(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("courseSubject must be a string")
    value = value.strip()
    if len(value) > MAX_SUBJECT_LENGTH:
        raise ValueError(f"courseSubject must be less than {MAX_SUBJECT_LENGTH} characters")
    return value or None


def _mode(value: Any) -> str:
    if value is None or value == "":
        return ProcessingMode.ENHANCE.value
    if value not in (ProcessingMode.ENHANCE.value, ProcessingMode.STORE.value):
        raise ValueError("processingMode must be either 'enhance' or 'store'")
    return value


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    audio_file_path: Optional[str] = Field(None, alias="audioFilePath")
    pdf_file_path: Optional[str] = Field(None, alias="pdfFilePath")
    lecture_title: Optional[str] = Field(None, alias="lectureTitle")
    course_subject: Optional[str] = Field(None, alias="courseSubject")
    file_size_mb: Optional[float] = Field(None, alias="fileSizeMB")
    client_duration_minutes: Optional[float] = Field(None, alias="clientDurationMinutes")
    processing_mode: ProcessingMode = Field(ProcessingMode.ENHANCE, alias="processingMode")
    study_node_id: Optional[str] = Field(None, alias="studyNodeId")

    @field_validator("audio_file_path", mode="before")
    @classmethod
    def _audio_path(cls, value):
        return _storage_path(value, "audioFilePath")

    @field_validator("pdf_file_path", mode="before")
    @classmethod
    def _pdf_path(cls, value):
        return _storage_path(value, "pdfFilePath")

    @field_validator("lecture_title", mode="before")
    @classmethod
    def _lecture_title(cls, value):
        return _title(value, "lectureTitle")

    @field_validator("course_subject", mode="before")
    @classmethod
    def _course_subject(cls, value):
        return _subject(value)

    @field_validator("file_size_mb", "client_duration_minutes", mode="before")
    @classmethod
    def _hints(cls, value):
        return _positive_number(value)

    @field_validator("processing_mode", mode="before")
    @classmethod
    def _processing_mode(cls, value):
        return _mode(value)

    @field_validator("study_node_id", mode="before")
    @classmethod
    def _study_node(cls, value):
        if value is None or value == "":
            return None
        return str(value)

    @model_validator(mode="after")
    def _required(self):
        if not self.audio_file_path and not self.pdf_file_path:
            raise ValueError("Either audioFilePath or pdfFilePath is required")
        if not self.lecture_title:
            raise ValueError("lectureTitle is required")
        return self


class ProcessDocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    document_file_path: Optional[str] = Field(None, alias="documentFilePath")
    document_title: Optional[str] = Field(None, alias="documentTitle")
    processing_mode: Optional[ProcessingMode] = Field(None, alias="processingMode")
    course_subject: Optional[str] = Field(None, alias="courseSubject")
    file_size_mb: Optional[float] = Field(None, alias="fileSizeMB")

    @field_validator("document_file_path", mode="before")
    @classmethod
    def _document_path(cls, value):
        return _storage_path(value, "documentFilePath")

    @field_validator("document_title", mode="before")
    @classmethod
    def _document_title(cls, value):
        return _title(value, "documentTitle")

    @field_validator("course_subject", mode="before")
    @classmethod
    def _course_subject(cls, value):
        return _subject(value)

    @field_validator("file_size_mb", mode="before")
    @classmethod
    def _size(cls, value):
        return _positive_number(value)

    @field_validator("processing_mode", mode="before")
    @classmethod
    def _processing_mode(cls, value):
        if value is None or value == "":
            return None
        return _mode(value)

    @model_validator(mode="after")
    def _required(self):
        if not self.document_file_path or not self.document_title or self.processing_mode is None:
            raise ValueError(
                "Missing required fields: documentFilePath, documentTitle, processingMode"
            )
        return self
