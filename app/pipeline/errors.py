"""Client-facing error taxonomy and the JSON envelope it is rendered in."""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_REQUEST = "INVALID_REQUEST"
    PROCESSING_FAILED = "PROCESSING_FAILED"
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    TRANSCRIPTION_ERROR = "TRANSCRIPTION_ERROR"
    PDF_EXTRACTION_ERROR = "PDF_EXTRACTION_ERROR"
    NOTES_GENERATION_ERROR = "NOTES_GENERATION_ERROR"
    PDF_GENERATION_ERROR = "PDF_GENERATION_ERROR"
    ENVIRONMENT_ERROR = "ENVIRONMENT_ERROR"


class PipelineError(Exception):
    """A failure that maps directly onto an HTTP error response."""

    def __init__(
        self,
        status_code: int,
        error_code: ErrorCode,
        message: str,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "errorCode": self.error_code.value,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


def invalid_request(message: str) -> PipelineError:
    return PipelineError(400, ErrorCode.INVALID_REQUEST, message)


def register_error_handlers(app: FastAPI) -> None:
    """Render PipelineError and unexpected exceptions in the shared envelope."""

    @app.exception_handler(PipelineError)
    async def handle_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s (%s)",
                request.method, request.url.path, exc.message, exc.error_code.value,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = PipelineError(
            500, ErrorCode.PROCESSING_FAILED, "Internal server error", details=str(exc)
        )
        return JSONResponse(status_code=500, content=error.to_body())
