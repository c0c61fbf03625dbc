"""Processing endpoints: lecture notes generation and document processing."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from app.auth.supabase_auth import verify_jwt
from app.pipeline.errors import ErrorCode, PipelineError, invalid_request
from app.pipeline.requests import GenerateRequest, ProcessDocumentRequest, first_error_message

router = APIRouter()

# Set by main.py during lifespan
_orchestrator = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


def _require_orchestrator():
    if _orchestrator is None:
        raise PipelineError(500, ErrorCode.ENVIRONMENT_ERROR, "Processing pipeline not initialized")
    return _orchestrator


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise invalid_request("Invalid JSON in request body")
    if not isinstance(body, dict):
        raise invalid_request("Request body must be a JSON object")
    return body


# ---------------------------------------------------------------------------
# POST /generate
# ---------------------------------------------------------------------------

@router.post("/generate")
async def generate(request: Request, user_id: str = Depends(verify_jwt)):
    """Transcribe and/or extract the uploaded files and produce notes plus a PDF.

    Returns:
        {success, message, jobId, downloadUrl, apiDownloadUrl, processingStatus}
    """
    payload = await _json_body(request)
    try:
        body = GenerateRequest.model_validate(payload)
    except ValidationError as e:
        raise invalid_request(first_error_message(e))

    orchestrator = _require_orchestrator()
    return await orchestrator.generate(user_id, body, base_url=str(request.base_url))


# ---------------------------------------------------------------------------
# POST /process-document
# ---------------------------------------------------------------------------

@router.post("/process-document")
async def process_document(request: Request, user_id: str = Depends(verify_jwt)):
    """Process a single document or image in ``enhance`` or ``store`` mode.

    Returns:
        {success, message, jobId, downloadUrl, formats}
    """
    payload = await _json_body(request)
    try:
        body = ProcessDocumentRequest.model_validate(payload)
    except ValidationError as e:
        raise invalid_request(first_error_message(e))

    orchestrator = _require_orchestrator()
    return await orchestrator.process_document(user_id, body)
