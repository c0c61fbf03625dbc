"""Download a completed job's PDF or companion files."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from app.auth.supabase_auth import verify_jwt
from app.pipeline.errors import ErrorCode, PipelineError

router = APIRouter()

# Set by main.py during lifespan
_downloads = None


def set_download_service(service):
    global _downloads
    _downloads = service


@router.get("/download/{job_id}")
async def download(
    job_id: str,
    format: str = Query("pdf"),
    user_id: str = Depends(verify_jwt),
):
    """Stream the requested file as an attachment."""
    if _downloads is None:
        raise PipelineError(503, ErrorCode.ENVIRONMENT_ERROR, "Download service not initialized")

    payload = await _downloads.fetch(user_id, job_id, format)
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{payload.filename}"',
            "Cache-Control": "private, no-store",
        },
    )
