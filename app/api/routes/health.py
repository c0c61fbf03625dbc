"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

router = APIRouter()

# Set by main.py during lifespan
_settings = None
_version = "0.0.0"


def set_settings(settings, version: str):
    global _settings, _version
    _settings = settings
    _version = version


@router.get("/health")
async def health_check():
    """Service health and which external services are configured."""
    if _settings is None:
        return {"status": "starting", "version": _version}

    services = {
        "supabase": bool(_settings.supabase_url and _settings.supabase_service_role_key),
        "runpod": bool(_settings.runpod_api_key),
        "tika": bool(_settings.tika_url),
        "vision": bool(_settings.google_vision_api_key),
        "openai": bool(_settings.openai_api_key),
        "gotenberg": bool(_settings.gotenberg_url),
    }
    missing = _settings.missing_pipeline_settings()

    return {
        "status": "healthy" if not missing else "degraded",
        "version": _version,
        "services": services,
        "missing_settings": missing,
        "document_uploads_unlimited": _settings.document_uploads_unlimited,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
