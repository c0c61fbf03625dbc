"""Mindsy processing service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.adapters.document_text import TikaExtractor
from app.adapters.image_ocr import VisionOcr
from app.adapters.note_generation import NoteGenerator
from app.adapters.rendering import GotenbergRenderer
from app.adapters.transcription import RunPodTranscriber
from app.api.routes import download as download_api
from app.api.routes import health as health_api
from app.api.routes import processing as processing_api
from app.api.routes.health import router as health_root_router
from app.api.routes.router import api_router
from app.auth import supabase_auth
from app.config import Settings, settings
from app.db.supabase_client import create_anon_client, create_service_client
from app.jobs.store import JobRecordStore
from app.logging_config import configure_logging
from app.notifications.service import NotificationService
from app.pipeline.downloads import DownloadService
from app.pipeline.errors import register_error_handlers
from app.pipeline.orchestrator import PipelineOrchestrator
from app.storage.files import SignedUrlProvider
from app.usage.limiter import UsageLimiter

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def build_services(config: Settings, client):
    """Wire every collaborator from one Settings instance and one Supabase client.

    Returns:
        (orchestrator, download_service)
    """
    store = JobRecordStore(client, config)
    files = SignedUrlProvider(client, config)
    orchestrator = PipelineOrchestrator(
        settings=config,
        store=store,
        limiter=UsageLimiter(client, store, config),
        files=files,
        transcriber=RunPodTranscriber(config),
        document_extractor=TikaExtractor(config),
        image_ocr=VisionOcr(config),
        note_generator=NoteGenerator(config),
        renderer=GotenbergRenderer(config),
        notifier=NotificationService(client, config),
    )
    return orchestrator, DownloadService(store, files, config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging(settings.log_level)
    logger.info("Starting Mindsy processing service on port %d", settings.app_port)
    logger.info("Document-only uploads unlimited: %s", settings.document_uploads_unlimited)

    health_api.set_settings(settings, VERSION)

    missing = settings.missing_pipeline_settings()
    if missing:
        logger.warning("Missing settings, processing requests will fail: %s", ", ".join(missing))
    if settings.supabase_url and settings.supabase_service_role_key:
        client = create_service_client(settings)
        orchestrator, downloads = build_services(settings, client)
        processing_api.set_orchestrator(orchestrator)
        download_api.set_download_service(downloads)
        logger.info("Processing pipeline ready")

    if settings.supabase_url and settings.supabase_anon_key:
        supabase_auth.set_auth_client(create_anon_client(settings), timeout=settings.database_timeout_seconds)
    else:
        logger.warning("SUPABASE_ANON_KEY not set; all authenticated requests will be rejected")

    yield

    logger.info("Shutting down Mindsy processing service")


app = FastAPI(
    title="Mindsy Processing Service",
    description="Turns lecture audio and documents into structured study notes",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(api_router)  # All /api/* endpoints
