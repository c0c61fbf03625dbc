"""Aggregate all API routers."""

from fastapi import APIRouter

from app.api.routes.download import router as download_router
from app.api.routes.health import router as health_router
from app.api.routes.processing import router as processing_router

api_router = APIRouter(prefix="/api")
api_router.include_router(health_router, tags=["health"])
api_router.include_router(processing_router, tags=["processing"])
api_router.include_router(download_router, tags=["download"])
