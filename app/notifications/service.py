"""In-app notifications for finished or failed processing jobs."""

import logging

from app.config import Settings
from app.db.supabase_client import run_blocking

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, client, settings: Settings):
        self._client = client
        self._timeout = settings.database_timeout_seconds

    async def _insert(self, row: dict) -> None:
        def _do():
            return self._client.table("notifications").insert(row).execute()

        await run_blocking(_do, timeout=self._timeout)

    async def lecture_completed(self, user_id: str, job_id: str, title: str) -> None:
        await self._insert({
            "user_id": user_id,
            "title": "Lecture Processing Complete",
            "message": f'Your lecture "{title}" has been successfully processed and is ready to view.',
            "type": "success",
            "category": "lecture",
            "related_id": job_id,
            "related_type": "job",
            "action_url": f"/dashboard/notes?note={job_id}",
        })

    async def lecture_failed(self, user_id: str, job_id: str, title: str, error: str) -> None:
        await self._insert({
            "user_id": user_id,
            "title": "Lecture Processing Failed",
            "message": f'Failed to process lecture "{title}". Error: {error}',
            "type": "error",
            "category": "lecture",
            "related_id": job_id,
            "related_type": "job",
            "action_url": "/dashboard/lectures",
        })
