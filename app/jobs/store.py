"""Job Record Store over the ``jobs`` and ``notes`` tables.

Every status write is conditional on the status the caller expects the row
to have, so a job can only move forward (processing -> completed/failed)
and a terminal row is never resurrected.
"""

import asyncio
import logging
import uuid
import weakref
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from app.config import Settings
from app.db.supabase_client import run_blocking
from app.jobs.models import ErrorStep, JobRecord, JobStatus, NoteRecord, utcnow

logger = logging.getLogger(__name__)

JOBS_TABLE = "jobs"
NOTES_TABLE = "notes"


class JobStateConflict(Exception):
    """The job row was not in the expected status when a write was attempted."""

    def __init__(self, job_id: str, expected: JobStatus):
        super().__init__(f"Job {job_id} is no longer {expected.value}")
        self.job_id = job_id
        self.expected = expected


def _to_row(fields: Dict[str, Any]) -> Dict[str, Any]:
    row = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        row[key] = value
    return row


class JobRecordStore:
    """Owner-scoped CRUD for job rows plus note inserts."""

    def __init__(self, client, settings: Settings):
        self._client = client
        self._timeout = settings.database_timeout_seconds
        # An entry lives only while some coroutine holds or waits on the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    async def create(
        self,
        user_id: str,
        lecture_title: str,
        audio_file_path: Optional[str] = None,
        pdf_file_path: Optional[str] = None,
        course_subject: Optional[str] = None,
        study_node_id: Optional[str] = None,
    ) -> JobRecord:
        """Insert a new job in ``processing`` state.

        Raises:
            ValueError: if neither an audio nor a document path is given.
        """
        if not audio_file_path and not pdf_file_path:
            raise ValueError("A job needs an audio or a document path")

        now = utcnow()
        row = _to_row({
            "job_id": str(uuid.uuid4()),
            "user_id": user_id,
            "lecture_title": lecture_title,
            "course_subject": course_subject,
            "audio_file_path": audio_file_path,
            "pdf_file_path": pdf_file_path,
            "study_node_id": study_node_id,
            "status": JobStatus.PROCESSING,
            "processing_started_at": now,
            "created_at": now,
            "updated_at": now,
        })

        def _insert():
            return self._client.table(JOBS_TABLE).insert(row).execute()

        response = await run_blocking(_insert, timeout=self._timeout)
        created = response.data[0] if response.data else row
        logger.info("Created job %s for user %s", created["job_id"], user_id)
        return JobRecord(**created)

    async def get(self, job_id: str, user_id: str) -> Optional[JobRecord]:
        def _select():
            return (
                self._client.table(JOBS_TABLE)
                .select("*")
                .eq("job_id", job_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )

        response = await run_blocking(_select, timeout=self._timeout)
        if not response.data:
            return None
        return JobRecord(**response.data[0])

    async def _write(self, job_id: str, user_id: str, payload: Dict[str, Any], expected_status: JobStatus):
        def _update():
            return (
                self._client.table(JOBS_TABLE)
                .update(payload)
                .eq("job_id", job_id)
                .eq("user_id", user_id)
                .eq("status", expected_status.value)
                .execute()
            )

        async with self._lock_for(job_id):
            return await run_blocking(_update, timeout=self._timeout)

    async def update(
        self,
        job_id: str,
        user_id: str,
        fields: Dict[str, Any],
        expected_status: JobStatus = JobStatus.PROCESSING,
    ) -> JobRecord:
        """Apply ``fields`` only if the owner's row still has ``expected_status``.

        Raises:
            JobStateConflict: if no row matched (wrong status or not the owner).
        """
        payload = _to_row({**fields, "updated_at": utcnow()})
        response = await self._write(job_id, user_id, payload, expected_status)
        if not response.data:
            raise JobStateConflict(job_id, expected_status)

        new_status = fields.get("status")
        if new_status is not None and JobStatus(new_status).is_terminal:
            logger.info("Job %s -> %s", job_id, JobStatus(new_status).value)
        return JobRecord(**response.data[0])

    async def mark_failed(self, job_id: str, user_id: str, step: ErrorStep, message: str) -> bool:
        """Move a processing job to ``failed``. Returns False if it was already terminal."""
        try:
            await self.update(job_id, user_id, {
                "status": JobStatus.FAILED,
                "error_step": step,
                "error_message": message,
                "processing_completed_at": utcnow(),
            })
        except JobStateConflict:
            logger.warning("Job %s already terminal; %s failure not recorded", job_id, step.value)
            return False
        return True

    async def insert_note(self, job_id: str, user_id: str, content: str) -> NoteRecord:
        note = NoteRecord(job_id=job_id, user_id=user_id, content=content)
        row = _to_row(note.model_dump(exclude_none=True))

        def _insert():
            return self._client.table(NOTES_TABLE).insert(row).execute()

        response = await run_blocking(_insert, timeout=self._timeout)
        if response.data:
            return NoteRecord(**response.data[0])
        return note

    async def get_latest_note(self, job_id: str, user_id: str) -> Optional[NoteRecord]:
        def _select():
            return (
                self._client.table(NOTES_TABLE)
                .select("*")
                .eq("job_id", job_id)
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )

        response = await run_blocking(_select, timeout=self._timeout)
        if not response.data:
            return None
        return NoteRecord(**response.data[0])
