import uuid
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.adapters.base import ExtractedText, GeneratedNotes, RenderedPdf, Transcript
from app.api.routes import download as download_api
from app.api.routes import processing as processing_api
from app.auth.supabase_auth import verify_jwt
from app.config import Settings
from app.jobs.store import JobRecordStore
from app.main import app
from app.notifications.service import NotificationService
from app.pipeline.downloads import DownloadService
from app.pipeline.orchestrator import PipelineOrchestrator
from app.storage.files import SignedUrlProvider
from app.usage.limiter import UsageLimiter

USER_ID = "user-1"
PDF_BYTES = b"%PDF-1.7 fake notes"


# ---------------------------------------------------------------------------
# In-memory stand-in for the supabase-py client
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, db, table):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload = None
        self._filters = []
        self._order = None
        self._limit = None

    def select(self, *columns):
        self._op = "select"
        return self

    def insert(self, row):
        self._op = "insert"
        self._payload = row
        return self

    def update(self, values):
        self._op = "update"
        self._payload = values
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def gte(self, column, value):
        self._filters.append(
            lambda row: row.get(column) is not None and str(row.get(column)) >= str(value)
        )
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self):
        if self._table in self._db.failing_tables:
            raise RuntimeError(f"{self._table} unavailable")
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "insert":
            row = dict(self._payload)
            row.setdefault("id", str(uuid.uuid4()))
            rows.append(row)
            return FakeResponse([dict(row)])

        matched = [row for row in rows if all(check(row) for check in self._filters)]
        if self._op == "update":
            for row in matched:
                row.update(self._payload)
            return FakeResponse([dict(row) for row in matched])

        if self._order:
            column, desc = self._order
            matched.sort(key=lambda row: str(row.get(column) or ""), reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResponse([dict(row) for row in matched])


class FakeBucket:
    def __init__(self, storage, name):
        self._storage = storage
        self._name = name

    def create_signed_url(self, path, expires_in):
        if self._storage.fail_sign:
            raise RuntimeError("signing unavailable")
        self._storage.signed.append((self._name, path, expires_in))
        return {"signedURL": f"https://storage.test/{self._name}/{path}?expires={expires_in}"}

    def upload(self, path, file, file_options=None):
        if any(marker in path for marker in self._storage.fail_upload):
            raise RuntimeError("upload rejected")
        self._storage.objects[(self._name, path)] = bytes(file)
        return {"path": path}

    def download(self, path):
        key = (self._name, path)
        if key not in self._storage.objects:
            raise RuntimeError("Object not found")
        return self._storage.objects[key]


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.signed = []
        self.fail_sign = False
        self.fail_upload = []

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.failing_tables = set()
        self.storage = FakeStorage()

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.get(name, [])


# ---------------------------------------------------------------------------
# Adapter stubs
# ---------------------------------------------------------------------------

class StubTranscriber:
    def __init__(self, result=None):
        self.result = result or Transcript(
            text="Cells are the basic unit of life. Mitochondria produce energy.", language="en"
        )
        self.calls = []

    async def transcribe_with_fallback(self, audio_url):
        self.calls.append(audio_url)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class StubExtractor:
    def __init__(self, method, text="Extracted document text about photosynthesis."):
        self.result = ExtractedText(text=text, method=method)
        self.calls = []

    async def extract(self, url):
        self.calls.append(url)
        return self.result


class StubNotes:
    def __init__(self):
        self.result = GeneratedNotes(content="## Table of Contents\n*   Cells\n\n## Mindsy Notes\n")
        self.generate_calls = []
        self.format_calls = []

    async def generate_notes(self, title, transcript=None, document_text=None, subject=None,
                             language=None, format_mode="cornell-notes"):
        self.generate_calls.append({
            "title": title,
            "transcript": transcript,
            "document_text": document_text,
            "subject": subject,
            "format_mode": format_mode,
        })
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    async def apply_light_formatting(self, content, title=None, preservation="light"):
        self.format_calls.append({"content": content, "title": title, "preservation": preservation})
        if isinstance(self.result, Exception):
            raise self.result
        return GeneratedNotes(content=content)


class StubRenderer:
    def __init__(self):
        self.result = RenderedPdf(data=PDF_BYTES)
        self.notes_calls = []
        self.document_calls = []

    async def render_notes_pdf(self, markdown, title, subject=None):
        self.notes_calls.append(title)
        return self.result

    async def render_document_pdf(self, markdown, title):
        self.document_calls.append(title)
        return self.result


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def make_settings(**overrides) -> Settings:
    values = dict(
        supabase_url="https://project.supabase.test",
        supabase_service_role_key="service-key",
        supabase_anon_key="anon-key",
        runpod_api_key="rp-key",
        runpod_endpoint_url="https://runpod.test/v2/endpoint",
        runpod_poll_interval_seconds=0,
        tika_url="https://tika.test",
        google_vision_api_key="vision-key",
        openai_api_key="sk-test",
        gotenberg_url="https://gotenberg.test",
        storage_timeout_seconds=5,
        transcription_timeout_seconds=5,
        extraction_timeout_seconds=5,
        generation_timeout_seconds=5,
        rendering_timeout_seconds=5,
        database_timeout_seconds=5,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def pipeline(settings, db):
    store = JobRecordStore(db, settings)
    files = SignedUrlProvider(db, settings)
    stubs = SimpleNamespace(
        transcriber=StubTranscriber(),
        tika=StubExtractor("tika"),
        vision=StubExtractor("google_vision", text="Handwritten notes on the Krebs cycle."),
        notes=StubNotes(),
        renderer=StubRenderer(),
    )
    orchestrator = PipelineOrchestrator(
        settings=settings,
        store=store,
        limiter=UsageLimiter(db, store, settings),
        files=files,
        transcriber=stubs.transcriber,
        document_extractor=stubs.tika,
        image_ocr=stubs.vision,
        note_generator=stubs.notes,
        renderer=stubs.renderer,
        notifier=NotificationService(db, settings),
    )
    return SimpleNamespace(
        settings=settings,
        db=db,
        store=store,
        files=files,
        stubs=stubs,
        orchestrator=orchestrator,
        downloads=DownloadService(store, files, settings),
    )


@pytest_asyncio.fixture
async def client(pipeline):
    processing_api.set_orchestrator(pipeline.orchestrator)
    download_api.set_download_service(pipeline.downloads)
    app.dependency_overrides[verify_jwt] = lambda: USER_ID
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(verify_jwt, None)
    processing_api.set_orchestrator(None)
    download_api.set_download_service(None)
