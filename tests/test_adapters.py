import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from app.adapters import prompts
from app.adapters.base import (
    API_ERROR,
    AUTHENTICATION,
    EMPTY_RESPONSE,
    INVALID_INPUT,
    RATE_LIMIT,
    RESPONSE_FORMAT,
    TIMEOUT,
    UNKNOWN,
    with_deadline,
)
from app.adapters.document_text import TikaExtractor
from app.adapters.image_ocr import VisionOcr
from app.adapters.note_generation import CLEAN_DOCUMENT, NoteGenerator, postprocess_notes
from app.adapters.rendering import (
    MARKDOWN_ROUTE,
    PAGE_BREAK,
    GotenbergRenderer,
    build_notes_document,
)
from app.adapters.transcription import RunPodTranscriber
from tests.conftest import make_settings

AUDIO_URL = "https://storage.test/user-uploads/lecture.mp3?token=abc"
DOC_URL = "https://storage.test/user-uploads/slides.pdf?token=abc"


def recording(handler):
    """Wrap a handler so every request it sees is kept for assertions."""
    seen = []

    def _handle(request):
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(_handle), seen


# ---------------------------------------------------------------------------
# RunPod
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_runpod_reads_text_and_language():
    transport, seen = recording(lambda request: httpx.Response(200, json={
        "status": "COMPLETED",
        "output": {"text": " Hola a todos ", "language": "es", "language_probability": 0.97},
    }))
    transcriber = RunPodTranscriber(make_settings(), transport=transport)

    result = await transcriber.transcribe(AUDIO_URL, detect_language=True)
    assert result.ok
    assert result.text == "Hola a todos"
    assert result.language == "es"
    assert result.language_confidence == pytest.approx(0.97)

    sent = json.loads(seen[0].content)
    assert sent == {"input": {"audio": AUDIO_URL, "options": {"detect_language": True}}}
    assert seen[0].headers["Authorization"] == "Bearer rp-key"
    assert seen[0].url.path.endswith("/runsync")


@pytest.mark.asyncio
async def test_runpod_fallback_makes_exactly_one_plain_retry():
    def handler(request):
        body = json.loads(request.content)
        if "options" in body["input"]:
            return httpx.Response(500, text="worker crashed")
        return httpx.Response(200, json={"status": "COMPLETED", "output": {"transcription": "plain text"}})

    transport, seen = recording(handler)
    transcriber = RunPodTranscriber(make_settings(), transport=transport)

    result = await transcriber.transcribe_with_fallback(AUDIO_URL)
    assert result.ok
    assert result.text == "plain text"
    assert len(seen) == 2
    assert json.loads(seen[1].content) == {"input": {"audio": AUDIO_URL}}


@pytest.mark.asyncio
async def test_hanging_first_attempt_leaves_time_for_the_plain_retry():
    async def handler(request):
        if "options" in json.loads(request.content)["input"]:
            await asyncio.sleep(5)
        return httpx.Response(200, json={"status": "COMPLETED", "output": {"text": "plain text"}})

    transport, seen = recording(handler)
    transcriber = RunPodTranscriber(make_settings(transcription_timeout_seconds=0.4), transport=transport)

    result = await with_deadline(transcriber.transcribe_with_fallback(AUDIO_URL), 0.4, "Transcription service")
    assert result.ok
    assert result.text == "plain text"
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_runpod_fallback_gives_up_after_two_attempts():
    transport, seen = recording(lambda request: httpx.Response(502, text="bad gateway"))
    transcriber = RunPodTranscriber(make_settings(), transport=transport)

    result = await transcriber.transcribe_with_fallback(AUDIO_URL)
    assert not result.ok
    assert result.kind == API_ERROR
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_runpod_polls_pending_jobs():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"id": "job-9", "status": "IN_QUEUE"})
        return httpx.Response(200, json={
            "id": "job-9",
            "status": "COMPLETED",
            "output": {"result": {"transcription": "finished text"}},
        })

    transport, seen = recording(handler)
    transcriber = RunPodTranscriber(make_settings(), transport=transport)

    result = await transcriber.transcribe(AUDIO_URL)
    assert result.ok
    assert result.text == "finished text"
    assert seen[1].url.path.endswith("/status/job-9")


@pytest.mark.asyncio
async def test_runpod_stops_polling_after_the_limit():
    transport, seen = recording(
        lambda request: httpx.Response(200, json={"id": "job-9", "status": "IN_PROGRESS"})
    )
    transcriber = RunPodTranscriber(make_settings(runpod_max_polls=2), transport=transport)

    result = await transcriber.transcribe(AUDIO_URL)
    assert result.kind == TIMEOUT
    assert len(seen) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("response, kind", [
    (httpx.Response(401, text="unauthorized"), AUTHENTICATION),
    (httpx.Response(200, json={"status": "COMPLETED"}), EMPTY_RESPONSE),
    (httpx.Response(200, json={"status": "COMPLETED", "output": {"text": "   "}}), EMPTY_RESPONSE),
    (httpx.Response(200, json={"status": "FAILED", "error": "OOM"}), API_ERROR),
    (httpx.Response(200, text="not json"), RESPONSE_FORMAT),
])
async def test_runpod_failure_kinds(response, kind):
    transcriber = RunPodTranscriber(make_settings(), transport=httpx.MockTransport(lambda r: response))
    result = await transcriber.transcribe(AUDIO_URL)
    assert not result.ok
    assert result.kind == kind


@pytest.mark.asyncio
async def test_runpod_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    transcriber = RunPodTranscriber(make_settings(), transport=httpx.MockTransport(handler))
    result = await transcriber.transcribe(AUDIO_URL)
    assert result.kind == "network"


# ---------------------------------------------------------------------------
# Tika
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_tika_downloads_then_extracts():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, content=b"%PDF-1.4 slides")
        return httpx.Response(200, text="\n  Photosynthesis converts light.  \n")

    transport, seen = recording(handler)
    extractor = TikaExtractor(make_settings(), transport=transport)

    result = await extractor.extract(DOC_URL)
    assert result.ok
    assert result.text == "Photosynthesis converts light."
    assert result.method == "tika"

    put = seen[1]
    assert put.method == "PUT"
    assert str(put.url) == "https://tika.test/tika"
    assert put.headers["Accept"] == "text/plain"
    assert put.content == b"%PDF-1.4 slides"


@pytest.mark.asyncio
async def test_tika_empty_text_is_a_failure():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, content=b"%PDF-1.4 scanned")
        return httpx.Response(200, text="   ")

    extractor = TikaExtractor(make_settings(), transport=httpx.MockTransport(handler))
    result = await extractor.extract(DOC_URL)
    assert result.kind == EMPTY_RESPONSE
    assert result.message.startswith("Document text extraction failed: ")


# ---------------------------------------------------------------------------
# Google Vision
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_vision_reads_full_text_annotation():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, content=b"\x89PNG image")
        return httpx.Response(200, json={"responses": [{
            "fullTextAnnotation": {"text": "Krebs cycle\nATP yield"},
            "textAnnotations": [{"description": "Krebs", "confidence": 0.91}],
        }]})

    transport, seen = recording(handler)
    ocr = VisionOcr(make_settings(), transport=transport)

    result = await ocr.extract("https://storage.test/board.png")
    assert result.ok
    assert result.text == "Krebs cycle\nATP yield"
    assert result.method == "google_vision"
    assert result.confidence == pytest.approx(0.91)

    post = seen[1]
    assert post.url.params["key"] == "vision-key"
    request_body = json.loads(post.content)["requests"][0]
    assert request_body["features"][0]["type"] == "DOCUMENT_TEXT_DETECTION"
    assert request_body["imageContext"]["languageHints"] == ["en", "es"]


@pytest.mark.asyncio
async def test_vision_rejects_oversized_images():
    transport, seen = recording(lambda request: httpx.Response(200, content=b"x" * (2 * 1024 * 1024)))
    ocr = VisionOcr(make_settings(vision_max_image_mb=1), transport=transport)

    result = await ocr.extract("https://storage.test/huge.png")
    assert result.kind == INVALID_INPUT
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_vision_without_text_is_empty():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, content=b"\x89PNG blank")
        return httpx.Response(200, json={"responses": [{}]})

    ocr = VisionOcr(make_settings(), transport=httpx.MockTransport(handler))
    result = await ocr.extract("https://storage.test/blank.png")
    assert result.kind == EMPTY_RESPONSE


# ---------------------------------------------------------------------------
# Gotenberg
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_gotenberg_posts_markdown_and_wrapper():
    transport, seen = recording(lambda request: httpx.Response(
        200, content=b"%PDF-1.7 rendered", headers={"Content-Type": "application/pdf"}
    ))
    renderer = GotenbergRenderer(make_settings(), transport=transport)

    result = await renderer.render_notes_pdf("## Notes\n", "Cell Biology", "Biology")
    assert result.ok
    assert result.data == b"%PDF-1.7 rendered"

    request = seen[0]
    assert request.url.path == MARKDOWN_ROUTE
    body = request.content
    assert b'toHTML "content.md"' in body
    assert b"## Notes" in body
    assert b"preferCssPageSize" in body


@pytest.mark.asyncio
async def test_gotenberg_non_pdf_response_is_rejected():
    renderer = GotenbergRenderer(
        make_settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"error": "oops"})),
    )
    result = await renderer.render_document_pdf("# Doc\n", "Doc")
    assert result.kind == RESPONSE_FORMAT


@pytest.mark.asyncio
async def test_gotenberg_error_status():
    renderer = GotenbergRenderer(
        make_settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(503, text="busy")),
    )
    result = await renderer.render_document_pdf("# Doc\n", "Doc")
    assert result.kind == API_ERROR


def test_notes_document_is_deterministic_and_breaks_pages():
    markdown = f"## Cues\n{prompts.NEW_PAGE}\n## Summary\n"
    first = build_notes_document(markdown, "Cells & Tissues", "Bio")
    second = build_notes_document(markdown, "Cells & Tissues", "Bio")
    assert first == second

    index_html, body = first
    assert "Cells &amp; Tissues" in index_html
    assert '<div class="subject">Bio</div>' in index_html
    assert PAGE_BREAK in body
    assert prompts.NEW_PAGE not in body


# ---------------------------------------------------------------------------
# OpenAI note generation
# ---------------------------------------------------------------------------

def fake_openai(content="## Notes", error=None):
    completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
    create = AsyncMock(return_value=completion, side_effect=error)
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create))), create


@pytest.mark.asyncio
async def test_generate_notes_uses_notes_model_and_cleans_output():
    raw = (
        "## Mindsy Notes\n### Exam Prep Questions\n- What is ATP?\n- Where is it made?\n"
        "### Note-Taking Area\n\n\n\n### Detailed Notes\n- ATP stores energy\n"
    )
    client, create = fake_openai(raw)
    generator = NoteGenerator(make_settings(), client=client)

    result = await generator.generate_notes("Energy", transcript="The cell makes ATP.", subject="Bio")
    assert result.ok
    assert "Note-Taking Area" not in result.content
    assert "*   What is ATP?" in result.content
    assert "- ATP stores energy" in result.content

    kwargs = create.call_args.kwargs
    assert kwargs["model"] == "gpt-5-mini"
    assert kwargs["max_completion_tokens"] == 80000
    assert kwargs["messages"][0]["content"] == prompts.NOTES_SYSTEM_PROMPT
    assert "The cell makes ATP." in kwargs["messages"][1]["content"]


@pytest.mark.asyncio
async def test_clean_document_mode_uses_formatter_prompt():
    client, create = fake_openai("# Paper\n\nBody")
    generator = NoteGenerator(make_settings(), client=client)

    result = await generator.generate_notes("Paper", document_text="Body text", format_mode=CLEAN_DOCUMENT)
    assert result.ok
    messages = create.call_args.kwargs["messages"]
    assert messages[0]["content"] == prompts.CLEAN_DOCUMENT_SYSTEM_PROMPT
    assert 'title "Paper"' in messages[1]["content"]


@pytest.mark.asyncio
async def test_generate_notes_requires_some_text():
    client, create = fake_openai()
    generator = NoteGenerator(make_settings(), client=client)

    result = await generator.generate_notes("Empty", transcript="  ", document_text=None)
    assert result.kind == INVALID_INPUT
    create.assert_not_called()


@pytest.mark.asyncio
async def test_verbatim_formatting_uses_format_model():
    client, create = fake_openai("\n# scan\n\nText\n")
    generator = NoteGenerator(make_settings(), client=client)

    result = await generator.apply_light_formatting("raw text", "scan", "verbatim")
    assert result.content == "# scan\n\nText"
    kwargs = create.call_args.kwargs
    assert kwargs["model"] == "gpt-5-nano"
    assert kwargs["messages"][0]["content"] == prompts.VERBATIM_SYSTEM_PROMPT


@pytest.mark.asyncio
async def test_empty_completion_is_a_failure():
    client, _ = fake_openai("   ")
    generator = NoteGenerator(make_settings(), client=client)
    result = await generator.apply_light_formatting("raw text")
    assert result.kind == EMPTY_RESPONSE


@pytest.mark.asyncio
async def test_rate_limit_is_mapped():
    response = httpx.Response(429, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    client, _ = fake_openai(error=openai.RateLimitError("slow down", response=response, body=None))
    generator = NoteGenerator(make_settings(), client=client)

    result = await generator.generate_notes("Energy", transcript="The cell makes ATP.")
    assert result.kind == RATE_LIMIT


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_a_client():
    generator = NoteGenerator(make_settings(openai_api_key=""))
    result = await generator.generate_notes("Energy", transcript="The cell makes ATP.")
    assert result.kind == AUTHENTICATION


def test_postprocess_strips_spanish_heading():
    assert postprocess_notes("## Área de Toma de Notas\nContenido") == "Contenido"


def test_language_detection_and_terms():
    assert prompts.detect_language("el estudiante que está en la clase con los libros para la escuela") == "es"
    assert prompts.detect_language("the cell is where the energy is made") == "en"
    assert prompts.section_terms("es-ES")["summary"] == "Resumen"
    assert prompts.section_terms(None, "")["table_of_contents"] == "Table of Contents"


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_with_deadline_turns_slow_calls_into_timeouts():
    result = await with_deadline(asyncio.sleep(1), 0.01, "Slow service")
    assert result.kind == TIMEOUT
    assert result.message.startswith("Slow service timed out")


@pytest.mark.asyncio
async def test_with_deadline_turns_exceptions_into_failures():
    async def boom():
        raise RuntimeError("exploded")

    result = await with_deadline(boom(), 1, "Flaky service")
    assert result.kind == UNKNOWN
    assert "exploded" in result.message


@pytest.mark.asyncio
async def test_with_deadline_reports_fractional_seconds():
    result = await with_deadline(asyncio.sleep(1), 0.25, "Slow service")
    assert result.message == "Slow service timed out after 0.25s"
