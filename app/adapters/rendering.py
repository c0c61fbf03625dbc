"""Gotenberg PDF rendering adapter.

Markdown is sent alongside an HTML wrapper to Gotenberg's Chromium markdown
route; the wrapper pulls the content in with ``{{ toHTML "content.md" }}``.
"""

import html
import logging
from typing import Dict, Optional, Tuple, Union

import httpx

from app.adapters.base import (
    API_ERROR,
    EMPTY_RESPONSE,
    INVALID_INPUT,
    NETWORK,
    RESPONSE_FORMAT,
    TIMEOUT,
    AdapterFailure,
    RenderedPdf,
)
from app.adapters.prompts import NEW_PAGE
from app.config import Settings

logger = logging.getLogger(__name__)

MARKDOWN_ROUTE = "/forms/chromium/convert/markdown"
CONTENT_FILE = "content.md"
PAGE_BREAK = '<div class="page-break"></div>'

PdfResult = Union[RenderedPdf, AdapterFailure]

_NOTES_STYLE = """
  @page { size: A4; margin: 0.5in; }
  body { font-family: "Inter", "Helvetica Neue", Arial, sans-serif; font-size: 11pt;
         line-height: 1.55; color: #1f2933; }
  header.notes-header { border-bottom: 3px solid #4f46e5; margin-bottom: 18px; padding-bottom: 8px; }
  header.notes-header h1 { font-size: 22pt; margin: 0; color: #312e81; }
  header.notes-header .subject { color: #6b7280; font-size: 10pt; margin-top: 4px; }
  h2 { color: #4338ca; border-bottom: 1px solid #e0e7ff; padding-bottom: 4px; margin-top: 22px; }
  h3 { color: #4f46e5; margin-top: 18px; }
  h4 { color: #312e81; margin: 14px 0 6px; }
  strong { color: #111827; }
  ul { padding-left: 20px; }
  li { margin: 3px 0; }
  blockquote { border-left: 4px solid #c7d2fe; margin: 0; padding-left: 12px; color: #374151; }
  code { background: #f3f4f6; padding: 1px 4px; border-radius: 3px; }
  .page-break { page-break-after: always; break-after: page; }
"""

_DOCUMENT_STYLE = """
  @page { size: A4; margin: 1in; }
  body { font-family: Georgia, "Times New Roman", serif; font-size: 12pt; line-height: 1.6; color: #111; }
  h1 { font-size: 20pt; margin-bottom: 16px; }
  h2 { font-size: 15pt; margin-top: 20px; }
  h3 { font-size: 13pt; }
  .page-break { page-break-after: always; break-after: page; }
"""


def _wrapper(title: str, style: str, header: str = "") -> str:
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n<head>\n<meta charset="utf-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        f"<style>{style}</style>\n</head>\n<body>\n"
        f"{header}"
        f'<main>{{{{ toHTML "{CONTENT_FILE}" }}}}</main>\n'
        "</body>\n</html>\n"
    )


def _with_page_breaks(markdown: str) -> str:
    return markdown.replace(NEW_PAGE, f"\n\n{PAGE_BREAK}\n\n")


def build_notes_document(markdown: str, title: str, subject: Optional[str] = None) -> Tuple[str, str]:
    """HTML wrapper and markdown body for the study-notes PDF."""
    subject_html = f'<div class="subject">{html.escape(subject)}</div>' if subject else ""
    header = (
        '<header class="notes-header">'
        f"<h1>{html.escape(title)}</h1>{subject_html}"
        "</header>\n"
    )
    return _wrapper(title, _NOTES_STYLE, header), _with_page_breaks(markdown)


def build_plain_document(markdown: str, title: str) -> Tuple[str, str]:
    """HTML wrapper and markdown body for the plain document PDF."""
    return _wrapper(title, _DOCUMENT_STYLE), _with_page_breaks(markdown)


class GotenbergRenderer:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = settings.gotenberg_url.rstrip("/")
        self._timeout = settings.rendering_timeout_seconds
        self._transport = transport

    async def _convert(self, index_html: str, markdown: str, options: Dict[str, str]) -> PdfResult:
        if not self._base_url:
            return AdapterFailure("Gotenberg API URL is not configured", INVALID_INPUT)
        if not markdown.strip():
            return AdapterFailure("No content to render", INVALID_INPUT)

        files = [
            ("files", ("index.html", index_html.encode("utf-8"), "text/html")),
            ("files", (CONTENT_FILE, markdown.encode("utf-8"), "text/markdown")),
        ]
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(f"{self._base_url}{MARKDOWN_ROUTE}", files=files, data=options)
        except httpx.TimeoutException as e:
            return AdapterFailure(f"Gotenberg timed out: {e}", TIMEOUT)
        except httpx.HTTPError as e:
            return AdapterFailure(f"Gotenberg request failed: {e}", NETWORK)

        if response.status_code >= 400:
            return AdapterFailure(
                f"Gotenberg API error {response.status_code}: {response.text[:200]}", API_ERROR
            )
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("application/pdf"):
            return AdapterFailure(f"Gotenberg returned {content_type or 'no content type'}", RESPONSE_FORMAT)
        if not response.content:
            return AdapterFailure("Gotenberg returned an empty PDF", EMPTY_RESPONSE)

        logger.info("Rendered PDF (%d bytes)", len(response.content))
        return RenderedPdf(data=response.content)

    async def render_notes_pdf(self, markdown: str, title: str, subject: Optional[str] = None) -> PdfResult:
        index_html, body = build_notes_document(markdown, title, subject)
        return await self._convert(index_html, body, {
            "marginTop": "0.5",
            "marginBottom": "0.5",
            "marginLeft": "0.5",
            "marginRight": "0.5",
            "printBackground": "true",
            "preferCssPageSize": "true",
        })

    async def render_document_pdf(self, markdown: str, title: str) -> PdfResult:
        index_html, body = build_plain_document(markdown, title)
        return await self._convert(index_html, body, {
            "marginTop": "1",
            "marginBottom": "1",
            "marginLeft": "1",
            "marginRight": "1",
        })
