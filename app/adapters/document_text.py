"""Apache Tika document-text adapter."""

import logging
from typing import Optional, Union

import httpx

from app.adapters.base import (
    API_ERROR,
    EMPTY_RESPONSE,
    INVALID_INPUT,
    NETWORK,
    TIMEOUT,
    AdapterFailure,
    ExtractedText,
)
from app.config import Settings

logger = logging.getLogger(__name__)

_PREFIX = "Document text extraction failed: "


class TikaExtractor:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = settings.tika_url.rstrip("/")
        self._timeout = settings.extraction_timeout_seconds
        self._transport = transport

    async def extract(self, document_url: str) -> Union[ExtractedText, AdapterFailure]:
        """Download the document and return Tika's plain-text rendering of it."""
        if not document_url:
            return AdapterFailure(_PREFIX + "document URL is required", INVALID_INPUT)
        if not self._base_url:
            return AdapterFailure(_PREFIX + "Tika URL is not configured", INVALID_INPUT)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                document = await client.get(document_url)
                if document.status_code >= 400:
                    return AdapterFailure(
                        _PREFIX + f"could not fetch document ({document.status_code})", API_ERROR
                    )
                if not document.content:
                    return AdapterFailure(_PREFIX + "document is empty", EMPTY_RESPONSE)

                response = await client.put(
                    f"{self._base_url}/tika",
                    content=document.content,
                    headers={"Content-Type": "application/octet-stream", "Accept": "text/plain"},
                )
        except httpx.TimeoutException as e:
            return AdapterFailure(_PREFIX + f"timed out ({e})", TIMEOUT)
        except httpx.HTTPError as e:
            return AdapterFailure(_PREFIX + str(e), NETWORK)

        if response.status_code >= 400:
            return AdapterFailure(
                _PREFIX + f"Tika returned {response.status_code}: {response.text[:200]}", API_ERROR
            )

        text = response.text.strip()
        if not text:
            return AdapterFailure(_PREFIX + "no text found in document", EMPTY_RESPONSE)

        logger.info("Tika extracted %d characters", len(text))
        return ExtractedText(text=text, method="tika")
