"""Google Cloud Vision OCR adapter for image uploads."""

import base64
import logging
from typing import Any, Dict, Optional, Union

import httpx

from app.adapters.base import (
    API_ERROR,
    AUTHENTICATION,
    EMPTY_RESPONSE,
    INVALID_INPUT,
    NETWORK,
    RESPONSE_FORMAT,
    TIMEOUT,
    AdapterFailure,
    ExtractedText,
)
from app.config import Settings

logger = logging.getLogger(__name__)

VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
LANGUAGE_HINTS = ["en", "es"]


def _text_from_annotation(annotation: Dict[str, Any]):
    """Returns (text, confidence) from one entry of ``responses``."""
    text = (annotation.get("fullTextAnnotation") or {}).get("text")
    confidence = None
    text_annotations = annotation.get("textAnnotations") or []
    if text_annotations:
        first = text_annotations[0]
        if not text:
            text = first.get("description")
        if isinstance(first.get("confidence"), (int, float)):
            confidence = float(first["confidence"])
    return (text or "").strip(), confidence


class VisionOcr:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = settings.google_vision_api_key
        self._max_bytes = settings.vision_max_image_mb * 1024 * 1024
        self._timeout = settings.extraction_timeout_seconds
        self._transport = transport

    async def extract(self, image_url: str) -> Union[ExtractedText, AdapterFailure]:
        if not image_url:
            return AdapterFailure("Image URL is required", INVALID_INPUT)
        if not self._api_key:
            return AdapterFailure("Google Vision API key is not configured", AUTHENTICATION)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                image = await client.get(image_url)
                if image.status_code >= 400:
                    return AdapterFailure(f"Could not fetch image ({image.status_code})", API_ERROR)
                if not image.content:
                    return AdapterFailure("Image is empty", EMPTY_RESPONSE)
                if len(image.content) > self._max_bytes:
                    return AdapterFailure(
                        f"Image is larger than {self._max_bytes // (1024 * 1024)}MB", INVALID_INPUT
                    )

                body = {
                    "requests": [{
                        "image": {"content": base64.b64encode(image.content).decode("ascii")},
                        "features": [{"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1}],
                        "imageContext": {"languageHints": LANGUAGE_HINTS},
                    }]
                }
                response = await client.post(VISION_ENDPOINT, params={"key": self._api_key}, json=body)
        except httpx.TimeoutException as e:
            return AdapterFailure(f"Google Vision timed out: {e}", TIMEOUT)
        except httpx.HTTPError as e:
            return AdapterFailure(f"Google Vision request failed: {e}", NETWORK)

        if response.status_code in (401, 403):
            return AdapterFailure("Google Vision rejected the API key", AUTHENTICATION)
        if response.status_code >= 400:
            return AdapterFailure(
                f"Google Vision API error {response.status_code}: {response.text[:200]}", API_ERROR
            )

        try:
            annotations = response.json().get("responses") or []
        except ValueError:
            return AdapterFailure("Google Vision returned invalid JSON", RESPONSE_FORMAT)
        if not annotations:
            return AdapterFailure("Google Vision returned no results", EMPTY_RESPONSE)

        annotation = annotations[0]
        if annotation.get("error"):
            return AdapterFailure(
                f"Google Vision error: {annotation['error'].get('message', 'unknown')}", API_ERROR
            )

        text, confidence = _text_from_annotation(annotation)
        if not text:
            return AdapterFailure("No text detected in image", EMPTY_RESPONSE)

        logger.info("Vision OCR extracted %d characters", len(text))
        return ExtractedText(text=text, method="google_vision", confidence=confidence)
