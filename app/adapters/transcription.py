"""RunPod Whisper transcription adapter."""

import asyncio
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
    Transcript,
    with_deadline,
)
from app.config import Settings

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("transcript", "transcription", "text", "content", "speech", "audio_text")
_PENDING_STATUSES = {"IN_PROGRESS", "IN_QUEUE"}

TranscriptionResult = Union[Transcript, AdapterFailure]


def _first_text(data: Any) -> Optional[str]:
    """Find transcript text in the shapes different Whisper workers return."""
    if isinstance(data, str):
        return data.strip() or None
    if not isinstance(data, dict):
        return None

    result = data.get("result")
    if isinstance(result, dict) and isinstance(result.get("transcription"), str):
        if result["transcription"].strip():
            return result["transcription"].strip()

    for field in _TEXT_FIELDS:
        value = data.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()

    # one level down
    for value in data.values():
        if isinstance(value, dict):
            for field in _TEXT_FIELDS:
                nested = value.get(field)
                if isinstance(nested, str) and nested.strip():
                    return nested.strip()
    return None


class RunPodTranscriber:
    """Client for a RunPod serverless Whisper endpoint (``/runsync``)."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = settings.runpod_api_key
        self._base_url = settings.runpod_endpoint_url.rstrip("/")
        self._poll_interval = settings.runpod_poll_interval_seconds
        self._max_polls = settings.runpod_max_polls
        # Both attempts must fit inside the stage deadline.
        self._attempt_timeout = settings.transcription_timeout_seconds / 2
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._attempt_timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

    async def transcribe(self, audio_url: str, detect_language: bool = False) -> TranscriptionResult:
        """Run one transcription request against ``/runsync``."""
        if not audio_url:
            return AdapterFailure("Audio URL is required", INVALID_INPUT)
        if not self._api_key:
            return AdapterFailure("RunPod API key is not configured", AUTHENTICATION)

        request_input: Dict[str, Any] = {"audio": audio_url}
        if detect_language:
            request_input["options"] = {"detect_language": True}

        try:
            async with self._client() as client:
                response = await client.post(f"{self._base_url}/runsync", json={"input": request_input})
                failure = self._check_status(response)
                if failure:
                    return failure
                payload = response.json()

                polls = 0
                while payload.get("status") in _PENDING_STATUSES:
                    if polls >= self._max_polls:
                        return AdapterFailure(
                            f"Transcription still in progress after {polls} status checks", TIMEOUT
                        )
                    polls += 1
                    logger.info(
                        "RunPod job %s %s, checking again in %.0fs (%d/%d)",
                        payload.get("id"), payload.get("status"), self._poll_interval, polls, self._max_polls,
                    )
                    await asyncio.sleep(self._poll_interval)
                    response = await client.get(f"{self._base_url}/status/{payload.get('id')}")
                    failure = self._check_status(response)
                    if failure:
                        return failure
                    payload = response.json()
        except httpx.TimeoutException as e:
            return AdapterFailure(f"RunPod request timed out: {e}", TIMEOUT)
        except httpx.HTTPError as e:
            return AdapterFailure(f"RunPod request failed: {e}", NETWORK)
        except ValueError as e:
            return AdapterFailure(f"RunPod returned invalid JSON: {e}", RESPONSE_FORMAT)

        return self._parse(payload)

    @staticmethod
    def _check_status(response: httpx.Response) -> Optional[AdapterFailure]:
        if response.status_code in (401, 403):
            return AdapterFailure("RunPod rejected the API key", AUTHENTICATION)
        if response.status_code >= 400:
            return AdapterFailure(
                f"RunPod API error {response.status_code}: {response.text[:200]}", API_ERROR
            )
        return None

    @staticmethod
    def _parse(payload: Dict[str, Any]) -> TranscriptionResult:
        status = payload.get("status")
        if status == "FAILED":
            return AdapterFailure(f"RunPod job failed: {payload.get('error', 'unknown error')}", API_ERROR)

        output = payload.get("output")
        if output is None:
            if status == "COMPLETED":
                return AdapterFailure("RunPod returned no output", EMPTY_RESPONSE)
            return AdapterFailure(f"Unexpected RunPod response (status={status})", RESPONSE_FORMAT)

        text = _first_text(output) or _first_text(payload)
        if not text:
            return AdapterFailure("RunPod returned an empty transcript", EMPTY_RESPONSE)

        language = None
        confidence = None
        if isinstance(output, dict):
            language = output.get("language")
            probability = output.get("language_probability")
            if isinstance(probability, (int, float)):
                confidence = float(probability)
        return Transcript(text=text, language=language, language_confidence=confidence)

    async def transcribe_with_fallback(self, audio_url: str) -> TranscriptionResult:
        """Language-aware attempt first; on any failure, exactly one plain attempt."""
        first = await with_deadline(
            self.transcribe(audio_url, detect_language=True), self._attempt_timeout, "Transcription service"
        )
        if first.ok:
            return first
        logger.warning("Language-aware transcription failed (%s), retrying without it", first.message)
        return await with_deadline(
            self.transcribe(audio_url, detect_language=False), self._attempt_timeout, "Transcription service"
        )
