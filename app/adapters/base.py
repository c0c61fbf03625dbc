"""Result types shared by the external-service adapters.

Each adapter method returns either its success dataclass or an
``AdapterFailure``; downstream errors never escape as exceptions.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# AdapterFailure.kind values
NETWORK = "network"
API_ERROR = "api_error"
RESPONSE_FORMAT = "response_format"
EMPTY_RESPONSE = "empty_response"
AUTHENTICATION = "authentication"
RATE_LIMIT = "rate_limit"
TIMEOUT = "timeout"
INVALID_INPUT = "invalid_input"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class AdapterFailure:
    message: str
    kind: str = UNKNOWN
    ok = False


@dataclass(frozen=True)
class Transcript:
    text: str
    language: Optional[str] = None
    language_confidence: Optional[float] = None
    ok = True


@dataclass(frozen=True)
class ExtractedText:
    text: str
    method: str
    confidence: Optional[float] = None
    ok = True


@dataclass(frozen=True)
class GeneratedNotes:
    content: str
    ok = True


@dataclass(frozen=True)
class RenderedPdf:
    data: bytes
    ok = True


T = TypeVar("T")


async def with_deadline(
    call: Awaitable[Union[T, AdapterFailure]], seconds: float, service: str
) -> Union[T, AdapterFailure]:
    """Await an adapter call, turning an expired deadline or a stray exception into a failure."""
    try:
        return await asyncio.wait_for(call, timeout=seconds)
    except asyncio.TimeoutError:
        logger.error("%s did not respond within %gs", service, seconds)
        return AdapterFailure(f"{service} timed out after {seconds:g}s", TIMEOUT)
    except Exception as e:
        logger.exception("%s raised instead of returning a failure", service)
        return AdapterFailure(f"{service} failed: {e}", UNKNOWN)
