"""OpenAI note-generation adapter.

Two operations: structured study-note synthesis (``enhance``) and
verbatim/light formatting of raw text (``store``).
"""

import logging
import re
from typing import List, Optional, Union

import openai
from openai import AsyncOpenAI

from app.adapters import prompts
from app.adapters.base import (
    API_ERROR,
    AUTHENTICATION,
    EMPTY_RESPONSE,
    INVALID_INPUT,
    RATE_LIMIT,
    TIMEOUT,
    UNKNOWN,
    AdapterFailure,
    GeneratedNotes,
)
from app.config import Settings

logger = logging.getLogger(__name__)

CORNELL_NOTES = "cornell-notes"
CLEAN_DOCUMENT = "clean-document"

NotesResult = Union[GeneratedNotes, AdapterFailure]

_NOTE_TAKING_AREA_PATTERNS = [
    r"#{2,3}\s*Note[-\s]*Taking\s*Area\s*",
    r"#{2,3}\s*Área\s*de\s*Toma\s*de\s*Notas\s*",
    r"#{2,3}\s*Zone\s*de\s*Prise\s*de\s*Notes\s*",
    r"\*\*Note[-\s]*Taking\s*Area\*\*",
    r"\*\*Área\s*de\s*Toma\s*de\s*Notas\*\*",
    r"\*\*Zone\s*de\s*Prise\s*de\s*Notes\*\*",
]
_CUE_SECTION = re.compile(r"(### (?:Cue Column|Exam Prep Questions)[\s\S]*?)(?=\n### |\n## |\Z)")


def postprocess_notes(content: str) -> str:
    """Drop stray note-taking-area headings and normalise cue-column bullets."""
    for pattern in _NOTE_TAKING_AREA_PATTERNS:
        content = re.sub(pattern, "", content, flags=re.IGNORECASE)
    content = re.sub(r"\n{3,}", "\n\n", content)

    match = _CUE_SECTION.search(content)
    if match:
        section = re.sub(r"^\s*[-*+]\s+", "*   ", match.group(1), flags=re.MULTILINE)
        content = content[:match.start()] + section + content[match.end():]
    return content.strip()


class NoteGenerator:
    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self._client = client
        self._api_key = settings.openai_api_key
        self._timeout = settings.generation_timeout_seconds
        self._notes_model = settings.openai_notes_model
        self._format_model = settings.openai_format_model
        self._notes_max_tokens = settings.openai_notes_max_tokens
        self._format_max_tokens = settings.openai_format_max_tokens

    def _openai(self) -> AsyncOpenAI:
        # Built on first use; AsyncOpenAI refuses to construct without a key.
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    async def _complete(self, model: str, messages: List[dict], max_tokens: int) -> NotesResult:
        if self._client is None and not self._api_key:
            return AdapterFailure("OpenAI API key is not configured", AUTHENTICATION)
        try:
            completion = await self._openai().chat.completions.create(
                model=model,
                messages=messages,
                max_completion_tokens=max_tokens,
            )
        except openai.RateLimitError:
            return AdapterFailure("OpenAI rate limit exceeded - please try again later", RATE_LIMIT)
        except openai.AuthenticationError:
            return AdapterFailure("OpenAI authentication failed - check API key", AUTHENTICATION)
        except openai.APITimeoutError as e:
            return AdapterFailure(f"OpenAI request timed out: {e}", TIMEOUT)
        except openai.APIError as e:
            return AdapterFailure(f"OpenAI API error: {e}", API_ERROR)
        except Exception as e:
            logger.exception("Unexpected error calling OpenAI")
            return AdapterFailure(str(e) or "Unknown error occurred", UNKNOWN)

        content = None
        if completion.choices:
            content = completion.choices[0].message.content
        if not content or not content.strip():
            return AdapterFailure("OpenAI API returned empty response", EMPTY_RESPONSE)
        return GeneratedNotes(content=content)

    async def generate_notes(
        self,
        title: str,
        transcript: Optional[str] = None,
        document_text: Optional[str] = None,
        subject: Optional[str] = None,
        language: Optional[str] = None,
        format_mode: str = CORNELL_NOTES,
    ) -> NotesResult:
        """Synthesize study notes (or a cleaned document) from extracted text."""
        has_transcript = bool(transcript and transcript.strip())
        has_document = bool(document_text and document_text.strip())
        if not has_transcript and not has_document:
            return AdapterFailure(
                "Either transcript (for audio) or document text is required", INVALID_INPUT
            )

        if format_mode == CLEAN_DOCUMENT:
            source = document_text if has_document else transcript
            detected = language or prompts.detect_language(source)
            system = prompts.CLEAN_DOCUMENT_SYSTEM_PROMPT
            user = prompts.clean_document_prompt(title, source, detected)
        else:
            terms = prompts.section_terms(language, transcript or document_text or "")
            system = prompts.NOTES_SYSTEM_PROMPT
            user = prompts.study_notes_prompt(
                title,
                transcript if has_transcript else None,
                document_text if has_document else None,
                terms,
                subject,
            )

        result = await self._complete(
            self._notes_model,
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            self._notes_max_tokens,
        )
        if not result.ok:
            return result
        return GeneratedNotes(content=postprocess_notes(result.content))

    async def apply_light_formatting(
        self,
        content: str,
        title: Optional[str] = None,
        preservation: str = "light",
    ) -> NotesResult:
        """Add Markdown structure to raw text without restructuring its meaning."""
        if not content or not content.strip():
            return AdapterFailure("No content provided for formatting", INVALID_INPUT)

        system = prompts.VERBATIM_SYSTEM_PROMPT if preservation == "verbatim" else prompts.LIGHT_SYSTEM_PROMPT
        result = await self._complete(
            self._format_model,
            [
                {"role": "system", "content": system},
                {"role": "user", "content": prompts.formatting_user_prompt(content, title)},
            ],
            self._format_max_tokens,
        )
        if not result.ok:
            return result
        return GeneratedNotes(content=result.content.strip())
