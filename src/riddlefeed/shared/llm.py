"""Text generation backends and LLM output parsing helpers.

Two backends implement the TextGenerator protocol:
1. Google Gemini via google-genai (default, reads GOOGLE_AI_API_KEY)
2. Anthropic API (uses ANTHROPIC_API_KEY)

Both translate SDK status errors into the riddlefeed error taxonomy so
the retry layer can tell rate limits and server faults apart from
everything else.
"""

from __future__ import annotations

import json
import logging
import os
import re
from enum import StrEnum
from typing import Any, Protocol

import anthropic
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from riddlefeed.errors import MalformedResponse, TerminalRemoteFailure, TransientRemoteFailure
from riddlefeed.shared.retry import is_transient_status

logger = logging.getLogger(__name__)

GEMINI_API_KEY_ENV = "GOOGLE_AI_API_KEY"
ANTHROPIC_API_KEY_ENV = "ANTHROPIC_API_KEY"

DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"

# Fields every generated record is asked to carry
ITEM_FIELDS = ("display_text", "explanation", "solution", "category", "style_hint")


class ResponseShape(StrEnum):
    """Declared output shape of a generation request."""

    ARRAY = "array"
    OBJECT = "object"


class TextGenerator(Protocol):
    async def generate(self, prompt: str, *, system: str, shape: ResponseShape) -> str: ...


def remote_failure(
    message: str, status: int | None
) -> TransientRemoteFailure | TerminalRemoteFailure:
    """Build the taxonomy error matching an HTTP-like status."""
    if is_transient_status(status):
        return TransientRemoteFailure(message, status=status)
    return TerminalRemoteFailure(message, status=status)


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


def _item_schema() -> types.Schema:
    return types.Schema(
        type=types.Type.OBJECT,
        properties={name: types.Schema(type=types.Type.STRING) for name in ITEM_FIELDS},
        required=list(ITEM_FIELDS),
    )


def response_schema(shape: ResponseShape) -> types.Schema:
    """Return the Gemini response schema for a declared shape."""
    if shape == ResponseShape.ARRAY:
        return types.Schema(type=types.Type.ARRAY, items=_item_schema())
    return _item_schema()


class GeminiGenerator:
    """Generate JSON text with a Gemini model."""

    def __init__(self, model: str | None = None, *, timeout: int = 60) -> None:
        self.model = model or DEFAULT_GEMINI_MODEL
        self.timeout = timeout
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        """Lazy-create and cache the genai Client."""
        if self._client is None:
            api_key = os.environ.get(GEMINI_API_KEY_ENV, "").strip()
            if not api_key:
                raise TerminalRemoteFailure(f"{GEMINI_API_KEY_ENV} not set")
            self._client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=self.timeout * 1000),
            )
        return self._client

    async def generate(self, prompt: str, *, system: str, shape: ResponseShape) -> str:
        client = self._get_client()
        logger.debug("Calling Gemini model=%s shape=%s", self.model, shape)
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system,
                    response_mime_type="application/json",
                    response_schema=response_schema(shape),
                ),
            )
        except genai_errors.APIError as exc:
            raise remote_failure(f"Gemini request failed: {exc}", exc.code) from exc

        text = (response.text or "").strip()
        if not text:
            raise MalformedResponse(f"Gemini returned an empty response (model={self.model})")
        return text


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

_MODEL_MAP: dict[str, str] = {
    "sonnet": "claude-sonnet-4-6",
    "haiku": "claude-haiku-4-5-20251001",
    "opus": "claude-opus-4-6",
}

_DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-6"


def _resolve_model(model: str | None) -> str:
    """Resolve a short model name to an API model ID."""
    if model is None:
        return _DEFAULT_ANTHROPIC_MODEL
    return _MODEL_MAP.get(model, model)


def shape_instruction(shape: ResponseShape) -> str:
    """Plain-text output contract for backends without schema support."""
    fields = ", ".join(ITEM_FIELDS)
    if shape == ResponseShape.ARRAY:
        container = "a JSON array of objects"
    else:
        container = "a single JSON object"
    return (
        f"Respond with {container}, each with the string fields: {fields}. "
        "Return only JSON, no prose and no markdown fences."
    )


class AnthropicGenerator:
    """Generate JSON text with a Claude model via the Anthropic API."""

    def __init__(self, model: str | None = None, *, timeout: int = 60) -> None:
        self.model = _resolve_model(model)
        self.timeout = timeout
        self._client: anthropic.AsyncAnthropic | None = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            api_key = os.environ.get(ANTHROPIC_API_KEY_ENV, "").strip()
            if not api_key:
                raise TerminalRemoteFailure(f"{ANTHROPIC_API_KEY_ENV} not set")
            self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=self.timeout)
        return self._client

    async def generate(self, prompt: str, *, system: str, shape: ResponseShape) -> str:
        client = self._get_client()
        logger.debug("Calling Anthropic API model=%s shape=%s", self.model, shape)
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": 8192,
            "messages": [{"role": "user", "content": f"{prompt}\n\n{shape_instruction(shape)}"}],
        }
        if system.strip():
            kwargs["system"] = system
        try:
            response = await client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            raise remote_failure(f"Anthropic request failed: {exc}", exc.status_code) from exc
        except anthropic.APIConnectionError as exc:
            raise TerminalRemoteFailure(f"Anthropic connection failed: {exc}") from exc

        text = "".join(block.text for block in response.content if block.type == "text").strip()
        if not text:
            raise MalformedResponse(f"Anthropic returned an empty response (model={self.model})")
        return text


# ---------------------------------------------------------------------------
# JSON output helpers
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\n?|```")


def extract_json_text(text: str) -> str:
    """Locate the outermost JSON container in LLM output.

    Slices from the earliest ``[`` or ``{`` to the latest ``]`` or ``}``.
    When no such pair exists, strips markdown code fence markers instead.
    """
    starts = [pos for pos in (text.find("["), text.find("{")) if pos != -1]
    end = max(text.rfind("]"), text.rfind("}"))
    if starts and end > min(starts):
        return text[min(starts) : end + 1]
    return _FENCE_RE.sub("", text).strip()


def parse_json_response(text: str) -> Any:
    """Sanitize and parse LLM output.

    Raises:
        MalformedResponse: If nothing parseable remains.
    """
    cleaned = extract_json_text(text or "")
    if not cleaned:
        raise MalformedResponse("Empty response from generation backend")
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, RecursionError) as exc:
        logger.debug("Unparseable response: %s", cleaned[:200])
        raise MalformedResponse(f"Response is not valid JSON: {exc}") from exc


def build_generator(backend: str, model: str | None = None, *, timeout: int = 60) -> TextGenerator:
    """Create the configured text generation backend."""
    if backend == "gemini":
        return GeminiGenerator(model, timeout=timeout)
    if backend == "anthropic":
        return AnthropicGenerator(model, timeout=timeout)
    raise ValueError(f"Unknown generation backend: {backend!r}")
