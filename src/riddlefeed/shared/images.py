"""Background image generation for content cards.

Uses Google Gemini's image generation capability via the google-genai SDK
and returns the image inline as a ``data:`` URI, ready to store on the
item and render without another request.
"""

from __future__ import annotations

import base64
import logging
import os

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from riddlefeed.errors import NoImageProduced, TerminalRemoteFailure
from riddlefeed.shared.llm import GEMINI_API_KEY_ENV, remote_failure

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image"
DEFAULT_ASPECT_RATIO = "1:1"
DEFAULT_MIME_TYPE = "image/png"


def to_data_uri(data: bytes | str, mime_type: str | None = None) -> str:
    """Encode inline image bytes as a data URI.

    ``data`` may already be base64 text, as some transports return it.
    """
    if isinstance(data, bytes):
        encoded = base64.b64encode(data).decode("ascii")
    else:
        encoded = data
    return f"data:{mime_type or DEFAULT_MIME_TYPE};base64,{encoded}"


class ImageGenerator:
    """Generate card backgrounds via Google Gemini."""

    def __init__(self, model: str | None = None, *, timeout: int = 120) -> None:
        self.model = model or os.environ.get("IMAGE_MODEL", DEFAULT_MODEL)
        self.timeout = timeout
        self._client: genai.Client | None = None

    def is_configured(self) -> bool:
        """Check whether an API key is available."""
        return bool(os.environ.get(GEMINI_API_KEY_ENV, "").strip())

    def _get_client(self) -> genai.Client:
        """Lazy-create and cache the genai Client."""
        if self._client is None:
            if not self.is_configured():
                raise TerminalRemoteFailure(f"{GEMINI_API_KEY_ENV} not set")
            self._client = genai.Client(
                api_key=os.environ[GEMINI_API_KEY_ENV].strip(),
                http_options=types.HttpOptions(timeout=self.timeout * 1000),
            )
        return self._client

    async def generate(self, description: str, *, aspect_ratio: str = DEFAULT_ASPECT_RATIO) -> str:
        """Generate an image from a text description.

        Args:
            description: What the image should show.
            aspect_ratio: Target aspect ratio (default "1:1").

        Returns:
            A ``data:<mime>;base64,...`` URI.

        Raises:
            NoImageProduced: The response carried no inline image data.
            TransientRemoteFailure: Rate limited or server fault.
            TerminalRemoteFailure: Any other API failure.
        """
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=description,
                config=types.GenerateContentConfig(
                    response_modalities=["TEXT", "IMAGE"],
                    image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
                ),
            )
        except genai_errors.APIError as exc:
            raise remote_failure(f"Gemini image request failed: {exc}", exc.code) from exc

        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content else None) or []:
                if part.inline_data is not None and part.inline_data.data:
                    logger.info("Generated image for prompt: %s", description[:80])
                    return to_data_uri(part.inline_data.data, part.inline_data.mime_type)

        logger.warning("No image data in response for prompt: %s", description[:80])
        raise NoImageProduced(f"No image generated (model={self.model})")
