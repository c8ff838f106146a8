"""Fetch new content items from the generation backend.

Every remote call goes through a RetryableInvoker.  Responses are
sanitized, parsed, and normalized into ContentItems with system-assigned
ids and timestamps.  Invalid records in a batch are dropped; an invalid
single item is a MalformedResponse.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from riddlefeed.content.models import ContentItem, RawItem
from riddlefeed.content.prompts import (
    BATCH_INSTRUCTIONS,
    SYSTEM_INSTRUCTIONS,
    custom_prompt,
    image_prompt,
)
from riddlefeed.errors import MalformedResponse
from riddlefeed.shared.images import DEFAULT_ASPECT_RATIO, ImageGenerator
from riddlefeed.shared.llm import ResponseShape, TextGenerator, parse_json_response
from riddlefeed.shared.retry import RetryableInvoker

logger = logging.getLogger(__name__)

CUSTOM_ID_PREFIX = "custom"


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def new_item_id(created_at: int, index: int, prefix: str = "") -> str:
    """Build an id from time, batch ordinal, and a random suffix."""
    item_id = f"{created_at}-{index}-{uuid.uuid4().hex[:9]}"
    return f"{prefix}-{item_id}" if prefix else item_id


def _validate_raw(record: Any) -> RawItem:
    if not isinstance(record, dict):
        raise MalformedResponse(f"Expected a JSON object, got {type(record).__name__}")
    try:
        return RawItem.model_validate(record)
    except ValidationError as exc:
        raise MalformedResponse(f"Invalid record: {exc}") from exc


class ContentFetcher:
    """Obtain batches, single items, and images from remote collaborators.

    Args:
        generator: Text generation backend.
        invoker: Retry wrapper for every remote call.
        images: Image backend; ``enrich_with_image`` needs one.
        aspect_ratio: Aspect ratio requested for images.
        clock: Returns epoch milliseconds; injectable for tests.
    """

    def __init__(
        self,
        generator: TextGenerator,
        invoker: RetryableInvoker | None = None,
        *,
        images: ImageGenerator | None = None,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.generator = generator
        self.invoker = invoker or RetryableInvoker()
        self.images = images
        self.aspect_ratio = aspect_ratio
        self._clock = clock

    async def _request(self, prompt: str, system: str, shape: ResponseShape, label: str) -> Any:
        text = await self.invoker.invoke(
            lambda: self.generator.generate(prompt, system=system, shape=shape),
            label=label,
        )
        return parse_json_response(text)

    async def fetch_batch(self, prompt_spec: str) -> list[ContentItem]:
        """Fetch a batch of new items.

        Raises:
            MalformedResponse: The response is not a JSON array.
            RemoteExhausted: Still rate limited after every retry.
            TerminalRemoteFailure: The backend rejected the request.
        """
        parsed = await self._request(prompt_spec, BATCH_INSTRUCTIONS, ResponseShape.ARRAY, "batch")
        if not isinstance(parsed, list):
            raise MalformedResponse(f"Expected a JSON array, got {type(parsed).__name__}")

        created_at = self._clock()
        items: list[ContentItem] = []
        for index, record in enumerate(parsed):
            try:
                raw = _validate_raw(record)
            except MalformedResponse as exc:
                logger.warning("Dropping record #%d from batch: %s", index, exc)
                continue
            items.append(raw.to_item(new_item_id(created_at, index), created_at))

        logger.info("Fetched %d item(s), dropped %d", len(items), len(parsed) - len(items))
        return items

    async def fetch_one(self, user_request: str) -> ContentItem:
        """Generate a single item from a free-text request.

        Raises:
            MalformedResponse: The response is not one valid JSON object.
        """
        parsed = await self._request(
            custom_prompt(user_request), SYSTEM_INSTRUCTIONS, ResponseShape.OBJECT, "custom"
        )
        raw = _validate_raw(parsed)
        created_at = self._clock()
        return raw.to_item(new_item_id(created_at, 0, CUSTOM_ID_PREFIX), created_at)

    async def enrich_with_image(self, item: ContentItem) -> str:
        """Generate a background image for an item.

        Does not touch the store; the caller decides whether to persist.
        """
        if self.images is None:
            raise RuntimeError("No image generator configured")
        images = self.images
        description = image_prompt(item)
        return await self.invoker.invoke(
            lambda: images.generate(description, aspect_ratio=self.aspect_ratio),
            label=f"image:{item.id}",
        )
