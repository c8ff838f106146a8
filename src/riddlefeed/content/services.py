"""Feed service, the operations a front end calls.

All mutation flows through LocalContentStore; views are derived from
``store.get_all()`` with the pure feed projector, so the front end is a
read-only projection of the store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from riddlefeed.content.feed import project
from riddlefeed.content.fetcher import ContentFetcher
from riddlefeed.content.models import ContentItem, LifecycleStatus
from riddlefeed.content.store import LocalContentStore
from riddlefeed.errors import FetchNotPersisted, MalformedResponse, RemoteError, StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass
class FeedRefresh:
    """Outcome of a fetch-then-view request.

    ``items`` is always the local view; ``error`` is set when the fetch
    failed and the view shows only what was already stored.
    """

    items: list[ContentItem] = field(default_factory=list)
    fetched: int = 0
    error: str | None = None


class FeedService:
    """Coordinate fetching, storing, and viewing content."""

    def __init__(self, store: LocalContentStore, fetcher: ContentFetcher) -> None:
        self.store = store
        self.fetcher = fetcher
        self._background: set[asyncio.Task[list[ContentItem]]] = set()

    async def list_view(
        self,
        status: LifecycleStatus = LifecycleStatus.ACTIVE,
        category: str | None = None,
    ) -> list[ContentItem]:
        return project(await self.store.get_all(), status, category)

    async def _persist(self, items: list[ContentItem]) -> None:
        try:
            await self.store.upsert_many(items)
        except StorageUnavailable as exc:
            raise FetchNotPersisted(items, exc) from exc

    async def request_fetch(self, prompt_spec: str) -> list[ContentItem]:
        """Fetch a batch and store it.

        Raises:
            FetchNotPersisted: The fetch succeeded but the write failed.
        """
        items = await self.fetcher.fetch_batch(prompt_spec)
        await self._persist(items)
        return items

    async def request_custom(self, user_request: str) -> ContentItem:
        """Generate one item from a user request and store it."""
        item = await self.fetcher.fetch_one(user_request)
        await self._persist([item])
        return item

    def spawn_fetch(self, prompt_spec: str) -> asyncio.Task[list[ContentItem]]:
        """Start a fetch in the background.

        The caller may drop the returned task; the result is still stored
        when it arrives.
        """
        task = asyncio.create_task(self.request_fetch(prompt_spec))
        self._background.add(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task[list[ContentItem]]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background fetch failed: %s", exc)

    async def refresh(
        self,
        prompt_spec: str,
        status: LifecycleStatus = LifecycleStatus.ACTIVE,
        category: str | None = None,
    ) -> FeedRefresh:
        """Fetch, then return the local view even if the fetch failed."""
        fetched = 0
        error: str | None = None
        try:
            fetched = len(await self.request_fetch(prompt_spec))
        except (RemoteError, MalformedResponse, StorageUnavailable) as exc:
            logger.warning("Fetch failed, showing stored items: %s", exc)
            error = str(exc)
        return FeedRefresh(
            items=await self.list_view(status, category),
            fetched=fetched,
            error=error,
        )

    async def toggle_archive(self, item_id: str) -> ContentItem:
        """Flip an item between active and archived.

        Raises KeyError if the id does not exist.
        """
        updated = await self.store.update(item_id, ContentItem.toggled)
        if updated is None:
            raise KeyError(item_id)
        return updated

    async def remove(self, item_id: str) -> None:
        await self.store.delete_by_id(item_id)

    async def enrich(self, item_id: str, *, force: bool = False) -> ContentItem | None:
        """Generate and attach a background image.

        Returns the updated item, or None if the item disappeared while
        the image was being generated.  Image failures propagate and
        leave the stored item unchanged.

        Raises KeyError if the id does not exist.
        """
        item = await self.store.get(item_id)
        if item is None:
            raise KeyError(item_id)
        if item.generated_image and not force:
            return item

        image = await self.fetcher.enrich_with_image(item)

        updated = await self.store.update(item_id, lambda current: current.with_image(image))
        if updated is None:
            logger.info("Item %s was removed before its image arrived", item_id)
        return updated

    async def export_now(self) -> str:
        return await self.store.export_snapshot()

    async def import_from(self, contents: str | bytes) -> int:
        return await self.store.import_snapshot(contents)
