"""JSON-backed local content store.

Persists every ContentItem in a single JSON file using the same
envelope as a backup (``{"version": 1, "items": [...]}``).  The file is
loaded lazily on first access and rewritten after every mutation.

Each mutating call is atomic: the new state is built on a copy, written
to a temp file that is renamed over the store, and only then swapped in
memory.  Mutations are serialized by an asyncio lock, so concurrent
writers to the same id resolve as last-writer-wins.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from pydantic import ValidationError

from riddlefeed.content.models import BACKUP_VERSION, BackupEnvelope, ContentItem
from riddlefeed.errors import InvalidBackup, StorageUnavailable

logger = logging.getLogger(__name__)

STORE_FILENAME = "riddlefeed-store.json"


def serialize_items(items: Iterable[ContentItem]) -> str:
    """Render items as a versioned JSON envelope."""
    envelope = BackupEnvelope(version=BACKUP_VERSION, items=list(items))
    return envelope.model_dump_json(indent=2)


def parse_snapshot(blob: str | bytes) -> list[ContentItem]:
    """Validate a backup blob and return its items.

    The whole blob is rejected if anything is wrong with it: a partial
    restore would silently lose data.

    Raises:
        InvalidBackup: On a parse error, a missing or unsupported version,
            a non-array ``items``, an invalid record, or duplicate ids.
    """
    try:
        raw = json.loads(blob)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError, RecursionError) as exc:
        raise InvalidBackup(f"Backup is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise InvalidBackup("Backup must be a JSON object")

    version = raw.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise InvalidBackup("Backup has a missing or non-integer version")
    if version != BACKUP_VERSION:
        raise InvalidBackup(f"Unsupported backup version {version} (expected {BACKUP_VERSION})")

    if not isinstance(raw.get("items"), list):
        raise InvalidBackup("Backup 'items' must be an array")

    try:
        envelope = BackupEnvelope.model_validate(raw)
    except ValidationError as exc:
        raise InvalidBackup(f"Backup contains {exc.error_count()} invalid field(s): {exc}") from exc

    seen: set[str] = set()
    for item in envelope.items:
        if item.id in seen:
            raise InvalidBackup(f"Backup contains duplicate id {item.id!r}")
        seen.add(item.id)
    return envelope.items


class LocalContentStore:
    """Async CRUD store for content items, keyed by id."""

    def __init__(self, directory: Path) -> None:
        self._path = Path(directory) / STORE_FILENAME
        self._items: dict[str, ContentItem] | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ── Private helpers ──────────────────────────────────────────

    def _load(self) -> dict[str, ContentItem]:
        try:
            data = self._path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read content store at {self._path}: {exc}") from exc

        try:
            raw = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError):
            logger.warning("Corrupt content store at %s, starting fresh", self._path)
            return {}

        records = raw.get("items") if isinstance(raw, dict) else None
        if not isinstance(records, list):
            logger.warning("Content store at %s has no item list, starting fresh", self._path)
            return {}
        if raw.get("version") != BACKUP_VERSION:
            logger.warning(
                "Content store at %s has version %r, expected %d",
                self._path,
                raw.get("version"),
                BACKUP_VERSION,
            )

        items: dict[str, ContentItem] = {}
        skipped = 0
        for index, record in enumerate(records):
            try:
                item = ContentItem.model_validate(record)
            except ValidationError as exc:
                skipped += 1
                logger.warning("Skipping corrupt record #%d in %s: %s", index, self._path, exc)
                continue
            items[item.id] = item
        if skipped:
            logger.warning("Loaded %d item(s), skipped %d corrupt record(s)", len(items), skipped)
        return items

    def _write(self, items: dict[str, ContentItem]) -> None:
        payload = serialize_items(items.values())
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise StorageUnavailable(f"Cannot write content store at {self._path}: {exc}") from exc

    async def _state(self) -> dict[str, ContentItem]:
        if self._items is None:
            self._items = await asyncio.to_thread(self._load)
        return self._items

    async def _commit(self, items: dict[str, ContentItem]) -> None:
        await asyncio.to_thread(self._write, items)
        self._items = items

    # ── Write operations ─────────────────────────────────────────

    async def upsert_many(self, items: Iterable[ContentItem]) -> None:
        """Insert or replace items by id, all or nothing.

        Raises:
            StorageUnavailable: The write failed; nothing was applied.
        """
        batch = list(items)
        if not batch:
            return
        async with self._lock:
            updated = dict(await self._state())
            for item in batch:
                updated[item.id] = item
            await self._commit(updated)
        logger.debug("Upserted %d item(s)", len(batch))

    async def delete_by_id(self, item_id: str) -> None:
        """Remove an item; a missing id is a no-op."""
        async with self._lock:
            current = await self._state()
            if item_id not in current:
                return
            updated = {key: item for key, item in current.items() if key != item_id}
            await self._commit(updated)
        logger.debug("Deleted item %s", item_id)

    async def update(
        self, item_id: str, change: Callable[[ContentItem], ContentItem]
    ) -> ContentItem | None:
        """Replace an item with ``change(item)`` if it still exists.

        The lookup and the write happen under one lock hold; a deleted
        item stays deleted.

        Returns:
            The new item, or None if the id does not exist.
        """
        async with self._lock:
            current = await self._state()
            item = current.get(item_id)
            if item is None:
                return None
            changed = change(item)
            updated = dict(current)
            updated[item_id] = changed
            await self._commit(updated)
        logger.debug("Updated item %s", item_id)
        return changed

    async def import_snapshot(self, blob: str | bytes) -> int:
        """Replace the whole store with a validated backup.

        Returns:
            The number of items restored.

        Raises:
            InvalidBackup: Validation failed; the store is unchanged.
            StorageUnavailable: The write failed; the store is unchanged.
        """
        items = parse_snapshot(blob)
        async with self._lock:
            await self._state()
            await self._commit({item.id: item for item in items})
        logger.info("Imported %d item(s) into %s", len(items), self._path)
        return len(items)

    # ── Read operations ──────────────────────────────────────────

    async def get_all(self) -> list[ContentItem]:
        """Return every item regardless of status, in storage order."""
        async with self._lock:
            return list((await self._state()).values())

    async def get(self, item_id: str) -> ContentItem | None:
        """Return an item by id, or None if not found."""
        async with self._lock:
            return (await self._state()).get(item_id)

    async def export_snapshot(self) -> str:
        """Serialize the whole store as a backup blob."""
        async with self._lock:
            return serialize_items((await self._state()).values())
