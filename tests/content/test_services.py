"""Tests for FeedService orchestration over a real store and fake backends."""

from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from riddlefeed.content.fetcher import ContentFetcher
from riddlefeed.content.models import ContentItem, LifecycleStatus
from riddlefeed.content.services import FeedService
from riddlefeed.content.store import LocalContentStore
from riddlefeed.errors import (
    FetchNotPersisted,
    InvalidBackup,
    NoImageProduced,
    StorageUnavailable,
    TerminalRemoteFailure,
    TransientRemoteFailure,
)
from riddlefeed.shared.retry import RetryableInvoker, RetryPolicy

NOW = 5_000


class _FakeGenerator:
    def __init__(self, *responses: object) -> None:
        self.responses = list(responses)

    async def generate(self, prompt: str, *, system: str, shape: object) -> str:
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return str(response)


class _FakeImages:
    def __init__(self, result: object = "data:image/png;base64,IMG", before=None) -> None:
        self.result = result
        self.before = before
        self.calls = 0

    async def generate(self, description: str, *, aspect_ratio: str = "1:1") -> str:
        self.calls += 1
        if self.before is not None:
            await self.before()
        if isinstance(self.result, BaseException):
            raise self.result
        return str(self.result)


async def _no_sleep(_delay: float) -> None:
    return None


def _batch(*categories: str) -> str:
    return json.dumps(
        [
            {"display_text": f"Q{n} | hook", "solution": "S", "category": category}
            for n, category in enumerate(categories)
        ]
    )


def _item(item_id: str, created_at: int, **kwargs: object) -> ContentItem:
    return ContentItem(
        id=item_id,
        display_text=f"Q {item_id}",
        category=kwargs.pop("category", "Logic & Math"),
        created_at=created_at,
        **kwargs,
    )


def _service(
    tmp_path: Path,
    generator: _FakeGenerator | None = None,
    images: _FakeImages | None = None,
) -> FeedService:
    store = LocalContentStore(tmp_path)
    fetcher = ContentFetcher(
        generator or _FakeGenerator(),
        RetryableInvoker(RetryPolicy(max_jitter=0), sleep=_no_sleep),
        images=images,  # type: ignore[arg-type]
        clock=lambda: NOW,
    )
    return FeedService(store, fetcher)


class TestListView:
    def test_projects_stored_items(self, tmp_path):
        service = _service(tmp_path)
        archived = _item("b", 2).toggled()

        async def run() -> tuple[list[ContentItem], list[ContentItem]]:
            await service.store.upsert_many([_item("a", 1), archived, _item("c", 3)])
            return (
                await service.list_view(),
                await service.list_view(LifecycleStatus.ARCHIVED),
            )

        active, archived_view = asyncio.run(run())
        assert [i.id for i in active] == ["c", "a"]
        assert [i.id for i in archived_view] == ["b"]

    def test_category_filter(self, tmp_path):
        service = _service(tmp_path)

        async def run() -> list[ContentItem]:
            await service.store.upsert_many(
                [_item("a", 1, category="Psychology"), _item("b", 2, category="The Arts")]
            )
            return await service.list_view(category="Psychology")

        assert [i.id for i in asyncio.run(run())] == ["a"]


class TestRequestFetch:
    def test_persists_fetched_items(self, tmp_path):
        service = _service(tmp_path, _FakeGenerator(_batch("Psychology", "The Arts")))

        async def run() -> tuple[list[ContentItem], list[ContentItem]]:
            fetched = await service.request_fetch("p")
            return fetched, await service.store.get_all()

        fetched, stored = asyncio.run(run())
        assert len(fetched) == 2
        assert {i.id for i in stored} == {i.id for i in fetched}
        assert service.store.path.exists()

    def test_write_failure_keeps_items_on_error(self, tmp_path):
        service = _service(tmp_path, _FakeGenerator(_batch("Psychology")))

        with patch.object(
            LocalContentStore, "_write", side_effect=StorageUnavailable("disk full")
        ):
            with pytest.raises(FetchNotPersisted) as exc_info:
                asyncio.run(service.request_fetch("p"))

        assert isinstance(exc_info.value, StorageUnavailable)
        assert len(exc_info.value.items) == 1
        assert exc_info.value.items[0].category == "Psychology"
        assert asyncio.run(service.store.get_all()) == []

    def test_remote_failure_stores_nothing(self, tmp_path):
        service = _service(tmp_path, _FakeGenerator(TerminalRemoteFailure("nope", status=400)))

        with pytest.raises(TerminalRemoteFailure):
            asyncio.run(service.request_fetch("p"))

        assert not service.store.path.exists()

    def test_request_custom(self, tmp_path):
        record = {"display_text": "Q | H", "category": "Pop Culture", "solution": "S"}
        service = _service(tmp_path, _FakeGenerator(json.dumps(record)))

        async def run() -> tuple[ContentItem, ContentItem | None]:
            item = await service.request_custom("lighthouses")
            return item, await service.store.get(item.id)

        item, stored = asyncio.run(run())
        assert item.id.startswith("custom-")
        assert stored == item


class TestSpawnFetch:
    def test_abandoned_fetch_is_still_stored(self, tmp_path):
        service = _service(tmp_path, _FakeGenerator(_batch("Psychology", "The Arts")))

        async def run() -> list[ContentItem]:
            service.spawn_fetch("p")
            # caller walks away; poll the store until the result lands
            for _ in range(500):
                stored = await service.store.get_all()
                if stored:
                    return stored
                await asyncio.sleep(0.01)
            return []

        assert len(asyncio.run(run())) == 2

    def test_abandoned_failure_is_logged(self, tmp_path, caplog):
        service = _service(tmp_path, _FakeGenerator(TerminalRemoteFailure("bad key", status=401)))

        async def run() -> None:
            task = service.spawn_fetch("p")
            await asyncio.wait([task])
            await asyncio.sleep(0)

        with caplog.at_level("WARNING", logger="riddlefeed.content.services"):
            asyncio.run(run())

        assert "Background fetch failed: bad key" in caplog.text
        assert not service._background

    def test_cancelled_fetch_is_not_logged(self, tmp_path, caplog):
        service = _service(tmp_path, _FakeGenerator(_batch("Psychology")))

        async def run() -> None:
            task = service.spawn_fetch("p")
            task.cancel()
            await asyncio.wait([task])
            await asyncio.sleep(0)

        with caplog.at_level("WARNING", logger="riddlefeed.content.services"):
            asyncio.run(run())

        assert "Background fetch failed" not in caplog.text
        assert not service._background


class TestRefresh:
    def test_success_reports_count(self, tmp_path):
        service = _service(tmp_path, _FakeGenerator(_batch("Psychology")))

        result = asyncio.run(service.refresh("p"))

        assert result.fetched == 1
        assert result.error is None
        assert len(result.items) == 1

    def test_failure_falls_back_to_stored_items(self, tmp_path):
        exhausted = [TransientRemoteFailure("busy", status=429)] * 3
        service = _service(tmp_path, _FakeGenerator(*exhausted))

        async def run():
            await service.store.upsert_many([_item("old", 1)])
            return await service.refresh("p")

        result = asyncio.run(run())
        assert result.fetched == 0
        assert result.error is not None
        assert [i.id for i in result.items] == ["old"]

    def test_malformed_response_falls_back(self, tmp_path):
        service = _service(tmp_path, _FakeGenerator("not json at all"))

        result = asyncio.run(service.refresh("p"))

        assert result.items == []
        assert result.error


class TestToggleArchive:
    def test_round_trip(self, tmp_path):
        service = _service(tmp_path)

        async def run() -> tuple[ContentItem, list[ContentItem], ContentItem, list[ContentItem]]:
            await service.store.upsert_many([_item("a", 1)])
            archived = await service.toggle_archive("a")
            archived_view = await service.list_view(LifecycleStatus.ARCHIVED)
            restored = await service.toggle_archive("a")
            return archived, archived_view, restored, await service.list_view()

        archived, archived_view, restored, active_view = asyncio.run(run())
        assert archived.status == LifecycleStatus.ARCHIVED
        assert [i.id for i in archived_view] == ["a"]
        assert restored.status == LifecycleStatus.ACTIVE
        assert [i.id for i in active_view] == ["a"]
        assert restored.created_at == 1

    def test_unknown_id(self, tmp_path):
        service = _service(tmp_path)
        with pytest.raises(KeyError):
            asyncio.run(service.toggle_archive("missing"))


class TestRemove:
    def test_removes_item(self, tmp_path):
        service = _service(tmp_path)

        async def run() -> list[ContentItem]:
            await service.store.upsert_many([_item("a", 1), _item("b", 2)])
            await service.remove("a")
            await service.remove("never-existed")
            return await service.store.get_all()

        assert [i.id for i in asyncio.run(run())] == ["b"]


class TestEnrich:
    def test_attaches_image(self, tmp_path):
        images = _FakeImages("data:image/png;base64,NEW")
        service = _service(tmp_path, images=images)

        async def run() -> tuple[ContentItem | None, ContentItem | None]:
            await service.store.upsert_many([_item("a", 1)])
            updated = await service.enrich("a")
            return updated, await service.store.get("a")

        updated, stored = asyncio.run(run())
        assert updated is not None
        assert updated.generated_image == "data:image/png;base64,NEW"
        assert stored == updated

    def test_skips_item_with_image(self, tmp_path):
        images = _FakeImages()
        service = _service(tmp_path, images=images)

        async def run() -> ContentItem | None:
            await service.store.upsert_many([_item("a", 1, generated_image="data:old")])
            return await service.enrich("a")

        result = asyncio.run(run())
        assert result is not None
        assert result.generated_image == "data:old"
        assert images.calls == 0

    def test_force_regenerates(self, tmp_path):
        images = _FakeImages("data:new")
        service = _service(tmp_path, images=images)

        async def run() -> ContentItem | None:
            await service.store.upsert_many([_item("a", 1, generated_image="data:old")])
            return await service.enrich("a", force=True)

        result = asyncio.run(run())
        assert result is not None
        assert result.generated_image == "data:new"

    def test_item_deleted_while_generating(self, tmp_path):
        holder: dict[str, FeedService] = {}

        async def delete_first() -> None:
            await holder["service"].remove("a")

        service = _service(tmp_path, images=_FakeImages(before=delete_first))
        holder["service"] = service

        async def run() -> tuple[ContentItem | None, list[ContentItem]]:
            await service.store.upsert_many([_item("a", 1)])
            result = await service.enrich("a")
            return result, await service.store.get_all()

        result, stored = asyncio.run(run())
        assert result is None
        assert stored == []

    def test_delete_queued_behind_another_writer_still_wins(self, tmp_path, monkeypatch):
        # "b" is being written (lock held) when the image arrives; the enrich
        # write queues first, then the delete of "a" queues behind it.
        gate = threading.Event()
        image_ready = asyncio.Event()
        writers: list[asyncio.Task[None]] = []

        async def start_slow_writer() -> None:
            writers.append(asyncio.create_task(service.store.upsert_many([_item("b", 2)])))
            await asyncio.sleep(0)
            image_ready.set()

        service = _service(tmp_path, images=_FakeImages(before=start_slow_writer))
        original_write = service.store._write

        def gated_write(items):
            gate.wait(5)
            original_write(items)

        async def run() -> tuple[ContentItem | None, list[ContentItem]]:
            await service.store.upsert_many([_item("a", 1)])
            monkeypatch.setattr(service.store, "_write", gated_write)
            enriching = asyncio.create_task(service.enrich("a"))
            await image_ready.wait()
            deleting = asyncio.create_task(service.remove("a"))
            await asyncio.sleep(0)
            gate.set()
            result, *_ = await asyncio.gather(enriching, deleting, *writers)
            return result, await service.store.get_all()

        result, stored = asyncio.run(run())
        assert result is not None
        assert result.generated_image == "data:image/png;base64,IMG"
        assert [i.id for i in stored] == ["b"]

    def test_failure_leaves_item_unchanged(self, tmp_path):
        service = _service(tmp_path, images=_FakeImages(NoImageProduced("empty")))

        async def run() -> ContentItem | None:
            await service.store.upsert_many([_item("a", 1)])
            with pytest.raises(NoImageProduced):
                await service.enrich("a")
            return await service.store.get("a")

        stored = asyncio.run(run())
        assert stored is not None
        assert stored.generated_image is None

    def test_unknown_id(self, tmp_path):
        service = _service(tmp_path, images=_FakeImages())
        with pytest.raises(KeyError):
            asyncio.run(service.enrich("missing"))


class TestBackup:
    def test_export_then_import_restores_state(self, tmp_path):
        source = _service(tmp_path / "src")
        target = _service(tmp_path / "dst")

        async def run() -> list[ContentItem]:
            await source.store.upsert_many([_item("a", 1), _item("b", 2).toggled()])
            blob = await source.export_now()
            await target.store.upsert_many([_item("stale", 9)])
            restored = await target.import_from(blob)
            assert restored == 2
            return await target.store.get_all()

        items = asyncio.run(run())
        assert {i.id: i.status for i in items} == {
            "a": LifecycleStatus.ACTIVE,
            "b": LifecycleStatus.ARCHIVED,
        }

    def test_invalid_import_leaves_store_untouched(self, tmp_path):
        service = _service(tmp_path)

        async def run() -> list[ContentItem]:
            await service.store.upsert_many([_item("a", 1)])
            with pytest.raises(InvalidBackup):
                await service.import_from('{"version": 2, "items": []}')
            return await service.store.get_all()

        assert [i.id for i in asyncio.run(run())] == ["a"]
