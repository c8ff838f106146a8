"""Content domain: items, the local store, fetching, and feed views.

A single ContentItem model tracks each quiz/riddle from generation
through archiving, and a JSON-backed LocalContentStore persists them.
"""

from riddlefeed.content.feed import project
from riddlefeed.content.fetcher import ContentFetcher
from riddlefeed.content.models import (
    Category,
    ContentItem,
    LifecycleStatus,
    RawItem,
)
from riddlefeed.content.services import FeedRefresh, FeedService
from riddlefeed.content.store import LocalContentStore

__all__ = [
    "Category",
    "ContentFetcher",
    "ContentItem",
    "FeedRefresh",
    "FeedService",
    "LifecycleStatus",
    "LocalContentStore",
    "RawItem",
    "project",
]
