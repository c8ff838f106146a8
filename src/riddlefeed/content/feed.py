"""Feed projection: derive the displayed slice from the full item set.

Pure functions only: no storage or network access.
"""

from __future__ import annotations

from collections.abc import Iterable

from riddlefeed.content.models import Category, ContentItem, LifecycleStatus


def _category_filter(category: str | None) -> str | None:
    if category is None or category == Category.ALL:
        return None
    return category


def project(
    items: Iterable[ContentItem],
    status: LifecycleStatus = LifecycleStatus.ACTIVE,
    category: str | None = None,
) -> list[ContentItem]:
    """Filter and order items for display.

    Keeps items whose status matches exactly.  The category filter only
    applies to the active view; the archived view always spans every
    category.  Results are newest first, ties keeping input order.

    Args:
        items: Every known item, in storage order.
        status: Lifecycle status to show.
        category: Exact category label, or None / ``"All"`` for every category.

    Returns:
        A new list; the input is not modified.
    """
    wanted = _category_filter(category) if status == LifecycleStatus.ACTIVE else None
    selected = [
        item
        for item in items
        if item.status == status and (wanted is None or item.category == wanted)
    ]
    # sorted() is stable, so equal timestamps keep storage order
    return sorted(selected, key=lambda item: item.created_at, reverse=True)


def categories_in(items: Iterable[ContentItem]) -> list[str]:
    """Return the distinct categories present, known labels first."""
    present = {item.category for item in items}
    known = [c.value for c in Category if c != Category.ALL and c.value in present]
    extra = sorted(present - set(known))
    return known + extra
