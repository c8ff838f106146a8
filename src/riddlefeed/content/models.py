"""Quiz and riddle item models, validated with pydantic.

A ContentItem is one quiz or riddle card: the prompt shown on the card,
the explanation and solution behind it, a category label, and a style
hint used when generating a background image.  Items are either active
(in the main feed) or archived (hidden but retained).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StringConstraints,
    field_validator,
)

BACKUP_VERSION = 1

HOOK_DELIMITER = "|"

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class LifecycleStatus(StrEnum):
    """Lifecycle status of a content item."""

    ACTIVE = "active"
    ARCHIVED = "archived"


class Category(StrEnum):
    """Known category labels.

    Items may carry labels outside this set; ``ALL`` is a view-only
    label meaning "no category filter".
    """

    LOGIC_MATH = "Logic & Math"
    SCIENCE_TECH = "Science & Tech"
    GENERAL_KNOWLEDGE = "General Knowledge"
    LANGUAGE_LIT = "Language & Literature"
    POP_CULTURE = "Pop Culture"
    THE_ARTS = "The Arts"
    NATURE_ANIMALS = "Nature & Animals"
    PSYCHOLOGY = "Psychology"
    ALL = "All"


def split_display_text(display_text: str) -> tuple[str, str]:
    """Split ``"prompt | hook"`` into its two parts.

    Only the first delimiter separates; the hook is ``""`` when absent.
    """
    prompt, _sep, hook = display_text.partition(HOOK_DELIMITER)
    return prompt.strip(), hook.strip()


class ContentItem(BaseModel):
    """A stored quiz/riddle item.

    Frozen: changes go through ``model_copy(update=...)`` so that callers
    holding an item never see the store's copy change under them.
    """

    model_config = ConfigDict(frozen=True)

    id: NonEmptyStr
    display_text: NonEmptyStr
    explanation: str = ""
    solution: str = ""
    category: NonEmptyStr
    style_hint: str = ""
    generated_image: str | None = None
    created_at: StrictInt
    status: LifecycleStatus = LifecycleStatus.ACTIVE

    @property
    def prompt(self) -> str:
        return split_display_text(self.display_text)[0]

    @property
    def hook(self) -> str:
        return split_display_text(self.display_text)[1]

    @property
    def is_archived(self) -> bool:
        return self.status == LifecycleStatus.ARCHIVED

    def toggled(self) -> ContentItem:
        """Return a copy with the lifecycle status flipped."""
        status = LifecycleStatus.ACTIVE if self.is_archived else LifecycleStatus.ARCHIVED
        return self.model_copy(update={"status": status})

    def with_image(self, image: str) -> ContentItem:
        """Return a copy carrying a generated image reference."""
        return self.model_copy(update={"generated_image": image})


class RawItem(BaseModel):
    """A loosely-typed record as returned by the generation collaborator.

    Accepts snake_case, camelCase, and the legacy wire names
    (``visual_text``, ``read_more_content``, ``answer``).
    """

    model_config = ConfigDict(extra="ignore")

    display_text: NonEmptyStr = Field(
        validation_alias=AliasChoices("display_text", "displayText", "visual_text"),
    )
    explanation: str = Field(
        default="",
        validation_alias=AliasChoices("explanation", "read_more_content", "readMoreContent"),
    )
    solution: str = Field(
        default="",
        validation_alias=AliasChoices("solution", "answer"),
    )
    category: NonEmptyStr
    style_hint: str = Field(
        default="",
        validation_alias=AliasChoices("style_hint", "styleHint"),
    )

    @field_validator("explanation", "solution", "style_hint", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return "" if value is None else value

    def to_item(self, item_id: str, created_at: int) -> ContentItem:
        """Promote to a ContentItem with system-assigned identity."""
        return ContentItem(
            id=item_id,
            display_text=self.display_text,
            explanation=self.explanation,
            solution=self.solution,
            category=self.category,
            style_hint=self.style_hint,
            created_at=created_at,
        )


class BackupEnvelope(BaseModel):
    """On-disk and backup file format: a version marker plus every item."""

    version: StrictInt
    items: list[ContentItem] = Field(default_factory=list)
