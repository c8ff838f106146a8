"""Error taxonomy shared by the fetch, retry, and storage layers."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from riddlefeed.content.models import ContentItem


class RiddlefeedError(Exception):
    """Base error for riddlefeed."""


class RemoteError(RiddlefeedError):
    """A call to a remote collaborator failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientRemoteFailure(RemoteError):
    """Rate limited or server fault; worth retrying after a delay."""


class TerminalRemoteFailure(RemoteError):
    """Bad request, auth failure, or policy rejection; never retried."""


class RemoteExhausted(RemoteError):
    """Transient failures persisted through every allowed attempt."""

    def __init__(
        self, last_error: BaseException, attempts: int, *, status: int | None = None
    ) -> None:
        super().__init__(f"Still failing after {attempts} attempt(s): {last_error}", status=status)
        self.last_error = last_error
        self.attempts = attempts


class NoImageProduced(RemoteError):
    """The image collaborator answered without an inline image."""


class MalformedResponse(RiddlefeedError):
    """The collaborator's payload could not be sanitized or parsed."""


class StorageUnavailable(RiddlefeedError):
    """The local store could not be read or written."""


class FetchNotPersisted(StorageUnavailable):
    """Items were fetched successfully but the store write failed.

    The fetched items are kept on the exception so the caller can retry
    the write instead of fetching again.
    """

    def __init__(self, items: Sequence[ContentItem], cause: BaseException) -> None:
        super().__init__(f"Fetched {len(items)} item(s) but could not store them: {cause}")
        self.items = list(items)


class InvalidBackup(RiddlefeedError):
    """A backup blob failed validation; the store was left untouched."""
