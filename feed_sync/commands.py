"""Commands accepted from the presentation layer."""

from dataclasses import dataclass
from typing import Any, Optional

from feed_sync.errors import FeedSyncError


@dataclass(frozen=True)
class Command:
    pass


@dataclass(frozen=True)
class AddFeed(Command):
    url: str
    title: Optional[str] = None
    category: str = ""


@dataclass(frozen=True)
class RemoveFeed(Command):
    feed_id: str


@dataclass(frozen=True)
class RefreshFeed(Command):
    feed_id: str


@dataclass(frozen=True)
class RefreshAll(Command):
    pass


@dataclass(frozen=True)
class MarkRead(Command):
    article_id: str
    feed_id: Optional[str] = None


@dataclass(frozen=True)
class MarkUnread(Command):
    article_id: str
    feed_id: Optional[str] = None


@dataclass(frozen=True)
class Dismiss(Command):
    article_id: str
    feed_id: Optional[str] = None


@dataclass(frozen=True)
class CommandResult:
    """Value of a successful command, or the error that stopped it."""

    value: Any = None
    error: Optional[FeedSyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
