"""Application state for feed_sync.

FeedReaderApp owns the loaded store, the fetcher and the sync coordinator.
It is built at startup from a ServerConfig, loads the store in start(),
answers snapshot queries, executes commands, and flushes on close().
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Type

from feed_sync.commands import (
    AddFeed,
    Command,
    CommandResult,
    Dismiss,
    MarkRead,
    MarkUnread,
    RefreshAll,
    RefreshFeed,
    RemoveFeed,
)
from feed_sync.config import ServerConfig
from feed_sync.errors import FeedSyncError
from feed_sync.models.schemas import Snapshot
from feed_sync.services.coordinator import SyncCoordinator
from feed_sync.services.fetcher import FeedFetcher
from feed_sync.storage.store import JsonStore

logger = logging.getLogger(__name__)


class FeedReaderApp:
    """Explicitly owned application state.

    Args:
        config: Server configuration
        fetcher: Optional fetcher (a FeedFetcher built from config by default)
    """

    def __init__(self, config: ServerConfig, fetcher: Optional[FeedFetcher] = None):
        self.config = config
        self.store = JsonStore(config.store_path)
        self.fetcher = fetcher or FeedFetcher(timeout=config.fetch_timeout, user_agent=config.user_agent)
        self.coordinator = SyncCoordinator(
            self.store,
            self.fetcher,
            max_in_flight=config.max_in_flight,
            timeout=config.fetch_timeout,
        )
        self._handlers: Dict[Type[Command], Callable[[Command], Awaitable[object]]] = {
            AddFeed: self._add_feed,
            RemoveFeed: self._remove_feed,
            RefreshFeed: self._refresh_feed,
            RefreshAll: self._refresh_all,
            MarkRead: self._mark_read,
            MarkUnread: self._mark_unread,
            Dismiss: self._dismiss,
        }
        self.started = False

    async def start(self, recover_from_backup: bool = False) -> None:
        """Load persisted state.

        Raises:
            CorruptStore: if the store is unreadable and recovery was not requested
            IoFailure: if the store cannot be read
        """
        if recover_from_backup:
            self.store.load_backup()
        else:
            self.store.load()
        self.started = True

    async def close(self) -> None:
        """Flush the current state to disk."""
        if self.started:
            await self.store.flush()
            self.started = False
            logger.info("Store flushed on shutdown")

    def snapshot(self, include_dismissed: bool = False) -> Snapshot:
        return self.store.snapshot(include_dismissed=include_dismissed)

    async def execute(self, command: Command) -> CommandResult:
        """Run a command and capture its result or error."""
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command: {command!r}")

        try:
            value = await handler(command)
        except FeedSyncError as e:
            logger.info(f"{type(command).__name__} failed: {e}")
            return CommandResult(error=e)
        return CommandResult(value=value)

    async def _add_feed(self, command: AddFeed):
        return await self.store.add_feed(command.url, title=command.title, category=command.category)

    async def _remove_feed(self, command: RemoveFeed):
        return await self.store.remove_feed(command.feed_id)

    async def _refresh_feed(self, command: RefreshFeed):
        return await self.coordinator.refresh_one(command.feed_id)

    async def _refresh_all(self, command: RefreshAll):
        return await self.coordinator.refresh_all()

    async def _mark_read(self, command: MarkRead):
        return await self.store.mark_read(command.article_id, feed_id=command.feed_id)

    async def _mark_unread(self, command: MarkUnread):
        return await self.store.mark_read(command.article_id, feed_id=command.feed_id, read=False)

    async def _dismiss(self, command: Dismiss):
        return await self.store.dismiss(command.article_id, feed_id=command.feed_id)
