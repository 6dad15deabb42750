"""Sync coordinator.

Refreshes one or many feeds: fetches concurrently (bounded), reconciles each
result against the store's current articles and commits per feed. A failing
feed is recorded on the feed and never aborts its siblings.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from feed_sync.errors import (
    FeedNotFound,
    FetchError,
    IoFailure,
    RefreshAlreadyInProgress,
)
from feed_sync.models.schemas import Article, Feed, utcnow
from feed_sync.services.fetcher import FeedFetcher
from feed_sync.services.reconciler import reconcile
from feed_sync.storage.store import JsonStore

logger = logging.getLogger(__name__)


class RefreshOutcome:
    """Result of refreshing one feed."""


@dataclass(frozen=True)
class Updated(RefreshOutcome):
    new_count: int


@dataclass(frozen=True)
class Unchanged(RefreshOutcome):
    pass


@dataclass(frozen=True)
class Failed(RefreshOutcome):
    error: Exception


class SyncCoordinator:
    """Orchestrates feed refreshes against a store.

    Args:
        store: Loaded store; the single writer of persisted state
        fetcher: Object with an async fetch(url, timeout, etag, last_modified)
        max_in_flight: Maximum number of concurrent fetches
        timeout: Per-fetch timeout in seconds
        clock: Returns the current time (injected in tests)
    """

    def __init__(
        self,
        store: JsonStore,
        fetcher: FeedFetcher,
        max_in_flight: int = 4,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.store = store
        self.fetcher = fetcher
        self.timeout = timeout
        self.clock = clock
        self._semaphore = asyncio.Semaphore(max_in_flight)
        self._in_flight: Set[str] = set()

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    def _claim(self, feed_id: str) -> None:
        if feed_id in self._in_flight:
            raise RefreshAlreadyInProgress(feed_id)
        self._in_flight.add(feed_id)

    async def refresh_one(self, feed_id: str) -> RefreshOutcome:
        """Refresh a single feed.

        Returns:
            Updated, Unchanged, or Failed when the fetch fails (including
            unexpected errors raised by the fetcher)

        Raises:
            FeedNotFound: if the feed does not exist
            RefreshAlreadyInProgress: if the feed is already being refreshed
            IoFailure: if committing the result fails
        """
        self.store.get_feed(feed_id)
        self._claim(feed_id)
        try:
            return await self._refresh(feed_id)
        finally:
            self._in_flight.discard(feed_id)

    async def refresh_all(self, feed_ids: Optional[Iterable[str]] = None) -> Dict[str, RefreshOutcome]:
        """Refresh many feeds concurrently.

        Args:
            feed_ids: Feeds to refresh (all stored feeds when None)

        Returns:
            Mapping of feed id to outcome. Nothing is raised for individual
            feeds; their errors are reported as Failed.
        """
        if feed_ids is None:
            ids = [feed.id for feed in self.store.list_feeds()]
        else:
            ids = list(dict.fromkeys(feed_ids))

        logger.info(f"Refreshing {len(ids)} feeds")

        outcomes: Dict[str, RefreshOutcome] = {}
        claimed: List[str] = []
        for feed_id in ids:
            try:
                self.store.get_feed(feed_id)
                self._claim(feed_id)
            except (FeedNotFound, RefreshAlreadyInProgress) as e:
                outcomes[feed_id] = Failed(e)
                continue
            claimed.append(feed_id)

        async def run(feed_id: str) -> Tuple[str, RefreshOutcome]:
            try:
                return feed_id, await self._refresh(feed_id)
            except (FeedNotFound, IoFailure) as e:
                logger.error(f"Refresh of {feed_id} could not be committed: {e}")
                return feed_id, Failed(e)
            except Exception as e:
                logger.error(f"Refresh of {feed_id} failed unexpectedly: {e}", exc_info=True)
                try:
                    await self._record_failure(feed_id, e)
                except (FeedNotFound, IoFailure) as record_error:
                    logger.error(f"Could not record failure of {feed_id}: {record_error}")
                return feed_id, Failed(e)
            finally:
                self._in_flight.discard(feed_id)

        results = await asyncio.gather(*(run(feed_id) for feed_id in claimed))
        outcomes.update(results)

        updated = sum(1 for o in outcomes.values() if isinstance(o, Updated))
        failed = sum(1 for o in outcomes.values() if isinstance(o, Failed))
        logger.info(f"Refresh complete: {updated} updated, {failed} failed, {len(outcomes) - updated - failed} unchanged")
        return outcomes

    async def _refresh(self, feed_id: str) -> RefreshOutcome:
        feed = self.store.get_feed(feed_id)

        async with self._semaphore:
            try:
                result = await self.fetcher.fetch(
                    feed.url,
                    timeout=self.timeout,
                    etag=feed.etag,
                    last_modified=feed.last_modified,
                )
            except FetchError as e:
                logger.warning(f"Refresh of {feed_id} failed: {e}")
                await self._record_failure(feed_id, e)
                return Failed(e)
            except Exception as e:
                logger.error(f"Fetcher raised unexpectedly for {feed_id}: {e}", exc_info=True)
                await self._record_failure(feed_id, e)
                return Failed(e)

        now = self.clock()

        def apply(current: Feed, articles: List[Article]) -> Tuple[Feed, List[Article], int]:
            synced = replace(
                current,
                title=result.title if result.title and current.title == current.url else current.title,
                last_synced_at=now,
                last_attempt_at=now,
                last_error=None,
                etag=result.etag,
                last_modified=result.last_modified,
            )
            if result.not_modified:
                return synced, articles, 0
            merged, new_count = reconcile(articles, result.articles, now, feed_id=current.id)
            return synced, merged, new_count

        new_count = await self.store.update_feed(feed_id, apply)

        if new_count:
            logger.info(f"Feed {feed_id}: {new_count} new articles")
            return Updated(new_count)
        return Unchanged()

    async def _record_failure(self, feed_id: str, error: Exception) -> None:
        now = self.clock()

        def apply(current: Feed, articles: List[Article]) -> Tuple[Feed, List[Article], None]:
            return replace(current, last_attempt_at=now, last_error=str(error) or type(error).__name__), articles, None

        await self.store.update_feed(feed_id, apply)


__all__ = [
    "SyncCoordinator",
    "RefreshOutcome",
    "Updated",
    "Unchanged",
    "Failed",
]
