"""JSON file storage for feed_sync.

This module keeps feeds and their articles in a single human-readable JSON
document and commits it atomically (temp file, fsync, rename).
Store location: ~/.feed_sync/state.json (or FEED_SYNC_STORE_PATH env var)
"""

import asyncio
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from feed_sync.errors import (
    ArticleNotFound,
    CorruptStore,
    DuplicateFeed,
    FeedNotFound,
    IoFailure,
)
from feed_sync.models.schemas import (
    Article,
    Feed,
    FeedView,
    Snapshot,
    feed_id_for_url,
    presentation_order,
    utcnow,
)

logger = logging.getLogger(__name__)

STORE_VERSION = 1

T = TypeVar("T")

# (feed, articles) -> (new feed, new articles, result)
FeedTransform = Callable[[Feed, List[Article]], Tuple[Feed, List[Article], T]]


@dataclass
class StoreState:
    """In-memory copy of the last committed state."""

    feeds: Dict[str, Feed] = field(default_factory=dict)
    articles: Dict[str, List[Article]] = field(default_factory=dict)


def _serialize(feeds: Dict[str, Feed], articles: Dict[str, List[Article]]) -> str:
    document = {
        "version": STORE_VERSION,
        "feeds": {feed_id: feed.to_dict() for feed_id, feed in feeds.items()},
        "articles": {
            feed_id: [article.to_dict() for article in feed_articles]
            for feed_id, feed_articles in articles.items()
        },
    }
    return json.dumps(document, indent=2, ensure_ascii=False, sort_keys=True)


def _deserialize(text: str) -> StoreState:
    """Parse a store document.

    Raises:
        ValueError, KeyError, TypeError, AttributeError: if the document is malformed
    """
    document = json.loads(text)
    if not isinstance(document, dict):
        raise ValueError("store document is not an object")
    version = document.get("version", STORE_VERSION)
    if version != STORE_VERSION:
        raise ValueError(f"unsupported store version {version!r}")

    raw_feeds = document.get("feeds", {})
    raw_articles = document.get("articles", {})
    if not isinstance(raw_feeds, dict) or not isinstance(raw_articles, dict):
        raise ValueError("feeds and articles must be objects")

    feeds: Dict[str, Feed] = {}
    for feed_id, data in raw_feeds.items():
        if not isinstance(data, dict):
            raise ValueError(f"feed {feed_id!r} is not an object")
        feed = Feed.from_dict(data)
        if feed.id != feed_id:
            raise ValueError(f"feed key {feed_id!r} does not match id {feed.id!r}")
        feeds[feed_id] = feed

    articles: Dict[str, List[Article]] = {feed_id: [] for feed_id in feeds}
    for feed_id, items in raw_articles.items():
        if not isinstance(items, list):
            raise ValueError(f"articles of feed {feed_id!r} are not a list")
        if feed_id not in feeds:
            # Orphaned articles cannot be shown or reached; drop them
            logger.warning(f"Dropping {len(items)} articles for unknown feed {feed_id}")
            continue
        seen = set()
        loaded = []
        for data in items:
            if not isinstance(data, dict):
                raise ValueError(f"article entry in feed {feed_id!r} is not an object")
            article = Article.from_dict(data)
            if article.id in seen:
                raise ValueError(f"duplicate article {article.id!r} in feed {feed_id!r}")
            seen.add(article.id)
            loaded.append(article)
        articles[feed_id] = presentation_order(loaded)

    return StoreState(feeds=feeds, articles=articles)


class JsonStore:
    """Durable store of feeds and articles.

    The in-memory state is only replaced after the corresponding commit has
    reached disk, so a failed commit leaves both the file and the memory view
    at the previous state. All mutations are serialized by a single lock.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.backup_path = self.path.with_name(self.path.name + ".bak")
        self._state = StoreState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> StoreState:
        return self._state

    def _read(self, path: Path) -> StoreState:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No store at {path}, starting empty")
            return StoreState()
        except OSError as e:
            raise IoFailure(f"Failed to read store {path}: {e}", str(path)) from e

        try:
            return _deserialize(text)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            backup = str(self.backup_path) if self.backup_path.exists() else None
            raise CorruptStore(f"Store {path} is corrupt: {e}", str(path), backup) from e

    def load(self) -> StoreState:
        """Load the state from disk and make it current.

        Returns:
            The loaded state (empty if the file does not exist)

        Raises:
            CorruptStore: if the file exists but cannot be deserialized
            IoFailure: if the file cannot be read
        """
        self._state = self._read(self.path)
        logger.info(
            f"Loaded {len(self._state.feeds)} feeds and "
            f"{sum(len(a) for a in self._state.articles.values())} articles from {self.path}"
        )
        return self._state

    def load_backup(self) -> StoreState:
        """Load the copy of the previous good commit after a CorruptStore.

        The corrupt file is left in place; the next commit overwrites it.
        """
        if not self.backup_path.exists():
            raise IoFailure(f"No backup store at {self.backup_path}", str(self.backup_path))
        self._state = self._read(self.backup_path)
        logger.warning(f"Recovered {len(self._state.feeds)} feeds from backup {self.backup_path}")
        return self._state

    def _write(self, text: str) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
        except OSError as e:
            raise IoFailure(f"Failed to prepare store directory {directory}: {e}", str(self.path)) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            if self.path.exists():
                shutil.copy2(self.path, self.backup_path)
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise IoFailure(f"Failed to commit store {self.path}: {e}", str(self.path)) from e

    async def _commit_locked(self, feeds: Dict[str, Feed], articles: Dict[str, List[Article]]) -> None:
        text = _serialize(feeds, articles)
        await asyncio.to_thread(self._write, text)
        self._state = StoreState(feeds=dict(feeds), articles=dict(articles))

    async def commit(self, feeds: Dict[str, Feed], articles: Dict[str, List[Article]]) -> None:
        """Write the full state atomically and make it current.

        Raises:
            IoFailure: if the write fails; the previous state stays intact
        """
        async with self._lock:
            await self._commit_locked(feeds, articles)

    async def flush(self) -> None:
        """Re-commit the current state (used on shutdown)."""
        async with self._lock:
            await self._commit_locked(self._state.feeds, self._state.articles)

    async def add_feed(self, url: str, title: Optional[str] = None, category: str = "") -> Feed:
        """Add a new feed.

        Args:
            url: Feed URL
            title: Optional display title (defaults to the URL until first sync)
            category: Optional free-text category

        Returns:
            The created Feed

        Raises:
            DuplicateFeed: if a feed with the same identifier exists
            InvalidFeedUrl: if the URL is not an absolute http(s) URL
        """
        url = url.strip()
        feed_id = feed_id_for_url(url)
        async with self._lock:
            if feed_id in self._state.feeds:
                raise DuplicateFeed(feed_id, url)

            feed = Feed(
                id=feed_id,
                url=url,
                title=(title or "").strip() or url,
                category=category.strip(),
                created_at=utcnow(),
            )
            feeds = dict(self._state.feeds)
            feeds[feed_id] = feed
            articles = dict(self._state.articles)
            articles[feed_id] = []
            await self._commit_locked(feeds, articles)

        logger.info(f"Added feed {feed_id}: {url}")
        return feed

    async def remove_feed(self, feed_id: str) -> int:
        """Remove a feed and all its articles.

        Returns:
            Number of articles removed with the feed

        Raises:
            FeedNotFound: if the feed does not exist
        """
        async with self._lock:
            if feed_id not in self._state.feeds:
                raise FeedNotFound(feed_id)

            feeds = dict(self._state.feeds)
            del feeds[feed_id]
            articles = dict(self._state.articles)
            removed = len(articles.pop(feed_id, []))
            await self._commit_locked(feeds, articles)

        logger.info(f"Removed feed {feed_id} and {removed} articles")
        return removed

    async def update_feed(self, feed_id: str, transform: "FeedTransform[T]") -> T:
        """Read-modify-write one feed and its articles under the write lock.

        Args:
            feed_id: Feed to update
            transform: Called with the current feed and a copy of its
                article list; returns the replacement feed, the replacement
                article list and a value handed back to the caller

        Raises:
            FeedNotFound: if the feed does not exist
            IoFailure: if the commit fails
        """
        async with self._lock:
            feed = self._state.feeds.get(feed_id)
            if feed is None:
                raise FeedNotFound(feed_id)

            new_feed, new_articles, result = transform(feed, list(self._state.articles.get(feed_id, [])))

            feeds = dict(self._state.feeds)
            feeds[feed_id] = new_feed
            articles = dict(self._state.articles)
            articles[feed_id] = list(new_articles)
            await self._commit_locked(feeds, articles)

        return result

    async def _set_article_state(self, article_id: str, feed_id: Optional[str], **changes: Any) -> List[Article]:
        async with self._lock:
            if feed_id is not None and feed_id not in self._state.feeds:
                raise FeedNotFound(feed_id)

            articles = dict(self._state.articles)
            updated: List[Article] = []
            for fid, feed_articles in self._state.articles.items():
                if feed_id is not None and fid != feed_id:
                    continue
                if not any(a.id == article_id for a in feed_articles):
                    continue
                replaced = []
                for article in feed_articles:
                    if article.id == article_id:
                        article = article.with_state(**changes)
                        updated.append(article)
                    replaced.append(article)
                articles[fid] = replaced

            if not updated:
                raise ArticleNotFound(article_id)

            await self._commit_locked(self._state.feeds, articles)

        return updated

    async def mark_read(self, article_id: str, feed_id: Optional[str] = None, read: bool = True) -> List[Article]:
        """Set the read flag of an article.

        Without feed_id, every feed carrying the identifier is updated.

        Returns:
            The updated articles

        Raises:
            ArticleNotFound: if no article matches
            FeedNotFound: if feed_id is given and unknown
        """
        return await self._set_article_state(article_id, feed_id, read=read)

    async def dismiss(self, article_id: str, feed_id: Optional[str] = None) -> List[Article]:
        """Hide an article. It stays stored so later fetches do not re-add it."""
        return await self._set_article_state(article_id, feed_id, dismissed=True)

    def get_feed(self, feed_id: str) -> Feed:
        feed = self._state.feeds.get(feed_id)
        if feed is None:
            raise FeedNotFound(feed_id)
        return feed

    def list_feeds(self) -> List[Feed]:
        return sorted(self._state.feeds.values(), key=lambda f: (f.title.lower(), f.id))

    def snapshot(self, include_dismissed: bool = False) -> Snapshot:
        """Build a read-only view of all feeds with their ordered articles."""
        views = []
        for feed in self.list_feeds():
            articles = presentation_order(self._state.articles.get(feed.id, []))
            if not include_dismissed:
                articles = [a for a in articles if not a.dismissed]
            views.append(FeedView(feed=feed, articles=tuple(articles)))
        return Snapshot(feeds=tuple(views))
