"""Feed sync MCP tools.

This module exposes the command channel and the snapshot query as MCP tools.
Tools are built around an explicit FeedReaderApp so no module-level state is
involved.

NOTE: Never use Optional parameters in MCP tools - they break MCP clients.
Use empty string "" for optional strings and 0 for optional integers.
"""

import logging
from typing import Any, Callable, Dict, List

from mcp.server.fastmcp import Context

from feed_sync.app import FeedReaderApp
from feed_sync.commands import (
    AddFeed,
    CommandResult,
    Dismiss,
    MarkRead,
    MarkUnread,
    RefreshAll,
    RefreshFeed,
    RemoveFeed,
)
from feed_sync.models.schemas import Article, Feed, presentation_order
from feed_sync.services.coordinator import Failed, RefreshOutcome, Unchanged, Updated

logger = logging.getLogger(__name__)


def feed_to_dict(feed: Feed) -> Dict[str, Any]:
    data = feed.to_dict()
    del data["etag"], data["last_modified"]
    return data


def article_to_dict(article: Article) -> Dict[str, Any]:
    return article.to_dict()


def outcome_to_dict(outcome: RefreshOutcome) -> Dict[str, Any]:
    if isinstance(outcome, Updated):
        return {"status": "updated", "new_articles": outcome.new_count}
    if isinstance(outcome, Unchanged):
        return {"status": "unchanged", "new_articles": 0}
    if isinstance(outcome, Failed):
        return {
            "status": "failed",
            "error": str(outcome.error),
            "error_type": type(outcome.error).__name__,
            "retryable": getattr(outcome.error, "retryable", False),
        }
    raise TypeError(f"Unknown outcome: {outcome!r}")


def _error(result: CommandResult) -> Dict[str, Any]:
    return {
        "success": False,
        "error": str(result.error),
        "error_type": type(result.error).__name__,
    }


def build_feed_tools(app: FeedReaderApp) -> List[Callable]:
    """Create the MCP tool functions bound to an application instance.

    Args:
        app: Started application state

    Returns:
        List of async tool functions ready for registration
    """

    async def add_feed(url: str, title: str = "", category: str = "", ctx: Context = None) -> Dict[str, Any]:
        """Start tracking an RSS, Atom or JSON feed.

        Args:
            url: Feed URL
            title: Display title (empty string to use the feed's own title after the first refresh)
            category: Free-text category such as "news" or "technology" (empty string for none)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - feed: object with id, url, title, category and sync metadata
            - error: string if success is False (e.g. the feed is already tracked)
        """
        logger.info(f"add_feed called: url={url}")

        result = await app.execute(AddFeed(url=url, title=title or None, category=category))
        if not result.ok:
            return _error(result)
        return {"success": True, "feed": feed_to_dict(result.value)}

    async def remove_feed(feed_id: str, ctx: Context = None) -> Dict[str, Any]:
        """Stop tracking a feed and delete all its stored articles.

        This action cannot be undone.

        Args:
            feed_id: Feed identifier (from list_feeds response)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - articles_deleted: count of articles removed
            - error: string if the feed was not found
        """
        logger.info(f"remove_feed called: feed_id={feed_id}")

        result = await app.execute(RemoveFeed(feed_id=feed_id))
        if not result.ok:
            return _error(result)
        return {
            "success": True,
            "message": f"Removed feed '{feed_id}' and {result.value} articles",
            "articles_deleted": result.value,
        }

    async def list_feeds(ctx: Context = None) -> Dict[str, Any]:
        """List all tracked feeds with article counts and sync status.

        Args:
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - count: number of feeds
            - feeds: list of feed objects with id, url, title, category,
              last_synced_at, last_error, total_articles, unread_articles
        """
        logger.info("list_feeds called")

        snapshot = app.snapshot()
        feeds = []
        for view in snapshot.feeds:
            data = feed_to_dict(view.feed)
            data["total_articles"] = len(view.articles)
            data["unread_articles"] = view.unread_count
            feeds.append(data)

        return {"success": True, "count": len(feeds), "feeds": feeds}

    async def refresh_feed(feed_id: str, ctx: Context = None) -> Dict[str, Any]:
        """Fetch one feed and store any new articles.

        Args:
            feed_id: Feed identifier (from list_feeds response)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool (True even when the fetch failed; see outcome)
            - feed_id: the refreshed feed
            - outcome: status "updated", "unchanged" or "failed", with new_articles or error
            - error: string if the feed is unknown or already refreshing
        """
        logger.info(f"refresh_feed called: feed_id={feed_id}")

        result = await app.execute(RefreshFeed(feed_id=feed_id))
        if not result.ok:
            return _error(result)
        return {"success": True, "feed_id": feed_id, "outcome": outcome_to_dict(result.value)}

    async def refresh_all(ctx: Context = None) -> Dict[str, Any]:
        """Fetch every tracked feed concurrently and store new articles.

        A failing feed is reported in its own result and never stops the others.

        Args:
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - feeds_refreshed: number of feeds processed
            - total_new_articles: total new articles across all feeds
            - results: mapping of feed id to outcome
        """
        logger.info("refresh_all called")

        result = await app.execute(RefreshAll())
        if not result.ok:
            return _error(result)

        outcomes = result.value
        total_new = sum(o.new_count for o in outcomes.values() if isinstance(o, Updated))
        return {
            "success": True,
            "feeds_refreshed": len(outcomes),
            "total_new_articles": total_new,
            "results": {feed_id: outcome_to_dict(o) for feed_id, o in outcomes.items()},
        }

    async def list_articles(
        feed_id: str = "",
        include_read: bool = False,
        include_dismissed: bool = False,
        limit: int = 50,
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """List stored articles, newest first.

        Articles without a published date are ordered by when they were first seen.

        Args:
            feed_id: Only articles from this feed (empty string for all feeds)
            include_read: Include articles marked as read (default: False, only unread)
            include_dismissed: Include dismissed articles (default: False)
            limit: Maximum number of articles to return (default: 50, 0 for no limit)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - count: number of articles returned
            - articles: list of article objects with id, feed_id, title, link,
              published, summary, read, dismissed, first_seen
        """
        logger.info(f"list_articles called: feed_id={feed_id}, include_read={include_read}, limit={limit}")

        snapshot = app.snapshot(include_dismissed=include_dismissed)
        views = snapshot.feeds
        if feed_id:
            view = snapshot.get(feed_id)
            if view is None:
                return {"success": False, "error": f"Feed '{feed_id}' not found", "error_type": "FeedNotFound"}
            views = (view,)

        articles = [a for view in views for a in view.articles if include_read or not a.read]
        if len(views) > 1:
            articles = presentation_order(articles)
        if limit > 0:
            articles = articles[:limit]

        return {
            "success": True,
            "count": len(articles),
            "articles": [article_to_dict(a) for a in articles],
        }

    async def mark_read(article_id: str, feed_id: str = "", ctx: Context = None) -> Dict[str, Any]:
        """Mark an article as read.

        Args:
            article_id: Article identifier (from list_articles response)
            feed_id: Restrict to this feed (empty string matches the article in any feed)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - articles: updated article objects
            - error: string if the article was not found
        """
        logger.info(f"mark_read called: article_id={article_id}")

        result = await app.execute(MarkRead(article_id=article_id, feed_id=feed_id or None))
        if not result.ok:
            return _error(result)
        return {"success": True, "articles": [article_to_dict(a) for a in result.value]}

    async def mark_unread(article_id: str, feed_id: str = "", ctx: Context = None) -> Dict[str, Any]:
        """Mark an article as unread again.

        Args:
            article_id: Article identifier (from list_articles response)
            feed_id: Restrict to this feed (empty string matches the article in any feed)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - articles: updated article objects
            - error: string if the article was not found
        """
        logger.info(f"mark_unread called: article_id={article_id}")

        result = await app.execute(MarkUnread(article_id=article_id, feed_id=feed_id or None))
        if not result.ok:
            return _error(result)
        return {"success": True, "articles": [article_to_dict(a) for a in result.value]}

    async def dismiss_article(article_id: str, feed_id: str = "", ctx: Context = None) -> Dict[str, Any]:
        """Dismiss an article so it no longer appears in listings.

        Dismissed articles stay stored, so later refreshes never bring them back.

        Args:
            article_id: Article identifier (from list_articles response)
            feed_id: Restrict to this feed (empty string matches the article in any feed)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - articles: updated article objects
            - error: string if the article was not found
        """
        logger.info(f"dismiss_article called: article_id={article_id}")

        result = await app.execute(Dismiss(article_id=article_id, feed_id=feed_id or None))
        if not result.ok:
            return _error(result)
        return {"success": True, "articles": [article_to_dict(a) for a in result.value]}

    return [
        add_feed,
        remove_feed,
        list_feeds,
        refresh_feed,
        refresh_all,
        list_articles,
        mark_read,
        mark_unread,
        dismiss_article,
    ]
