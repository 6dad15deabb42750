"""Data models for feed_sync.

This module defines the core data structures for feeds and articles, plus
the helpers that derive their stable identifiers.
"""

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from feed_sync.errors import InvalidFeedUrl


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_text(value: Optional[str]) -> str:
    """Lowercase and strip whitespace and trailing slashes."""
    return (value or "").strip().lower().rstrip("/").strip()


def parse_feed_url(url: str) -> httpx.URL:
    """Validate a feed URL.

    Raises:
        InvalidFeedUrl: if the URL is malformed, not http(s), or has no host
    """
    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise InvalidFeedUrl(url, str(e)) from e
    if parsed.scheme not in ("http", "https"):
        raise InvalidFeedUrl(url, "only http and https feeds are supported")
    if not parsed.host:
        raise InvalidFeedUrl(url, "missing host")
    return parsed


def normalize_feed_url(url: str) -> str:
    """Canonical form of a feed URL.

    Scheme and host are case-insensitive and lowercased; path and query keep
    their case. Surrounding whitespace and a trailing slash are dropped.
    """
    parsed = parse_feed_url(url)
    netloc = parsed.netloc.decode("ascii").lower()
    target = parsed.raw_path.decode("ascii")
    return f"{parsed.scheme.lower()}://{netloc}{target}".rstrip("/")


def feed_id_for_url(url: str) -> str:
    """Derive a stable feed identifier from its URL."""
    digest = hashlib.sha256(normalize_feed_url(url).encode("utf-8")).hexdigest()
    return digest[:16]


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RawArticle:
    """An item as fetched from the source, before local state is attached."""

    title: str
    link: str
    guid: Optional[str] = None
    published: Optional[datetime] = None
    summary: str = ""


@dataclass(frozen=True)
class Feed:
    """Represents a subscribed feed source."""

    id: str
    url: str
    title: str
    created_at: datetime
    category: str = ""
    last_synced_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "category": self.category,
            "created_at": _to_iso(self.created_at),
            "last_synced_at": _to_iso(self.last_synced_at),
            "last_attempt_at": _to_iso(self.last_attempt_at),
            "last_error": self.last_error,
            "etag": self.etag,
            "last_modified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feed":
        return cls(
            id=data["id"],
            url=data["url"],
            title=data.get("title") or data["url"],
            category=data.get("category") or "",
            created_at=_from_iso(data.get("created_at")) or utcnow(),
            last_synced_at=_from_iso(data.get("last_synced_at")),
            last_attempt_at=_from_iso(data.get("last_attempt_at")),
            last_error=data.get("last_error"),
            etag=data.get("etag"),
            last_modified=data.get("last_modified"),
        )


@dataclass(frozen=True)
class Article:
    """Represents an article belonging to a feed, with local read state."""

    id: str
    feed_id: str
    title: str
    link: str
    first_seen: datetime
    published: Optional[datetime] = None
    summary: str = ""
    read: bool = False
    dismissed: bool = False

    @property
    def sort_timestamp(self) -> datetime:
        # Undated items fall back to the time we first saw them
        return self.published or self.first_seen

    def with_state(self, **changes: Any) -> "Article":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feed_id": self.feed_id,
            "title": self.title,
            "link": self.link,
            "published": _to_iso(self.published),
            "summary": self.summary,
            "read": self.read,
            "dismissed": self.dismissed,
            "first_seen": _to_iso(self.first_seen),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Article":
        first_seen = _from_iso(data.get("first_seen"))
        if first_seen is None:
            raise ValueError(f"Article {data.get('id')!r} has no first_seen timestamp")
        return cls(
            id=data["id"],
            feed_id=data["feed_id"],
            title=data.get("title") or "",
            link=data.get("link") or "",
            published=_from_iso(data.get("published")),
            summary=data.get("summary") or "",
            read=bool(data.get("read", False)),
            dismissed=bool(data.get("dismissed", False)),
            first_seen=first_seen,
        )


def presentation_order(articles: List[Article]) -> List[Article]:
    """Sort articles newest first, ties broken by identifier."""
    by_id = sorted(articles, key=lambda a: a.id)
    return sorted(by_id, key=lambda a: a.sort_timestamp, reverse=True)


@dataclass(frozen=True)
class FeedView:
    """A feed together with its ordered articles, for presentation."""

    feed: Feed
    articles: Tuple[Article, ...] = field(default_factory=tuple)

    @property
    def unread_count(self) -> int:
        return sum(1 for a in self.articles if not a.read and not a.dismissed)


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of every feed and its articles."""

    feeds: Tuple[FeedView, ...] = field(default_factory=tuple)

    def get(self, feed_id: str) -> Optional[FeedView]:
        for view in self.feeds:
            if view.feed.id == feed_id:
                return view
        return None
