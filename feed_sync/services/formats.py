"""Feed body parsers.

Each supported syndication format implements FeedFormat. The fetcher picks
one by sniffing the response content type and the first bytes of the body.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, List, Optional

import feedparser
from bs4 import BeautifulSoup

from feed_sync.errors import ParseError
from feed_sync.models.schemas import RawArticle


@dataclass
class ParsedFeed:
    """Result of parsing a feed body."""

    title: str = ""
    articles: List[RawArticle] = field(default_factory=list)


def html_to_text(value: Optional[str]) -> str:
    """Reduce an HTML fragment to whitespace-normalized plain text."""
    if not value:
        return ""
    if "<" not in value and "&" not in value:
        return " ".join(value.split())
    text = BeautifulSoup(value, "lxml").get_text(" ", strip=True)
    return " ".join(text.split())


def _parse_date(entry: Any) -> Optional[datetime]:
    """Parse the publication date from a feed entry.

    Args:
        entry: Feed entry dict

    Returns:
        Timezone-aware datetime if parsed successfully, None otherwise
    """
    for name in ["published", "updated", "created"]:
        # feedparser normalizes to a UTC time struct
        parsed = entry.get(f"{name}_parsed")
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (ValueError, TypeError):
                pass

        date_str = entry.get(name)
        if not date_str or not isinstance(date_str, str):
            continue

        # RFC 2822 (RSS)
        try:
            value = parsedate_to_datetime(date_str)
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        except (ValueError, TypeError):
            pass

        # ISO 8601 (Atom, JSON Feed)
        try:
            value = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        except (ValueError, AttributeError):
            pass

    return None


class FeedFormat:
    """Parser capability for one syndication format."""

    name = "abstract"

    def parse(self, body: bytes) -> ParsedFeed:
        raise NotImplementedError


class RssAtomFormat(FeedFormat):
    """RSS 0.9x/1.0/2.0 and Atom, via feedparser."""

    name = "rss"

    def parse(self, body: bytes) -> ParsedFeed:
        feed = feedparser.parse(body)

        if feed.bozo and not feed.entries:
            raise ParseError(f"Malformed feed: {feed.get('bozo_exception')}")
        if not feed.get("version") and not feed.entries:
            raise ParseError("Response is not a recognizable RSS or Atom feed")

        articles = []
        for entry in feed.entries:
            title = html_to_text(entry.get("title", ""))
            link = (entry.get("link") or "").strip()
            if not link:
                for candidate in entry.get("links", []):
                    if candidate.get("href"):
                        link = candidate["href"].strip()
                        break

            # An item needs at least something to identify and show it by
            if not title and not link:
                continue

            guid = (entry.get("id") or "").strip() or None
            summary = entry.get("summary") or ""
            if not summary and entry.get("content"):
                summary = entry["content"][0].get("value", "")

            articles.append(RawArticle(
                guid=guid,
                title=title or link,
                link=link,
                published=_parse_date(entry),
                summary=html_to_text(summary),
            ))

        return ParsedFeed(title=html_to_text(feed.feed.get("title", "")), articles=articles)


def _string(value: Any) -> str:
    """Text of a JSON Feed field; values of any other type count as missing."""
    return value if isinstance(value, str) else ""


class JsonFeedFormat(FeedFormat):
    """JSON Feed 1.0/1.1."""

    name = "json"

    def parse(self, body: bytes) -> ParsedFeed:
        try:
            document = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ParseError(f"Malformed JSON feed: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("items", []), list):
            raise ParseError("JSON document is not a JSON Feed")

        articles = []
        for item in document.get("items", []):
            if not isinstance(item, dict):
                continue
            title = html_to_text(_string(item.get("title")))
            link = (_string(item.get("url")) or _string(item.get("external_url"))).strip()
            if not title and not link:
                continue
            # Ids are strings in JSON Feed, but numbers are common in the wild
            item_id = item.get("id")
            if isinstance(item_id, (int, float)) and not isinstance(item_id, bool):
                item_id = str(item_id)
            guid = _string(item_id).strip() or None
            summary = (
                _string(item.get("summary"))
                or _string(item.get("content_text"))
                or _string(item.get("content_html"))
            )
            articles.append(RawArticle(
                guid=guid,
                title=title or link,
                link=link,
                published=_parse_date({"published": item.get("date_published"),
                                       "updated": item.get("date_modified")}),
                summary=html_to_text(summary),
            ))

        return ParsedFeed(title=html_to_text(_string(document.get("title"))), articles=articles)


RSS_ATOM = RssAtomFormat()
JSON_FEED = JsonFeedFormat()


def sniff_format(body: bytes, content_type: str = "") -> FeedFormat:
    """Select the parser for a response body."""
    content_type = (content_type or "").lower()
    if "json" in content_type:
        return JSON_FEED
    head = body[:64].lstrip(b"\xef\xbb\xbf \t\r\n")
    if head.startswith(b"{"):
        return JSON_FEED
    return RSS_ATOM
