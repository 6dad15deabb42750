"""Feed fetcher service.

This module retrieves a feed over HTTP and turns the body into raw
articles. Every call is bounded by its own timeout.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from feed_sync.errors import FetchError, HttpError, NetworkError
from feed_sync.models.schemas import RawArticle
from feed_sync.services.formats import sniff_format

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "FeedSync/1.0 (RSS Feed Reader)"


@dataclass
class FetchResult:
    """Outcome of a successful fetch."""

    articles: List[RawArticle] = field(default_factory=list)
    title: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    not_modified: bool = False


class FeedFetcher:
    """Fetches and parses feeds.

    Args:
        timeout: Default bound in seconds for a whole fetch
        user_agent: User-Agent header sent with every request
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch(
        self,
        url: str,
        timeout: Optional[float] = None,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> FetchResult:
        """Fetch a feed and parse its items.

        Args:
            url: Feed URL
            timeout: Bound in seconds for the whole operation
            etag: ETag from the previous successful fetch
            last_modified: Last-Modified from the previous successful fetch

        Returns:
            FetchResult; not_modified is set when the server answered 304

        Raises:
            NetworkError: connection, DNS or timeout failure
            HttpError: the server answered with an error status
            ParseError: the body is not a readable feed
            FetchError: the URL cannot be requested at all
        """
        timeout = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(
                self._fetch(url, timeout, etag, last_modified), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Fetch of {url} timed out after {timeout}s")
            raise NetworkError(f"Timed out after {timeout}s fetching {url}") from e

    async def _fetch(
        self,
        url: str,
        timeout: float,
        etag: Optional[str],
        last_modified: Optional[str],
    ) -> FetchResult:
        logger.info(f"Fetching feed: {url}")

        headers: Dict[str, str] = {"User-Agent": self.user_agent}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers=headers,
        ) as client:
            try:
                response = await client.get(url)
            except httpx.TimeoutException as e:
                raise NetworkError(f"Timed out fetching {url}: {e}") from e
            except httpx.HTTPError as e:
                raise NetworkError(f"Failed to fetch {url}: {e}") from e
            except httpx.InvalidURL as e:
                raise FetchError(f"Invalid feed URL {url}: {e}") from e

        if response.status_code == 304:
            logger.info(f"Feed not modified: {url}")
            return FetchResult(not_modified=True, etag=etag, last_modified=last_modified)

        if response.status_code >= 400:
            logger.warning(f"Feed {url} returned HTTP {response.status_code}")
            raise HttpError(response.status_code, url)

        body = response.content
        content_type = response.headers.get("content-type", "")
        parser = sniff_format(body, content_type)
        parsed = parser.parse(body)

        logger.info(f"Parsed {len(parsed.articles)} articles from {url} ({parser.name})")
        return FetchResult(
            articles=parsed.articles,
            title=parsed.title,
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
        )


async def fetch(url: str, timeout: float = DEFAULT_TIMEOUT) -> List[RawArticle]:
    """Fetch a feed and return its raw articles.

    Raises:
        FetchError: see FeedFetcher.fetch
    """
    result = await FeedFetcher(timeout=timeout).fetch(url)
    return result.articles


__all__ = ["FeedFetcher", "FetchResult", "FetchError", "fetch"]
