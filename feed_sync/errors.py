"""Exception hierarchy for feed_sync.

Store and fetcher failures are raised to the caller. The sync coordinator
records fetch failures on the feed instead of propagating them, and the
command channel turns every FeedSyncError into an error result.
"""

from typing import Optional


class FeedSyncError(Exception):
    """Base class for every error raised by feed_sync."""


# Store errors

class StoreError(FeedSyncError):
    """Base class for persistent store failures."""


class IoFailure(StoreError):
    """Disk unavailable or not writable. The previous state is untouched."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class CorruptStore(StoreError):
    """The store file exists but cannot be deserialized."""

    def __init__(self, message: str, path: Optional[str] = None, backup_path: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.backup_path = backup_path


# User input errors

class UserInputError(FeedSyncError):
    """Recoverable errors caused by the request itself."""


class DuplicateFeed(UserInputError):
    def __init__(self, feed_id: str, url: str):
        super().__init__(f"Feed '{url}' is already tracked (id {feed_id})")
        self.feed_id = feed_id
        self.url = url


class InvalidFeedUrl(UserInputError):
    def __init__(self, url: str, reason: str):
        super().__init__(f"Invalid feed URL '{url}': {reason}")
        self.url = url
        self.reason = reason


class FeedNotFound(UserInputError):
    def __init__(self, feed_id: str):
        super().__init__(f"Feed '{feed_id}' not found")
        self.feed_id = feed_id


class ArticleNotFound(UserInputError):
    def __init__(self, article_id: str):
        super().__init__(f"Article '{article_id}' not found")
        self.article_id = article_id


class RefreshAlreadyInProgress(UserInputError):
    def __init__(self, feed_id: str):
        super().__init__(f"Feed '{feed_id}' is already being refreshed")
        self.feed_id = feed_id


# Fetch errors

class FetchError(FeedSyncError):
    """A single feed could not be fetched or parsed."""

    retryable = False


class NetworkError(FetchError):
    """Connection, DNS or timeout failure."""

    retryable = True


class HttpError(FetchError):
    """The server answered with an error status (e.g. 404, 410)."""

    def __init__(self, status: int, url: str = ""):
        super().__init__(f"HTTP {status} for {url}" if url else f"HTTP {status}")
        self.status = status
        self.url = url


class ParseError(FetchError):
    """The response body is not a feed we can read."""
