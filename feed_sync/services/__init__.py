"""Services for feed_sync."""

from .coordinator import Failed, RefreshOutcome, SyncCoordinator, Unchanged, Updated
from .fetcher import FeedFetcher, FetchResult, fetch
from .reconciler import article_id_for, reconcile

__all__ = [
    "FeedFetcher",
    "FetchResult",
    "fetch",
    "reconcile",
    "article_id_for",
    "SyncCoordinator",
    "RefreshOutcome",
    "Updated",
    "Unchanged",
    "Failed",
]
