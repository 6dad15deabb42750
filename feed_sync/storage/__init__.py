"""Storage layer for feed_sync."""

from .store import JsonStore, StoreState

__all__ = [
    "JsonStore",
    "StoreState",
]
