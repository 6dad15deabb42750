"""feed_sync - keep RSS feeds in sync without losing read state."""

__version__ = "0.1.0"
