"""Configuration for feed_sync.

Settings come from environment variables so tests and deployments can
redirect the store without touching code.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from feed_sync.services.fetcher import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT


def _default_store_path() -> Path:
    return Path.home() / ".feed_sync" / "state.json"


@dataclass
class ServerConfig:
    """Runtime settings for the feed_sync server and CLI."""

    name: str = "feed_sync"
    store_path: Optional[Path] = None
    fetch_timeout: float = DEFAULT_TIMEOUT
    max_in_flight: int = 4
    user_agent: str = DEFAULT_USER_AGENT
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self):
        if self.store_path is None:
            self.store_path = _default_store_path()
        self.store_path = Path(self.store_path).expanduser()
        if self.log_file is not None:
            self.log_file = Path(self.log_file).expanduser()
        if self.fetch_timeout <= 0:
            raise ValueError(f"fetch_timeout must be positive, got {self.fetch_timeout}")
        if self.max_in_flight < 1:
            raise ValueError(f"max_in_flight must be at least 1, got {self.max_in_flight}")
        self.log_level = self.log_level.upper()


def load_config(environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Build a ServerConfig from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        ServerConfig instance

    Raises:
        ValueError: if a numeric setting cannot be parsed
    """
    env = os.environ if environ is None else environ

    kwargs = {}
    if env.get("FEED_SYNC_STORE_PATH"):
        kwargs["store_path"] = Path(env["FEED_SYNC_STORE_PATH"])
    if env.get("FEED_SYNC_FETCH_TIMEOUT"):
        kwargs["fetch_timeout"] = float(env["FEED_SYNC_FETCH_TIMEOUT"])
    if env.get("FEED_SYNC_MAX_IN_FLIGHT"):
        kwargs["max_in_flight"] = int(env["FEED_SYNC_MAX_IN_FLIGHT"])
    if env.get("FEED_SYNC_USER_AGENT"):
        kwargs["user_agent"] = env["FEED_SYNC_USER_AGENT"]
    if env.get("FEED_SYNC_LOG_LEVEL"):
        kwargs["log_level"] = env["FEED_SYNC_LOG_LEVEL"]
    if env.get("FEED_SYNC_LOG_FILE"):
        kwargs["log_file"] = Path(env["FEED_SYNC_LOG_FILE"])

    return ServerConfig(**kwargs)


def get_config() -> ServerConfig:
    """Get configuration from the current environment."""
    return load_config()
