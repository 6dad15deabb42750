"""Unit tests for configuration loading."""

from pathlib import Path

import pytest

from feed_sync.config import ServerConfig, load_config
from feed_sync.logging_config import setup_logging


class TestLoadConfig:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        config = load_config({})

        assert config.store_path == Path.home() / ".feed_sync" / "state.json"
        assert config.fetch_timeout == 30.0
        assert config.max_in_flight == 4
        assert config.log_level == "INFO"
        assert config.log_file is None

    def test_environment_overrides(self, tmp_path):
        config = load_config({
            "FEED_SYNC_STORE_PATH": str(tmp_path / "store.json"),
            "FEED_SYNC_FETCH_TIMEOUT": "2.5",
            "FEED_SYNC_MAX_IN_FLIGHT": "8",
            "FEED_SYNC_LOG_LEVEL": "debug",
            "FEED_SYNC_USER_AGENT": "Custom/2.0",
        })

        assert config.store_path == tmp_path / "store.json"
        assert config.fetch_timeout == 2.5
        assert config.max_in_flight == 8
        assert config.log_level == "DEBUG"
        assert config.user_agent == "Custom/2.0"

    def test_invalid_numbers_raise(self):
        with pytest.raises(ValueError):
            load_config({"FEED_SYNC_MAX_IN_FLIGHT": "many"})
        with pytest.raises(ValueError):
            load_config({"FEED_SYNC_FETCH_TIMEOUT": "0"})

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "feed_sync.log"
        logger = setup_logging(ServerConfig(store_path=tmp_path / "s.json", log_file=log_file, log_level="WARNING"))

        logger.warning("disk almost full")
        for handler in logger.handlers:
            handler.flush()

        assert "disk almost full" in log_file.read_text(encoding="utf-8")
        assert logger.level == 30
        setup_logging(ServerConfig(store_path=tmp_path / "s.json"))
