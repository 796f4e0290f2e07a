"""
Tests for environment-driven configuration and the command line entry point.
"""
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from allstar.__main__ import main
from allstar.config import PipelineConfig, get_config, reset_config


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


class TestConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SEARCH_QUERY", raising=False)
        monkeypatch.delenv("CRAIGSLIST_ENABLED", raising=False)
        monkeypatch.delenv("CRAIGSLIST_CITY", raising=False)

        config = get_config()

        assert config.pipeline.search_query == "headlight"
        assert config.pipeline.batch_size == 10
        assert config.pipeline.concurrency == 3
        assert config.craigslist.enabled is True
        assert config.craigslist.city == "denver"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CRAIGSLIST_ENABLED", "false")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("EBAY_APP_ID", "me-SBX-123")

        config = get_config()

        assert config.craigslist.enabled is False
        assert config.server.port == 8080
        assert config.ebay.is_sandbox

    def test_singleton(self):
        assert get_config() is get_config()

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            PipelineConfig(batch_size=0)


class TestMain:
    """Tests for the python -m allstar entry point."""

    def test_one_shot_success(self, monkeypatch):
        monkeypatch.delenv("PORT", raising=False)
        with patch("allstar.__main__.setup_logging"), \
                patch("allstar.pipeline.orchestrator.run_pipeline", return_value="run-1") as run:
            assert main(["--dry-run"]) == 0
        run.assert_called_once_with(dry_run=True)

    def test_one_shot_failure(self, monkeypatch):
        monkeypatch.delenv("PORT", raising=False)
        with patch("allstar.__main__.setup_logging"), \
                patch("allstar.pipeline.orchestrator.run_pipeline", side_effect=RuntimeError("db down")):
            assert main([]) == 1

    def test_port_selects_server(self, monkeypatch):
        monkeypatch.setenv("PORT", "3000")
        with patch("allstar.__main__.setup_logging"), \
                patch("allstar.web.app.run_server") as serve:
            assert main([]) == 0
        serve.assert_called_once()

    def test_init_db(self):
        with patch("allstar.__main__.setup_logging"), \
                patch("allstar.storage.mysql.MySQLStorage.init_schema") as init:
            assert main(["init-db"]) == 0
        init.assert_called_once()
