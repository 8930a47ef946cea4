"""Tests for settings and logging setup."""

import logging

import pytest

from approvalhub.core.config import Settings
from approvalhub.core.logger import configure_from_settings, setup_logger


class TestSettings:
    """Tests for environment driven settings."""

    def test_defaults(self, monkeypatch):
        """Test defaults when no environment overrides exist."""
        for name in ("DATABASE_URL", "EVENT_BACKEND", "REMARKS_REQUIRED", "ENFORCE_ROUTE_ROLE"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.database_url.startswith("sqlite")
        assert settings.event_backend == "memory"
        assert settings.remarks_required is True
        assert settings.enforce_route_role is False
        assert settings.workflow_definitions_path is None

    def test_environment_overrides(self, monkeypatch):
        """Test values are read from the environment, case-insensitively."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://hub:pw@db:5432/hub")
        monkeypatch.setenv("event_backend", "redis")
        monkeypatch.setenv("REMARKS_REQUIRED", "false")
        monkeypatch.setenv("SSE_HEARTBEAT_SECONDS", "5")

        settings = Settings(_env_file=None)

        assert settings.database_url == "postgresql://hub:pw@db:5432/hub"
        assert settings.event_backend == "redis"
        assert settings.remarks_required is False
        assert settings.sse_heartbeat_seconds == 5

    def test_list_properties(self):
        settings = Settings(
            _env_file=None,
            cors_origins="http://a.test, http://b.test,",
            webhook_urls=" http://hook.test ",
        )
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]
        assert settings.webhook_urls_list == ["http://hook.test"]

    def test_empty_webhooks(self):
        assert Settings(_env_file=None, webhook_urls="").webhook_urls_list == []

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("WORKFLOW_DEFINITIONS_PATH=/etc/approvalhub/workflows.yaml\nUNKNOWN_KEY=1\n")

        settings = Settings(_env_file=str(env_file))

        assert settings.workflow_definitions_path == "/etc/approvalhub/workflows.yaml"


class TestLogger:
    """Tests for setup_logger."""

    def test_console_logger(self):
        logger = setup_logger("approvalhub.test.console", level="debug")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_no_duplicate_handlers(self):
        setup_logger("approvalhub.test.dupes")
        logger = setup_logger("approvalhub.test.dupes", level="WARNING")
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING

    def test_file_logging(self, tmp_path):
        log_dir = tmp_path / "logs"
        logger = setup_logger(
            "approvalhub.test.file",
            log_dir=str(log_dir),
            file_logging=True,
            console_logging=False,
        )
        logger.info("Workflow 149 provisioned")
        for handler in logger.handlers:
            handler.flush()

        content = (log_dir / "approvalhub.test.file.log").read_text()
        assert "[INFO] [approvalhub.test.file] Workflow 149 provisioned" in content

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logger("approvalhub.test.invalid", level="LOUD")

    def test_configure_from_settings(self):
        settings = Settings(_env_file=None, log_level="error")

        logger = configure_from_settings(settings, name="approvalhub.test.settings")

        assert logger.level == logging.ERROR
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
