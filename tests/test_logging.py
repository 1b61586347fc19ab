"""Unit tests for the logging configuration module."""

import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog

from kicd.logging import bind_request_context, get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger and structlog state around each test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level
    logging.root.handlers.clear()
    yield
    logging.root.handlers.clear()
    logging.root.handlers.extend(original_handlers)
    logging.root.setLevel(original_level)
    structlog.reset_defaults()


def _settings(level: str = "INFO", development: bool = False) -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.log_level = level
    mock_settings.is_development = development
    return mock_settings


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_basic_config_uses_configured_level(self):
        with patch("kicd.logging.get_settings", return_value=_settings("DEBUG")):
            with patch("kicd.logging.logging.basicConfig") as mock_basic:
                setup_logging()

        assert mock_basic.call_args.kwargs["level"] == logging.DEBUG

    def test_invalid_level_defaults_to_info(self):
        with patch("kicd.logging.get_settings", return_value=_settings("NONEXISTENT")):
            with patch("kicd.logging.logging.basicConfig") as mock_basic:
                setup_logging()

        assert mock_basic.call_args.kwargs["level"] == logging.INFO

    def test_quiets_client_libraries(self):
        with patch("kicd.logging.get_settings", return_value=_settings()):
            setup_logging()

        for name in ("httpx", "httpcore", "aiohttp.access", "kubernetes_asyncio"):
            assert logging.getLogger(name).level == logging.WARNING

    def test_json_renderer_outside_development(self):
        with patch("kicd.logging.get_settings", return_value=_settings(development=False)):
            setup_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer_in_development(self):
        with patch("kicd.logging.get_settings", return_value=_settings(development=True)):
            setup_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


class TestGetLogger:
    def test_returns_usable_logger(self):
        log = get_logger("kicd.test")
        assert hasattr(log, "info")
        assert hasattr(log, "warning")


class TestBindRequestContext:
    def test_replaces_previous_request_context(self):
        bind_request_context(repository="org/one", remote="10.0.0.1")
        bind_request_context(remote="10.0.0.2")

        assert structlog.contextvars.get_contextvars() == {"remote": "10.0.0.2"}
        structlog.contextvars.clear_contextvars()
