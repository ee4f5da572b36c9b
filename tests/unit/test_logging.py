"""Unit tests for the logging configuration module."""

import io
import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest
import structlog

from bootstrap_agent.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger state before and after each test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level
    logging.root.handlers.clear()
    logging.root.setLevel(logging.WARNING)
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
        """Test that basicConfig receives the configured level."""
        with patch("bootstrap_agent.logging.logging.basicConfig") as mock_basic:
            setup_logging(_settings("debug"))

        assert mock_basic.call_args.kwargs["level"] == logging.DEBUG

    def test_invalid_level_defaults_to_info(self):
        """Test setup_logging falls back to INFO for an invalid level."""
        with patch("bootstrap_agent.logging.logging.basicConfig") as mock_basic:
            setup_logging(_settings("NONEXISTENT"))

        assert mock_basic.call_args.kwargs["level"] == logging.INFO

    def test_defaults_to_stderr(self):
        """Test that both structlog and stdlib logging write to stderr."""
        with (
            patch("bootstrap_agent.logging.logging.basicConfig") as mock_basic,
            patch("bootstrap_agent.logging.structlog.PrintLoggerFactory") as mock_factory,
        ):
            setup_logging(_settings())

        assert mock_basic.call_args.kwargs["stream"] is sys.stderr
        mock_factory.assert_called_once_with(file=sys.stderr)

    def test_events_rendered_as_json_lines(self):
        """Test that production events land on the stream as JSON."""
        stream = io.StringIO()
        setup_logging(_settings(), stream)

        get_logger("bootstrap_agent.test").info("update_checked", build=5)

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "update_checked"
        assert record["build"] == 5
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_events_below_level_dropped(self):
        stream = io.StringIO()
        setup_logging(_settings("WARNING"), stream)

        get_logger("bootstrap_agent.test").info("ignored")
        assert stream.getvalue() == ""

    def test_reduces_http_client_noise(self):
        """Test that httpx and httpcore are limited to WARNING."""
        setup_logging(_settings("DEBUG"), io.StringIO())

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_production_renders_json(self):
        """Test that non-development environments render JSON."""
        with patch("bootstrap_agent.logging.structlog.configure") as mock_configure:
            setup_logging(_settings())

        processors = mock_configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert structlog.contextvars.merge_contextvars in processors

    def test_development_renders_console(self):
        """Test that development uses the console renderer."""
        with patch("bootstrap_agent.logging.structlog.configure") as mock_configure:
            setup_logging(_settings(development=True))

        processors = mock_configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


class TestGetLogger:
    """Tests for get_logger."""

    def test_returns_usable_logger(self):
        log = get_logger("bootstrap_agent.test")
        assert hasattr(log, "info")
        assert hasattr(log, "warning")
