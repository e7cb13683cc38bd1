"""Tests for core logging module."""

import logging
from io import StringIO

import pytest

from .lib import get_logger, setup_logging


class TestLogging:
    """Test core logging API."""

    @pytest.mark.unit
    def test_get_logger(self) -> None:
        """Verify logger instance creation."""
        logger = get_logger("test")
        assert logger.name == "test"
        assert isinstance(logger, logging.Logger)

    @pytest.mark.unit
    def test_get_logger_default_name(self) -> None:
        """Verify default logger name."""
        assert get_logger().name == "label-pipeline"

    @pytest.mark.unit
    def test_setup_logging_quiets_http_clients(self) -> None:
        """Chatty client libraries are raised to WARNING."""
        setup_logging(level=logging.INFO, stream=StringIO())
        assert logging.getLogger("httpx").level == logging.WARNING

    @pytest.mark.unit
    def test_setup_logging_debug_keeps_clients(self) -> None:
        """Debug mode lets client library logs through."""
        setup_logging(level=logging.DEBUG, stream=StringIO())
        assert logging.getLogger("openai").level == logging.DEBUG
