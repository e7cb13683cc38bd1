"""Core utilities shared across label-pipeline packages."""

from .log import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
