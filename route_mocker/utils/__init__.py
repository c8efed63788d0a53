"""Utility modules for route_mocker."""

from .logging import configure_logging, setup_logging, get_logger, LogContext

__all__ = ["configure_logging", "setup_logging", "get_logger", "LogContext"]
