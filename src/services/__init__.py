"""
Services Module - Cross-cutting infrastructure services.

- logging_config: structured logging with request context
"""

from .logging_config import configure_logging, get_logger, log_performance

__all__ = ["configure_logging", "get_logger", "log_performance"]
