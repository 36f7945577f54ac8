"""
kzsync logging infrastructure.

Exports the structured logging subsystem and its context helpers.
"""

from kzsync.core.logging.logger import (
    LogContext,
    LoggerConfig,
    clear_log_context,
    get_logger,
    get_logging_health,
    new_correlation_id,
    set_log_context,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    "get_logging_health",
    "new_correlation_id",
    "LogContext",
    "set_log_context",
    "clear_log_context",
    "LoggerConfig",
]
