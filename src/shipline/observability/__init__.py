"""Observability module for Shipline.

Provides structured logging for pipeline runs.
"""

from shipline.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
    run_log_context,
    stage_log_context,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
    "run_log_context",
    "stage_log_context",
]
