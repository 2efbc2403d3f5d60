"""
Logging setup for sqlkite tools.

Library code only creates module loggers; entry points call setup_logging()
once to install a handler on the root logger.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import WorkspaceConfig


def setup_logging(config: WorkspaceConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: Workspace configuration
        verbose: Force DEBUG level regardless of LOG_LEVEL
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)
    if verbose:
        level = logging.DEBUG

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
