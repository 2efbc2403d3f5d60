"""
Unit tests for logging setup and error types.
"""

import logging

import json_log_formatter
import pytest

from sqlkite.workspace_core.config import ObservabilityConfig, WorkspaceConfig
from sqlkite.workspace_core.errors import (
    ConflictError,
    EngineExecutionError,
    NotFoundError,
    ValidationError,
    WorkspaceError,
    WorkspaceIOError,
)
from sqlkite.workspace_core.logging_config import setup_logging


@pytest.fixture
def root_logger():
    """Root logger, restored after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, root_logger):
        """JSON format installs the JSON formatter."""
        setup_logging(WorkspaceConfig())
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert root_logger.level == logging.INFO

    def test_text_format_verbose(self, root_logger):
        """Text format with verbose forces DEBUG."""
        config = WorkspaceConfig(observability=ObservabilityConfig(log_format="text"))
        setup_logging(config, verbose=True)
        assert not isinstance(
            root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter
        )
        assert root_logger.level == logging.DEBUG


class TestErrors:
    """Tests for WorkspaceError subclasses."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (ValidationError("bad", field_name="name"), "VALIDATION_ERROR"),
            (NotFoundError("gone", "branch", "dev"), "NOT_FOUND"),
            (ConflictError("taken", "branch", "dev", blocking="dev"), "CONFLICT"),
            (EngineExecutionError("no such table: t", branch="main"), "ENGINE_EXECUTION_ERROR"),
            (WorkspaceIOError("disk full", path="/x", operation="copy"), "IO_ERROR"),
        ],
    )
    def test_codes(self, error, code):
        """Every error is a WorkspaceError with its own code."""
        assert isinstance(error, WorkspaceError)
        assert error.code == code
        assert error.to_dict()["error_code"] == code
        assert error.to_dict()["error"] == str(error)

    def test_details(self):
        """Details carry the resource and the blocker."""
        error = ConflictError("taken", "migration", "001_a.sql", blocking="dev")
        assert error.details == {
            "resource_type": "migration",
            "resource_id": "001_a.sql",
            "blocking": "dev",
        }
