"""Pytest configuration and fixtures for logging_module tests."""

import logging

import pytest

from logging_module.config import LoggingConfig


@pytest.fixture
def test_config(tmp_path):
    """Logging configuration writing into a temporary directory."""
    return LoggingConfig(
        log_level="DEBUG",
        log_path=str(tmp_path / "logs"),
        log_file_max_bytes=4096,
        log_file_backup_count=2,
    )


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers and level after a test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
