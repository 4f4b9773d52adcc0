"""Unit tests for loguru setup."""

import sys

import pytest
from loguru import logger

from levelnet.config.logging import setup_logging


@pytest.fixture
def restore_logger():
    """Put the default stderr sink back after the test."""
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_setup_logging_writes_file(tmp_path, restore_logger):
    """Messages at or above the level reach the log file."""
    log_file = tmp_path / "levelnet.log"

    setup_logging(level="INFO", log_file=str(log_file))
    logger.debug("hidden message")
    logger.warning("visible message")

    content = log_file.read_text(encoding="utf-8")
    assert "Logging initialized at level INFO" in content
    assert "visible message" in content
    assert "hidden message" not in content
