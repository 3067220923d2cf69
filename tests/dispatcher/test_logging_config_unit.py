"""Unit tests for structlog configuration."""

import json
import logging

import pytest
import structlog

from issue_dispatcher.logging_config import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_output_carries_context(capsys):
    configure_logging("INFO", json=True)

    structlog.get_logger("issue_dispatcher.test").info("Issue queued", issue_number=7)
    line = capsys.readouterr().err.strip().splitlines()[-1]

    record = json.loads(line)
    assert record["event"] == "Issue queued"
    assert record["issue_number"] == 7
    assert record["level"] == "info"
    assert record["logger"] == "issue_dispatcher.test"
    assert "timestamp" in record


def test_level_filters_lower_levels(capsys):
    configure_logging("WARNING", json=True)

    structlog.get_logger("issue_dispatcher.test").info("hidden")

    assert "hidden" not in capsys.readouterr().err
    assert logging.getLogger().level == logging.WARNING
