"""Tests for the structured log formatter."""

import logging
import sys

from tracelayer.core.logging import StructuredFormatter, get_logger


def _record(**extra) -> logging.LogRecord:
    record = logging.makeLogRecord(
        {"name": "tracelayer.test", "levelname": "INFO", "levelno": logging.INFO, "msg": "Stage %s done", "args": ("ingesting",)}
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formats_message_and_extras_as_key_value():
    line = StructuredFormatter().format(_record(run_id="r-1", project_id="p-9"))

    assert "level=INFO" in line
    assert "message=Stage ingesting done" in line
    assert "run_id=r-1" in line
    assert "project_id=p-9" in line


def test_includes_exception_on_one_line():
    try:
        raise ValueError("bad stage")
    except ValueError:
        record = _record()
        record.exc_info = sys.exc_info()

    line = StructuredFormatter().format(record)

    assert "exc=Traceback" in line
    assert "ValueError: bad stage" in line
    assert "\n" not in line


def test_get_logger_configures_once():
    logger = get_logger("tracelayer.test_once")
    again = get_logger("tracelayer.test_once")

    assert logger is again
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, StructuredFormatter)
