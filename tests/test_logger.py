"""
Tests for logging configuration.
"""

import json
import logging

import pytest

from webcert_check.config import Config
from webcert_check.logger import CustomFormatter, StructuredFormatter, get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="webcert_check.probe",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Which is after %d days",
        args=(30,),
        exc_info=None,
    )
    record.created = 0.0
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    """Test log formatters."""

    def test_custom_formatter_uses_utc(self):
        line = CustomFormatter(use_color=False).format(make_record())

        assert line.startswith("1970-01-01 00:00:00 | INFO ")
        assert line.endswith("| Which is after 30 days")
        assert "webcert_check.probe" in line

    def test_custom_formatter_colors(self):
        line = CustomFormatter(use_color=True).format(make_record())

        assert "\033[32m" in line

    def test_structured_formatter(self):
        data = json.loads(
            StructuredFormatter().format(make_record(target="example.com:443", days_remaining=30))
        )

        assert data["timestamp"] == "1970-01-01T00:00:00+00:00"
        assert data["message"] == "Which is after 30 days"
        assert data["target"] == "example.com:443"
        assert data["days_remaining"] == 30


class TestSetupLogging:
    """Test setup_logging()."""

    def test_console_handler(self, restore_root_logger):
        setup_logging(Config(log_level="WARNING"))

        assert restore_root_logger.level == logging.WARNING
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, CustomFormatter)

    def test_verbose_enables_debug(self, restore_root_logger):
        setup_logging(Config(log_level="WARNING", verbose=True))

        assert restore_root_logger.level == logging.DEBUG

    def test_log_file(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "logs" / "webcert-check.log"

        setup_logging(Config(log_file=str(log_file)))
        get_logger("test").info("hello")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert len(restore_root_logger.handlers) == 2
        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["message"] == "hello"

    def test_get_logger_namespace(self):
        assert get_logger("probe").name == "webcert_check.probe"
