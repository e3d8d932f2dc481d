"""Unit tests for logging configuration."""

import logging

import pytest

from schoolsync.logging_setup import _ConsoleNoiseFilter, setup_logging


def make_record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "message", None, None)


@pytest.fixture
def restore_root_logger():
    """Put the root logger's handlers back after a test reconfigures it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(False)


class TestConsoleNoiseFilter:
    """Tests for the console filter."""

    def test_own_logs_pass(self):
        """Test every level of our own loggers reaches the console."""
        noise_filter = _ConsoleNoiseFilter()

        assert noise_filter.filter(make_record("schoolsync.services.synchronizer", logging.DEBUG))

    @pytest.mark.parametrize("name", ["sqlalchemy.engine", "watchdog.observers", "py.warnings"])
    def test_library_warnings_hidden(self, name):
        """Test third-party warnings stay off the console."""
        noise_filter = _ConsoleNoiseFilter()

        assert not noise_filter.filter(make_record(name, logging.WARNING))
        assert noise_filter.filter(make_record(name, logging.ERROR))


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_writes_log_file(self, temp_dir, restore_root_logger):
        """Test debug messages land in the log file."""
        setup_logging(log_dir=temp_dir / "logs")

        logging.getLogger("schoolsync.test").debug("hello file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_file = temp_dir / "logs" / "schoolsync.log"
        assert "hello file" in log_file.read_text(encoding="utf-8")
