"""
Unit tests for structured logging configuration

Tests:
- JSONFormatter output structure
- ConsoleFormatter extra fields and colors
- setup_logging handler configuration
- ContextLogger field binding
"""

import json
import logging
import logging.handlers
import sys

import pytest

from utils.logging import (
    ConsoleFormatter,
    ContextLogger,
    JSONFormatter,
    configure_from_env,
    setup_logging,
)


def make_record(msg="Batch committed", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="bulk_sync.coordinator",
        level=level,
        pathname="coordinator.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
        func="_handle_result",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestJSONFormatter:
    """Test JSON log records"""

    def test_basic_fields(self):
        output = json.loads(JSONFormatter(app_name="bulk-sync").format(make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "bulk_sync.coordinator"
        assert output["message"] == "Batch committed"
        assert output["app"] == "bulk-sync"
        assert output["source"] == {"file": "coordinator.py", "line": 42, "function": "_handle_result"}
        assert "timestamp" in output
        assert "hostname" in output

    def test_optional_fields_disabled(self):
        formatter = JSONFormatter(include_timestamp=False, include_hostname=False)
        output = json.loads(formatter.format(make_record()))
        assert "timestamp" not in output
        assert "hostname" not in output

    def test_extra_fields_become_context(self):
        output = json.loads(JSONFormatter().format(make_record(run_id="nightly", sequence=7)))
        assert output["context"] == {"run_id": "nightly", "sequence": 7}

    def test_exception_info(self):
        try:
            raise OSError("disk full")
        except OSError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

        output = json.loads(JSONFormatter().format(record))

        assert output["exception"]["type"] == "OSError"
        assert output["exception"]["message"] == "disk full"
        assert any("disk full" in line for line in output["exception"]["traceback"])

    def test_unserializable_extra(self):
        output = json.loads(JSONFormatter().format(make_record(keys=frozenset({1}))))
        assert output["context"]["keys"] == "frozenset({1})"


class TestConsoleFormatter:
    """Test human-readable console output"""

    def test_appends_extra_fields(self):
        formatted = ConsoleFormatter(use_colors=False).format(make_record(run_id="nightly", sequence=7))
        assert "[INFO] bulk_sync.coordinator: Batch committed" in formatted
        assert formatted.endswith("[run_id=nightly, sequence=7]")

    def test_colors_do_not_leak_into_record(self):
        formatter = ConsoleFormatter()
        formatter.use_colors = True
        record = make_record(level=logging.WARNING)

        formatted = formatter.format(record)

        assert "\033[33mWARNING\033[0m" in formatted
        assert record.levelname == "WARNING"


class TestSetupLogging:
    """Test root logger configuration"""

    def test_console_only(self, restore_root_logger):
        setup_logging(level="DEBUG")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, ConsoleFormatter)
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_json_file_output(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "logs" / "sync.log"
        setup_logging(level="INFO", log_file=str(log_file), console_output=False, json_format=True)

        handlers = restore_root_logger.handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.handlers.RotatingFileHandler)

        logging.getLogger("bulk_sync.test").info("hello", extra={"run_id": "r"})
        handlers[0].flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        last = json.loads(lines[-1])
        assert last["message"] == "hello"
        assert last["context"] == {"run_id": "r"}

    def test_repeated_setup_replaces_handlers(self, restore_root_logger):
        setup_logging()
        setup_logging()
        assert len(restore_root_logger.handlers) == 1

    def test_unknown_level_defaults_to_info(self, restore_root_logger):
        setup_logging(level="chatty")
        assert restore_root_logger.level == logging.INFO

    def test_configure_from_env(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.setenv("LOG_JSON", "true")
        monkeypatch.delenv("LOG_FILE", raising=False)

        configure_from_env()

        assert restore_root_logger.level == logging.WARNING
        assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)


class TestContextLogger:
    """Test bound context fields"""

    def test_context_attached(self, caplog):
        logger = ContextLogger("bulk_sync.test", run_id="nightly")
        with caplog.at_level(logging.INFO, logger="bulk_sync.test"):
            logger.info("Batch committed", sequence=3)

        record = caplog.records[-1]
        assert record.run_id == "nightly"
        assert record.sequence == 3

    def test_disabled_level_is_skipped(self, caplog):
        logger = ContextLogger("bulk_sync.test")
        with caplog.at_level(logging.WARNING, logger="bulk_sync.test"):
            logger.debug("noisy")
        assert caplog.records == []

    def test_records_caller_location(self, caplog):
        logger = ContextLogger("bulk_sync.test")
        with caplog.at_level(logging.INFO, logger="bulk_sync.test"):
            logger.info("where am I")
        assert caplog.records[-1].funcName == "test_records_caller_location"
