"""
Tests for logging setup and the structured formatter.
"""

import json
import logging

from project_snapshot.utils.logging import LOGGER_NAME, StructuredFormatter, get_logger, setup_logging


class TestLogging:
    """Test cases for the logging utilities."""

    def teardown_method(self):
        logger = logging.getLogger(LOGGER_NAME)
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def test_structured_formatter_carries_backup_context(self):
        record = logging.LogRecord(
            name="project_snapshot.backup.manager",
            level=logging.WARNING,
            pathname=__file__,
            lineno=10,
            msg="Database backup failed: %s",
            args=("locked",),
            exc_info=None,
        )
        record.backup_id = "checkpoint-1-2026-03-01T12-00-00-000Z"
        record.step = "database"
        record.attempt = 2

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["level"] == "WARNING"
        assert entry["message"] == "Database backup failed: locked"
        assert entry["backup_id"] == "checkpoint-1-2026-03-01T12-00-00-000Z"
        assert entry["step"] == "database"
        assert entry["metadata"]["attempt"] == 2

    def test_file_logging(self, tmp_path):
        log_file = tmp_path / "logs" / "snapshot.log"
        setup_logging(level="DEBUG", log_file=str(log_file), structured_logging=True)

        get_logger("tests").info("hello", extra={"backup_id": "b-1"})
        for handler in logging.getLogger(LOGGER_NAME).handlers:
            handler.flush()

        lines = log_file.read_text().strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["logger"] == "project_snapshot.tests"
        assert entry["backup_id"] == "b-1"

    def test_setup_replaces_handlers(self):
        setup_logging()
        setup_logging()

        assert len(logging.getLogger(LOGGER_NAME).handlers) == 1
