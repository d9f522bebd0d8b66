"""Unit tests for the JSON-lines logging helpers."""
import json
import logging
import os
import time

import pytest

from observability import (
    MAX_PAYLOAD_CHARS,
    JSONFormatter,
    cleanup_old_logs,
    log_data_structure,
    log_workflow,
    setup_structured_logger,
)


@pytest.fixture
def test_logger():
    logger = logging.getLogger("blueprint.tests.observability")
    logger.setLevel(logging.DEBUG)
    return logger


def _fields(caplog):
    return [record.extra_fields for record in caplog.records]


@pytest.mark.priority_medium
@pytest.mark.unit
class TestFormatter:
    def test_extra_fields_are_merged(self):
        record = logging.LogRecord("blueprint.x", logging.WARNING, __file__, 12, "hello %s", ("there",), None)
        record.extra_fields = {"user_id": "u1", "week": "2025-01-06"}

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "hello there"
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "blueprint.x"
        assert entry["user_id"] == "u1"
        assert entry["timestamp"].endswith("+00:00")

    def test_setup_is_idempotent(self):
        first = setup_structured_logger("blueprint.tests.setup")
        second = setup_structured_logger("blueprint.tests.setup")
        assert first is second
        assert len(second.handlers) == 1


@pytest.mark.priority_medium
@pytest.mark.unit
class TestLogWorkflow:
    def test_start_and_complete(self, test_logger, caplog):
        caplog.set_level(logging.INFO, logger=test_logger.name)
        with log_workflow(test_logger, "weekly_blueprint", user_id="u1"):
            pass

        phases = [fields["phase"] for fields in _fields(caplog)]
        assert phases == ["start", "complete"]
        assert all(fields["user_id"] == "u1" for fields in _fields(caplog))

    def test_error_is_logged_and_reraised(self, test_logger, caplog):
        caplog.set_level(logging.INFO, logger=test_logger.name)
        with pytest.raises(ValueError):
            with log_workflow(test_logger, "macro_recalculation"):
                raise ValueError("bad lookup")

        error = _fields(caplog)[-1]
        assert error["phase"] == "error"
        assert error["error_type"] == "ValueError"
        assert error["error"] == "bad lookup"
        assert caplog.records[-1].levelno == logging.ERROR


@pytest.mark.priority_medium
@pytest.mark.unit
class TestDataStructure:
    def test_small_payload_kept_whole(self, test_logger, caplog):
        caplog.set_level(logging.DEBUG, logger=test_logger.name)
        log_data_structure(test_logger, "day", {"day": "Monday"})

        fields = _fields(caplog)[0]
        assert fields["truncated"] is False
        assert json.loads(fields["data"]) == {"day": "Monday"}

    def test_large_payload_truncated(self, test_logger, caplog):
        caplog.set_level(logging.DEBUG, logger=test_logger.name)
        log_data_structure(test_logger, "raw output", "x" * (MAX_PAYLOAD_CHARS + 10), level="WARNING")

        fields = _fields(caplog)[0]
        assert fields["truncated"] is True
        assert fields["full_size"] == MAX_PAYLOAD_CHARS + 10
        assert len(fields["data_preview"]) == MAX_PAYLOAD_CHARS
        assert caplog.records[0].levelno == logging.WARNING


@pytest.mark.priority_medium
@pytest.mark.unit
class TestCleanup:
    def test_only_old_logs_removed(self, tmp_path):
        old = tmp_path / "blueprint.pipeline.jsonl.2024-01-01"
        fresh = tmp_path / "blueprint.pipeline.jsonl"
        other = tmp_path / "notes.txt"
        for path in (old, fresh, other):
            path.write_text("{}\n")
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old, (ten_days_ago, ten_days_ago))
        os.utime(other, (ten_days_ago, ten_days_ago))

        assert cleanup_old_logs(tmp_path, retention_days=7) == 1
        assert not old.exists()
        assert fresh.exists()
        assert other.exists()
