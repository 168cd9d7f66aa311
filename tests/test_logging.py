"""Tests for logging setup and helpers."""

from __future__ import annotations

import pytest

from cros_image_tools import logging as logging_module


def make_record(level: str, tags=None, message: str = "msg") -> dict:
    return {
        "level": logging_module.logger.level(level),
        "extra": {"tags": tags or []},
        "message": message,
    }


@pytest.fixture
def restore_logger():
    yield
    logging_module.logger.remove()


def test_setup_logging_creates_log_files(tmp_path, restore_logger):
    """Test INFO records reach the operations and structured logs."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(log_dir=log_dir)

    logging_module.get_logger(source="test").info("Copy finished")
    logging_module.logger.complete()

    assert "Copy finished" in (log_dir / "operations.log").read_text()
    assert "Copy finished" in (log_dir / "structured.jsonl").read_text()
    assert not (log_dir / "debug.log").exists()


def test_setup_logging_debug_log(tmp_path, restore_logger):
    """Test debug mode adds the debug log sink."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, log_dir=log_dir)

    logging_module.get_logger(source="test").debug("Running command: cgpt show")
    logging_module.logger.complete()

    assert "Running command: cgpt show" in (log_dir / "debug.log").read_text()
    assert "Running command" not in (log_dir / "operations.log").read_text()


def test_get_logger_preserves_context_metadata(log_records):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="job-123", tags=["copy"], source="copy")
    log.info("Context test")

    record = log_records[-1]
    assert record["extra"]["job_id"] == "job-123"
    assert record["extra"]["tags"] == ["copy"]
    assert record["extra"]["source"] == "copy"


def test_logger_factory_sources(log_records):
    logging_module.LoggerFactory.for_locator().info("locator")
    logging_module.LoggerFactory.for_copy(job_id="copy-1").info("copy")

    assert log_records[-2]["extra"]["source"] == "locator"
    assert log_records[-1]["extra"]["job_id"] == "copy-1"


def test_operation_context_success(log_records):
    with logging_module.operation_context("copy", source_image="a.bin") as log:
        log.info("working")

    messages = [record["message"] for record in log_records]
    assert messages[0] == "Copy started"
    assert messages[-1].startswith("Copy completed in")
    assert log_records[-1]["extra"]["job_id"].startswith("copy-")


def test_operation_context_failure(log_records):
    with pytest.raises(RuntimeError):
        with logging_module.operation_context("copy"):
            raise RuntimeError("dd exploded {braces}")

    assert log_records[-1]["level"].name == "ERROR"
    assert "RuntimeError" in log_records[-1]["message"]
    assert "{braces}" in log_records[-1]["message"]


class TestFilters:
    def test_progress_hidden_above_trace(self):
        assert not logging_module._should_log_progress(make_record("DEBUG", ["progress"]))
        assert logging_module._should_log_progress(make_record("TRACE", ["progress"]))

    def test_progress_warnings_always_shown(self):
        assert logging_module._should_log_progress(make_record("WARNING", ["progress"]))

    def test_other_tags_pass(self):
        assert logging_module._should_log_progress(make_record("INFO", ["copy"]))

    def test_temp_registration_hidden_at_info(self):
        record = make_record("INFO", ["temp"], "Registered temporary object /tmp/x")

        assert not logging_module._combined_filter(record)

    def test_temp_warning_passes(self):
        record = make_record("WARNING", ["temp"], "Failed to remove /tmp/x")

        assert logging_module._combined_filter(record)


def test_throttled_logger_limits_messages(log_records):
    throttled = logging_module.ThrottledLogger(
        logging_module.get_logger(source="test"), interval_seconds=3600
    )

    for _ in range(5):
        throttled.debug("key", "progress line")
    throttled.debug("other", "other line")

    messages = [record["message"] for record in log_records]
    assert messages.count("progress line") == 1
    assert messages.count("other line") == 1
