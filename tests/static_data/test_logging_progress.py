"""Tests for structured logging setup and progress sinks."""

import json
import logging

import pytest

from ProdToolkit.StaticData.logging_config import (
    LOGGER_NAME,
    JSONFormatter,
    mask_sensitive_data,
    setup_logging,
)
from ProdToolkit.StaticData.progress import LoggingProgressSink, report_progress
from ProdToolkit.StaticData.settings import LoggingSettings


@pytest.fixture
def managed_logger(tmp_path):
    logger = setup_logging(LoggingSettings(level="DEBUG"), log_dir=tmp_path, console=False)
    yield logger
    for handler in list(logger.handlers):
        if getattr(handler, "_staticdata_managed", False):
            logger.removeHandler(handler)
            handler.close()


def test_json_log_file_lifts_extra_fields(managed_logger, tmp_path):
    logging.getLogger(f"{LOGGER_NAME}.archive").info(
        "archive stage", extra={"stage": "archive", "version": "14.1.1", "token": "s3cret"}
    )
    for handler in managed_logger.handlers:
        handler.flush()

    (log_file,) = tmp_path.glob("staticdata-*.jsonl")
    record = json.loads(log_file.read_text().splitlines()[-1])

    assert record["message"] == "archive stage"
    assert record["stage"] == "archive"
    assert record["version"] == "14.1.1"
    assert record["token"] == "***masked***"
    assert record["level"] == "INFO"


def test_setup_is_not_additive(tmp_path):
    logger = setup_logging(LoggingSettings(), log_dir=tmp_path, console=True)
    setup_logging(LoggingSettings(), log_dir=tmp_path, console=True)
    managed = [h for h in logger.handlers if getattr(h, "_staticdata_managed", False)]
    try:
        assert len(managed) == 2
    finally:
        for handler in managed:
            logger.removeHandler(handler)
            handler.close()


def test_formatter_handles_plain_records():
    payload = json.loads(JSONFormatter().format(logging.makeLogRecord({"msg": "hello"})))
    assert payload["message"] == "hello"
    assert payload["stage"] is None


def test_mask_sensitive_data():
    masked = mask_sensitive_data({"Authorization": "Bearer x", "url": "https://x?apikey=1", "n": 1})
    assert masked == {"Authorization": "***masked***", "url": "***masked***", "n": 1}


class TestProgress:
    def test_report_progress_clamps(self):
        seen = []
        report_progress(lambda fraction, label: seen.append(fraction), 1.7, "x")
        report_progress(lambda fraction, label: seen.append(fraction), -0.2, "x")
        assert seen == [1.0, 0.0]

    def test_missing_sink_is_fine(self):
        report_progress(None, 0.5, "x")

    def test_logging_sink_throttles(self, caplog):
        sink = LoggingProgressSink(logging.getLogger("progress-test"), step=0.25)
        with caplog.at_level(logging.INFO, logger="progress-test"):
            for fraction in (0.1, 0.2, 0.3, 0.31, 0.6, 1.0):
                sink(fraction, "download")
        percents = [record.percent for record in caplog.records]
        assert percents == [30.0, 60.0, 100.0]

    def test_logging_sink_rejects_bad_step(self):
        with pytest.raises(ValueError):
            LoggingProgressSink(step=0)
