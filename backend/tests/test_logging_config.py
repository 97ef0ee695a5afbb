"""
Tests for logging configuration
"""
import json
import logging

from zkweather.core.logging_config import (BlobTruncationFilter,
                                           ContextualFormatter, LoggingConfig)


def _record(msg, args=None):
    return logging.LogRecord(
        name="zkweather.test", level=logging.INFO, pathname=__file__, lineno=1,
        msg=msg, args=args, exc_info=None
    )


def test_blob_filter_shortens_long_hex():
    """Test long hex blobs are shortened in messages"""
    blob = "0x" + "ab" * 100
    record = _record(f"proving key {blob} loaded")
    BlobTruncationFilter(max_length=32).filter(record)
    message = record.getMessage()
    assert blob not in message
    assert f"<{len(blob)} chars>" in message
    assert message.startswith("proving key 0xabab")


def test_blob_filter_keeps_short_values():
    record = _record("point 0x1234")
    BlobTruncationFilter(max_length=32).filter(record)
    assert record.getMessage() == "point 0x1234"


def test_blob_filter_replaces_byte_args():
    record = _record("key: %s", (b"\x01" * 200,))
    BlobTruncationFilter(max_length=32).filter(record)
    assert record.getMessage() == "key: <200 bytes>"


def test_contextual_formatter_includes_context():
    """Test JSON output carries the operation context"""
    LoggingConfig.set_context(circuit="weather-model", operation="compile")
    try:
        output = ContextualFormatter().format(_record("compiling"))
    finally:
        LoggingConfig.clear_context()

    data = json.loads(output)
    assert data["message"] == "compiling"
    assert data["level"] == "INFO"
    assert data["circuit"] == "weather-model"
    assert data["operation"] == "compile"


def test_log_metrics_count_levels():
    """Test the metrics handler counts records per level"""
    logger = LoggingConfig.get_logger("zkweather.test_metrics")
    LoggingConfig.reset_metrics()
    logger.warning("first warning")
    logger.error("first error")
    metrics = LoggingConfig.get_metrics()
    assert metrics["WARNING"] >= 1
    assert metrics["ERROR"] >= 1


def test_set_module_level():
    LoggingConfig.set_module_level("zkweather.test_levels", "DEBUG")
    assert LoggingConfig.get_module_level("zkweather.test_levels") == "DEBUG"
