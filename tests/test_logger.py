"""
Tests for echotest logging utilities.
"""

import json
import logging

import pytest
from rich.logging import RichHandler

from echotest.monitoring.logger import (
    JSONFormatter,
    TestLogAdapter,
    get_logger,
    log_test_event,
    setup_logging,
)


@pytest.fixture()
def formatter() -> JSONFormatter:
    """Provide a reusable formatter instance."""
    return JSONFormatter()


def _record(msg: str = "Cache entry written", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="echotest.cache.action_cache",
        level=logging.INFO,
        pathname=__file__,
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields(formatter: JSONFormatter) -> None:
    """Structured extras survive into the JSON payload."""
    output = json.loads(formatter.format(_record(fingerprint="abc", step_count=3)))

    assert output["message"] == "Cache entry written"
    assert output["level"] == "INFO"
    assert output["logger"] == "echotest.cache.action_cache"
    assert output["fingerprint"] == "abc"
    assert output["step_count"] == 3
    assert "args" not in output


def test_json_formatter_truncates_images(formatter: JSONFormatter) -> None:
    """Screenshots are never echoed in full."""
    output = json.loads(formatter.format(_record(base64_image="A" * 1000)))

    assert output["base64_image"].endswith("...")
    assert len(output["base64_image"]) < 100


def test_get_logger_with_context_returns_adapter() -> None:
    logger = get_logger("echotest.test", test_name="login")
    assert isinstance(logger, TestLogAdapter)
    assert logger.extra == {"test_name": "login"}

    plain = get_logger("echotest.test")
    assert isinstance(plain, logging.Logger)


def test_log_test_event_emits_structured_record(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="echotest.test_events"):
        log_test_event("passed", "login", fingerprint="f" * 64, data={"run_id": "r1"})

    record = caplog.records[-1]
    assert record.getMessage() == "Test event: passed"
    assert record.event_type == "passed"
    assert record.test_name == "login"
    assert record.fingerprint == "f" * 64
    assert record.run_id == "r1"


def test_setup_logging_selects_handler(tmp_path) -> None:
    root = logging.getLogger()
    saved = root.handlers[:]
    saved_level = root.level
    try:
        setup_logging(log_level="DEBUG", log_format="json")
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.DEBUG

        setup_logging(log_level="INFO", log_format="text", log_file=str(tmp_path / "run.log"))
        assert any(isinstance(handler, RichHandler) for handler in root.handlers)
        assert any(isinstance(handler, logging.FileHandler) for handler in root.handlers)
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        root.setLevel(saved_level)
        for handler in saved:
            root.addHandler(handler)
