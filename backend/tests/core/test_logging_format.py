"""
Logging Tests
"""

import json
import logging
import warnings

from pythonjsonlogger.json import JsonFormatter

from flagkeeper.core.logging import ContextualJsonFormatter, correlation_id, log_duration


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("flagkeeper.test", logging.INFO, __file__, 1, "[flags] create success", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_record_has_context_fields():
    formatter = ContextualJsonFormatter("%(message)s")
    token = correlation_id.set("req-42")
    try:
        output = json.loads(formatter.format(make_record(flag_key="dark-mode", duration_ms=1.5)))
    finally:
        correlation_id.reset(token)

    assert output["message"] == "[flags] create success"
    assert output["level"] == "INFO"
    assert output["environment"] == "test"
    assert output["correlation_id"] == "req-42"
    assert output["flag_key"] == "dark-mode"
    assert output["duration_ms"] == 1.5
    assert "timestamp" in output


def test_user_personal_data_is_masked():
    formatter = ContextualJsonFormatter("%(message)s")
    output = json.loads(formatter.format(make_record(
        phone_number="+79123456789",
        user={"id": "u1", "birth_date": "1990-05-17"},
    )))

    assert output["phone_number"] == "***MASKED***"
    assert output["user"]["birth_date"] == "***MASKED***"
    assert output["user"]["id"] == "u1"


def test_log_duration(caplog):
    logger = logging.getLogger("flagkeeper.test.duration")
    with caplog.at_level(logging.INFO, logger="flagkeeper.test.duration"):
        with log_duration(logger, "list flags"):
            pass

    [record] = caplog.records
    assert record.getMessage() == "list flags completed"
    assert record.duration_ms >= 0
    assert record.operation == "list flags"


def test_formatter_uses_current_json_module():
    assert issubclass(ContextualJsonFormatter, JsonFormatter)

    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        formatter = ContextualJsonFormatter("%(message)s")
        json.loads(formatter.format(make_record()))
