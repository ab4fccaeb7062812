from __future__ import annotations

import json
import logging
import sys

import pytest

from app.core.logging import _ContainerFormatter, _JsonFormatter, setup_logging


def _record(level: int = logging.INFO, msg: str = "hello", *args, **extra):
    record = logging.LogRecord(
        name="app.services.reconciliation",
        level=level,
        pathname="reconciliation.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ---- setup_logging ----


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


@pytest.mark.parametrize("sdk_logger", ["uvicorn", "httpx", "httpcore", "stripe"])
def test_setup_logging_keeps_sdk_loggers_quiet_at_debug(sdk_logger: str) -> None:
    setup_logging("debug")
    assert logging.getLogger(sdk_logger).level == logging.WARNING


def test_setup_logging_allows_sdk_loggers_at_error() -> None:
    setup_logging("error")
    assert logging.getLogger("stripe").level == logging.ERROR


def test_setup_logging_json_installs_json_formatter() -> None:
    setup_logging("info", json_format=True)
    (handler,) = logging.getLogger().handlers
    assert isinstance(handler.formatter, _JsonFormatter)
    setup_logging("info")


# ---- container format ----


def test_container_formatter_excludes_location_for_info() -> None:
    output = _ContainerFormatter().format(_record())
    assert "hello" in output
    assert "app.services.reconciliation" in output
    assert "[reconciliation.py:" not in output


def test_container_formatter_includes_location_for_warning() -> None:
    output = _ContainerFormatter().format(_record(logging.WARNING, "skipped"))
    assert "[reconciliation.py:42]" in output


def test_container_formatter_is_not_json() -> None:
    output = _ContainerFormatter().format(_record())
    with pytest.raises(json.JSONDecodeError):
        json.loads(output)


# ---- JSON format ----


def test_json_formatter_produces_valid_json() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(logging.INFO, "Hello %s", "world")))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "app.services.reconciliation"
    assert parsed["message"] == "Hello world"
    assert "timestamp" in parsed


def test_json_formatter_promotes_webhook_context() -> None:
    record = _record(
        msg="Webhook processed: enrollment created",
        source="stripe",
        event_id="evt_123",
        event_type="checkout.session.completed",
        request_id="abc-123",
    )

    parsed = json.loads(_JsonFormatter().format(record))

    assert parsed["source"] == "stripe"
    assert parsed["event_id"] == "evt_123"
    assert parsed["event_type"] == "checkout.session.completed"
    assert parsed["request_id"] == "abc-123"


def test_json_formatter_omits_absent_context() -> None:
    parsed = json.loads(_JsonFormatter().format(_record()))
    assert "event_id" not in parsed
    assert "user_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("sanity mutation rejected")
    except ValueError:
        record = _record(logging.ERROR, "Webhook processing failed")
        record.exc_info = sys.exc_info()

    parsed = json.loads(_JsonFormatter().format(record))

    assert "ValueError: sanity mutation rejected" in parsed["exception"]
