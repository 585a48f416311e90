import json
import logging

import pytest

from mindwell.log_config import (
    RequestContextFilter, configure_logging, create_json_formatter, request_id_var,
)


def make_record(message="Session confirmed", **extra) -> logging.LogRecord:
    record = logging.LogRecord("mindwell.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def render(record: logging.LogRecord, service="mindwell-backend") -> dict:
    RequestContextFilter(service).filter(record)
    return json.loads(create_json_formatter().format(record))


def test_json_record_carries_service_and_request_id():
    token = request_id_var.set("req-42")
    try:
        payload = render(make_record(session_id=7))
    finally:
        request_id_var.reset(token)

    assert payload["message"] == "Session confirmed"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "mindwell.test"
    assert payload["service"] == "mindwell-backend"
    assert payload["request_id"] == "req-42"
    assert payload["session_id"] == 7


def test_explicit_request_id_wins():
    payload = render(make_record(request_id="from-extra"))
    assert payload["request_id"] == "from-extra"


def test_configure_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        configure_logging("LOUD")


def test_configure_logging_installs_one_json_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging("debug", service_name="mindwell-test")
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert any(isinstance(f, RequestContextFilter) for f in root.handlers[0].filters)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
