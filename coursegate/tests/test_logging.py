"""Tests for structured logging and activation_id propagation."""

import json
import logging

from coursegate.core.logging import (
    ActivationIdFilter,
    JsonFormatter,
    PrettyFormatter,
    activation_id_ctx_var,
    activation_scope,
    get_activation_id,
    log_event,
)


def _record(msg="hello", **attrs):
    record = logging.LogRecord("coursegate", logging.INFO, __file__, 1, msg, None, None)
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


def test_filter_injects_context_activation_id():
    token = activation_id_ctx_var.set("abc123")
    try:
        record = _record()
        ActivationIdFilter().filter(record)
        assert record.activation_id == "abc123"
        assert get_activation_id() == "abc123"
    finally:
        activation_id_ctx_var.reset(token)
    assert get_activation_id("none") == "none"


def test_json_formatter_includes_structured_fields():
    record = _record(activation_id="abc123", stage="checking_usage", code_digest="-1a2b", tier=None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hello"
    assert payload["activation_id"] == "abc123"
    assert payload["stage"] == "checking_usage"
    assert payload["code_digest"] == "-1a2b"
    assert "tier" not in payload


def test_pretty_formatter_shortens_activation_id():
    line = PrettyFormatter().format(_record(activation_id="0123456789abcdef"))
    assert "[coursegate] [aid=01234567] hello" in line


def test_log_event_truncates_extra(caplog):
    with caplog.at_level(logging.INFO, logger="coursegate"):
        log_event("info", "[test] big payload", error_code="storage_error", extra={"blob": "x" * 2000})
    record = caplog.records[-1]
    assert record.error_code == "storage_error"
    assert record.blob.endswith("...<truncated>")
    assert len(record.blob) < 600


def test_activation_scope_binds_and_restores():
    assert get_activation_id() is None
    with activation_scope("abc") as aid:
        assert aid == "abc"
        assert get_activation_id() == "abc"
    assert get_activation_id() is None

    with activation_scope() as generated:
        assert generated
        assert get_activation_id() == generated
    assert get_activation_id() is None
