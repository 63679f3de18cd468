"""Tests for core/errors.py - kinds, status codes and boundary flattening."""

import pytest

from pi_runtime.core.domain_types import ErrorKind
from pi_runtime.core.errors import (
    STATUS_CODES,
    CallCancelledError,
    DecodeError,
    InvalidContextError,
    ModelTimeoutError,
    ProviderError,
    ToolDispatchError,
    TurnLimitExceededError,
    UnknownModelError,
    UnknownProviderError,
    error_from_stream_event,
)
from pi_runtime.schemas.stream import ErrorEvent


def test_every_kind_has_a_distinct_status_code():
    assert set(STATUS_CODES) == set(ErrorKind)
    assert len(set(STATUS_CODES.values())) == len(STATUS_CODES)


def test_to_response_flattens_code_and_message():
    err = UnknownModelError("openai", "gpt-x")
    body = err.to_response()["error"]
    assert body["code"] == "UNKNOWN_MODEL"
    assert body["kind"] == "unknown_model"
    assert body["status_code"] == 11
    assert "openai:gpt-x" in body["message"]


def test_timeout_and_cancel_are_distinct_from_provider_errors():
    kinds = {
        ModelTimeoutError(1.0).kind,
        CallCancelledError().kind,
        ProviderError("x").kind,
    }
    assert kinds == {ErrorKind.TIMEOUT, ErrorKind.CANCELLED, ErrorKind.PROVIDER}


@pytest.mark.parametrize("status,retryable", [
    (None, True), (429, True), (500, True), (529, True),
    (400, False), (401, False), (404, False),
])
def test_provider_error_retryable_by_status(status, retryable):
    assert ProviderError("x", status=status).retryable is retryable


def test_provider_error_explicit_retryable_overrides_status():
    assert ProviderError("timeout", retryable=False).retryable is False


def test_to_stream_event_carries_status():
    event = ProviderError("bad gateway", status=502).to_stream_event()
    assert event == ErrorEvent(kind=ErrorKind.PROVIDER, message="bad gateway", status=502)


@pytest.mark.parametrize("err,cls", [
    (ProviderError("p", status=503), ProviderError),
    (DecodeError("d"), DecodeError),
    (ModelTimeoutError(2.0), ModelTimeoutError),
    (CallCancelledError(), CallCancelledError),
])
def test_error_from_stream_event_rebuilds_type(err, cls):
    rebuilt = error_from_stream_event(err.to_stream_event())
    assert isinstance(rebuilt, cls)
    assert rebuilt.message == err.message
    assert rebuilt.status == err.status


def test_error_from_stream_event_other_kinds_keep_kind():
    event = InvalidContextError("bad").to_stream_event()
    assert error_from_stream_event(event).kind == ErrorKind.INVALID_CONTEXT


def test_tool_dispatch_error_records_tool_name():
    err = ToolDispatchError("echo", "failed")
    assert err.context.tool_name == "echo"
    assert err.to_response()["error"]["context"]["tool_name"] == "echo"


def test_turn_limit_message_mentions_limit():
    assert "3" in TurnLimitExceededError(3).message


def test_unknown_provider_status_code():
    assert UnknownProviderError("x").status_code == 10
