"""Tests for core/stream_contract.py - canonical stream sequence checking."""

import pytest

from pi_runtime.core.domain_types import ErrorKind
from pi_runtime.core.stream_contract import (
    StreamContractViolation,
    StreamSequenceChecker,
    check_stream,
)
from pi_runtime.schemas.chat import ChatResponse
from pi_runtime.schemas.messages import ChatMessage
from pi_runtime.schemas.stream import EndEvent, ErrorEvent, StartEvent, TextDeltaEvent


def _end(text):
    return EndEvent(response=ChatResponse(message=ChatMessage.assistant(text)))


def test_valid_stream_passes():
    check_stream([StartEvent(), TextDeltaEvent(text="a"), TextDeltaEvent(text="b"), _end("ab")])


def test_error_terminal_is_valid():
    check_stream([StartEvent(), ErrorEvent(kind=ErrorKind.PROVIDER, message="x")])


def test_missing_start_rejected():
    with pytest.raises(StreamContractViolation):
        check_stream([TextDeltaEvent(text="a"), _end("a")])


def test_duplicate_start_rejected():
    with pytest.raises(StreamContractViolation):
        check_stream([StartEvent(), StartEvent(), _end("")])


def test_event_after_terminal_rejected():
    with pytest.raises(StreamContractViolation):
        check_stream([StartEvent(), _end(""), TextDeltaEvent(text="late")])


def test_missing_terminal_rejected():
    with pytest.raises(StreamContractViolation):
        check_stream([StartEvent(), TextDeltaEvent(text="a")])


def test_end_text_must_match_deltas():
    with pytest.raises(StreamContractViolation):
        check_stream([StartEvent(), TextDeltaEvent(text="a"), _end("different")])


def test_checker_exposes_accumulated_text():
    checker = StreamSequenceChecker()
    checker.observe(StartEvent())
    checker.observe(TextDeltaEvent(text="he"))
    checker.observe(TextDeltaEvent(text="llo"))
    assert checker.text == "hello"
    assert not checker.terminated
