"""Tests for core/stream_assembler.py - fragment folding into events and a final response.

Invariants:
    - Text concatenates losslessly regardless of chunking
    - Tool-call fragments accumulate per index; accumulated state at finish() is authoritative
    - A fragment for a tool call already marked done is a DecodeError
"""

import pytest

from pi_runtime.core.domain_types import StopReason
from pi_runtime.core.errors import DecodeError
from pi_runtime.core.stream_assembler import (
    StopReport,
    StreamAssembler,
    TextFragment,
    ToolCallDone,
    ToolCallFragment,
    UsageReport,
    parse_tool_arguments,
    resolve_stop_reason,
)
from pi_runtime.schemas.stream import TextDeltaEvent, ToolCallDeltaEvent, UsageEvent
from pi_runtime.schemas.usage import TokenUsage


def _apply_all(assembler, fragments):
    events = []
    for f in fragments:
        events.extend(assembler.apply(f))
    return events


# ==============================================================================
# Text
# ==============================================================================


@pytest.mark.parametrize("chunks", [
    ["Hello, world"],
    ["Hel", "lo, ", "world"],
    list("Hello, world"),
])
def test_text_reassembles_for_any_chunking(chunks):
    assembler = StreamAssembler()
    events = _apply_all(assembler, [TextFragment(c) for c in chunks])
    assert "".join(e.text for e in events) == "Hello, world"
    assert assembler.finish().text == "Hello, world"


def test_empty_text_fragment_produces_no_event():
    assert StreamAssembler().apply(TextFragment("")) == []


def test_multibyte_text_preserved():
    assembler = StreamAssembler()
    _apply_all(assembler, [TextFragment("héllo "), TextFragment("世界 🚀")])
    assert assembler.text == "héllo 世界 🚀"


# ==============================================================================
# Tool calls
# ==============================================================================


def test_tool_call_fragments_accumulate_by_index():
    assembler = StreamAssembler()
    events = _apply_all(assembler, [
        ToolCallFragment(index=0, id="call_a", name="echo", arguments='{"te'),
        ToolCallFragment(index=1, id="call_b", name="add", arguments='{"a": 1'),
        ToolCallFragment(index=0, arguments='xt": "hi"}'),
        ToolCallFragment(index=1, arguments=', "b": 2}'),
    ])
    assert all(isinstance(e, ToolCallDeltaEvent) for e in events)
    assert [e.id for e in events] == ["call_a", "call_b", "call_a", "call_b"]

    response = assembler.finish("p", "m")
    calls = response.message.tool_calls
    assert [(c.id, c.name, c.arguments) for c in calls] == [
        ("call_a", "echo", {"text": "hi"}),
        ("call_b", "add", {"a": 1, "b": 2}),
    ]
    assert response.stop_reason == StopReason.TOOL_CALLS


def test_missing_tool_call_id_is_synthesized():
    assembler = StreamAssembler()
    events = assembler.apply(ToolCallFragment(index=3, name="echo"))
    assert events[0].id == "call_3"


def test_fragment_after_done_is_decode_error():
    assembler = StreamAssembler()
    assembler.apply(ToolCallFragment(index=0, id="c1", name="echo", arguments="{}"))
    assembler.apply(ToolCallDone(index=0))
    with pytest.raises(DecodeError):
        assembler.apply(ToolCallFragment(index=0, arguments="more"))


def test_done_for_unknown_index_is_decode_error():
    with pytest.raises(DecodeError):
        StreamAssembler().apply(ToolCallDone(index=7))


def test_incomplete_calls_are_authoritative_at_finish():
    """No ToolCallDone ever arrives: finish() still yields the accumulated call."""
    assembler = StreamAssembler()
    _apply_all(assembler, [
        ToolCallFragment(index=0, id="c1", name="echo", arguments='{"text": '),
        ToolCallFragment(index=0, arguments='"hi"}'),
    ])
    assert assembler.finish().message.tool_calls[0].arguments == {"text": "hi"}


def test_invalid_arguments_json_is_decode_error_at_finish():
    assembler = StreamAssembler()
    assembler.apply(ToolCallFragment(index=0, id="c1", name="echo", arguments='{"text": '))
    with pytest.raises(DecodeError):
        assembler.finish()


def test_tool_call_without_name_is_decode_error():
    assembler = StreamAssembler()
    assembler.apply(ToolCallFragment(index=0, id="c1", arguments="{}"))
    with pytest.raises(DecodeError):
        assembler.finish()


def test_empty_arguments_parse_to_empty_object():
    assert parse_tool_arguments("", "c1") == {}
    assert parse_tool_arguments("  ", "c1") == {}


# ==============================================================================
# Usage & stop reason
# ==============================================================================


def test_last_usage_report_wins():
    assembler = StreamAssembler()
    events = _apply_all(assembler, [
        UsageReport(TokenUsage(input_tokens=1)),
        UsageReport(TokenUsage(input_tokens=5, output_tokens=2)),
    ])
    assert all(isinstance(e, UsageEvent) for e in events)
    assert assembler.finish().usage == TokenUsage(input_tokens=5, output_tokens=2)


def test_stop_report_is_kept():
    assembler = StreamAssembler()
    _apply_all(assembler, [TextFragment("x"), StopReport(StopReason.LENGTH)])
    assert assembler.finish().stop_reason == StopReason.LENGTH


@pytest.mark.parametrize("reported,has_calls,expected", [
    (None, False, StopReason.STOP),
    (None, True, StopReason.TOOL_CALLS),
    (StopReason.STOP, True, StopReason.TOOL_CALLS),
    (StopReason.LENGTH, True, StopReason.LENGTH),
    (StopReason.ERROR, False, StopReason.ERROR),
])
def test_resolve_stop_reason(reported, has_calls, expected):
    assert resolve_stop_reason(reported, has_calls) == expected


def test_text_delta_events_match_fragments():
    events = StreamAssembler().apply(TextFragment("abc"))
    assert events == [TextDeltaEvent(text="abc")]
