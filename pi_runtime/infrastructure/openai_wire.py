"""OpenAI Chat Completions wire format - request encoding and response decoding.

Invariants:
    - Pure: dicts in, canonical schemas/fragments out; no IO
    - input_tokens excludes cached prompt tokens; those are reported as cached_input_tokens
    - A tool message becomes one "tool" role message per result part
    - Malformed bodies raise DecodeError, never KeyError/TypeError

Design Decisions:
    - Tool-call arguments travel as JSON strings on the wire and are parsed only
      once a call is complete (parse_tool_arguments)
"""

import json
from typing import Any

from pi_runtime.core.domain_types import Role, StopReason
from pi_runtime.core.errors import DecodeError, ProviderError
from pi_runtime.core.stream_assembler import (
    StopReport,
    StreamFragment,
    TextFragment,
    ToolCallFragment,
    UsageReport,
    parse_tool_arguments,
    resolve_stop_reason,
)
from pi_runtime.schemas.chat import ChatRequest, ChatResponse
from pi_runtime.schemas.messages import ChatMessage, ToolCallPart, ToolDefinition
from pi_runtime.schemas.usage import TokenUsage

DONE_SENTINEL = "[DONE]"

_FINISH_REASONS = {
    "stop": StopReason.STOP,
    "length": StopReason.LENGTH,
    "tool_calls": StopReason.TOOL_CALLS,
    "function_call": StopReason.TOOL_CALLS,
    "content_filter": StopReason.ERROR,
}


# -- Encoding ------------------------------------------------------------------

def encode_message(message: ChatMessage) -> list[dict]:
    if message.role == Role.TOOL:
        return [
            {"role": "tool", "tool_call_id": r.call_id, "content": r.content}
            for r in message.tool_results
        ]
    if message.role == Role.ASSISTANT and message.tool_calls:
        return [{
            "role": "assistant",
            "content": message.text or None,
            "tool_calls": [
                {
                    "id": c.id,
                    "type": "function",
                    "function": {
                        "name": c.name,
                        "arguments": json.dumps(c.arguments, ensure_ascii=False),
                    },
                }
                for c in message.tool_calls
            ],
        }]
    return [{"role": message.role.value, "content": message.text}]


def encode_tools(tools: tuple[ToolDefinition, ...]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in tools
    ]


def build_payload(request: ChatRequest, stream: bool = False) -> dict:
    payload: dict[str, Any] = {
        "model": request.model,
        "messages": [m for msg in request.messages for m in encode_message(msg)],
    }
    if request.tools:
        payload["tools"] = encode_tools(request.tools)
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    if request.max_tokens is not None:
        payload["max_tokens"] = request.max_tokens
    if stream:
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}
    return payload


# -- Decoding ------------------------------------------------------------------

def map_finish_reason(reason: str | None) -> StopReason | None:
    if reason is None:
        return None
    return _FINISH_REASONS.get(reason, StopReason.STOP)


def _count(value: Any, what: str) -> int:
    if value is None:
        return 0
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise DecodeError(f"{what} is not a token count")
    return value


def decode_usage(usage: dict | None) -> TokenUsage:
    usage = _object(usage, "usage")
    if not usage:
        return TokenUsage()
    prompt = _count(usage.get("prompt_tokens"), "prompt_tokens")
    details = _object(usage.get("prompt_tokens_details"), "prompt_tokens_details")
    cached = min(_count(details.get("cached_tokens"), "cached_tokens"), prompt)
    return TokenUsage(
        input_tokens=prompt - cached,
        output_tokens=_count(usage.get("completion_tokens"), "completion_tokens"),
        cached_input_tokens=cached,
    )


def _object(value: Any, what: str) -> dict:
    """value if it is a JSON object (None counts as empty), else DecodeError."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DecodeError(f"{what} is not a JSON object")
    return value


def _objects(value: Any, what: str) -> list[dict]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"{what} is not a list")
    return [_object(v, what) for v in value]


def _string(value: Any, what: str) -> str | None:
    if value is not None and not isinstance(value, str):
        raise DecodeError(f"{what} is not a string")
    return value


def _first_choice(body: dict) -> dict:
    choices = _objects(body.get("choices"), "choices")
    if not choices:
        raise DecodeError("Completion response has no choices")
    return choices[0]


def decode_completion(body: Any, provider: str | None = None) -> ChatResponse:
    if not isinstance(body, dict):
        raise DecodeError("Completion response is not a JSON object")
    choice = _first_choice(body)
    message = _object(choice.get("message"), "choice message")
    calls = []
    for raw in _objects(message.get("tool_calls"), "tool call"):
        if raw.get("type", "function") != "function":
            continue
        fn = _object(raw.get("function"), "tool call function")
        call_id = _string(raw.get("id"), "tool call id") or f"call_{len(calls)}"
        name = _string(fn.get("name"), "tool call name")
        if not name:
            raise DecodeError(f"Tool call {call_id} has no name")
        arguments = _string(fn.get("arguments"), "tool call arguments") or ""
        calls.append(ToolCallPart(
            id=call_id,
            name=name,
            arguments=parse_tool_arguments(arguments, call_id),
        ))
    return ChatResponse(
        message=ChatMessage.assistant(
            _string(message.get("content"), "message content") or "", calls,
        ),
        usage=decode_usage(body.get("usage")),
        stop_reason=resolve_stop_reason(
            map_finish_reason(_string(choice.get("finish_reason"), "finish_reason")),
            bool(calls),
        ),
        provider=provider,
        model=_string(body.get("model"), "model"),
    )


def decode_chunk(data: str) -> list[StreamFragment]:
    """Translate one SSE data payload (already known not to be [DONE])."""
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed stream chunk: {e}")
    if not isinstance(chunk, dict):
        raise DecodeError("Stream chunk is not a JSON object")
    if "error" in chunk:
        err = chunk["error"]
        if isinstance(err, dict):
            err = err.get("message", err)
        raise ProviderError(f"Provider error in stream: {err}", retryable=False)

    fragments: list[StreamFragment] = []
    for choice in _objects(chunk.get("choices"), "chunk choice"):
        delta = _object(choice.get("delta"), "chunk delta")
        content = _string(delta.get("content"), "delta content")
        if content:
            fragments.append(TextFragment(content))
        for tc in _objects(delta.get("tool_calls"), "tool call delta"):
            fn = _object(tc.get("function"), "tool call delta function")
            index = tc.get("index", 0)
            if not isinstance(index, int):
                raise DecodeError("tool call delta index is not an integer")
            fragments.append(ToolCallFragment(
                index=index,
                id=_string(tc.get("id"), "tool call id"),
                name=_string(fn.get("name"), "tool call name"),
                arguments=_string(fn.get("arguments"), "tool call arguments"),
            ))
        reason = map_finish_reason(_string(choice.get("finish_reason"), "finish_reason"))
        if reason is not None:
            fragments.append(StopReport(reason))
    if chunk.get("usage"):
        fragments.append(UsageReport(decode_usage(chunk["usage"])))
    return fragments
