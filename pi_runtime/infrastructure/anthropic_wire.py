"""Anthropic Messages wire format - request encoding and response/stream decoding.

Invariants:
    - System messages travel in the top-level system parameter, never in messages
    - Consecutive tool messages merge into one user turn of tool_result blocks
    - input_tokens excludes cache reads and cache writes (Anthropic reports them apart)
    - content_block_stop on a tool_use block marks that tool call complete
    - A stream is complete only once message_stop arrives (StreamEventDecoder.stopped)
    - A stream error event is a provider error, not a malformed frame

Design Decisions:
    - Decoders read SDK objects with getattr: works with SDK models and plain test doubles
    - Helper events of the SDK stream manager ("text", "input_json") are ignored;
      only raw protocol events are decoded
"""

from typing import Any

from pi_runtime.core.domain_types import Role, StopReason
from pi_runtime.core.errors import DecodeError, ProviderError
from pi_runtime.core.stream_assembler import (
    StopReport,
    StreamFragment,
    TextFragment,
    ToolCallDone,
    ToolCallFragment,
    UsageReport,
    resolve_stop_reason,
)
from pi_runtime.schemas.chat import ChatRequest, ChatResponse
from pi_runtime.schemas.messages import ChatMessage, ToolCallPart, ToolDefinition
from pi_runtime.schemas.usage import TokenUsage

DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS = {
    "end_turn": StopReason.STOP,
    "stop_sequence": StopReason.STOP,
    "pause_turn": StopReason.STOP,
    "max_tokens": StopReason.LENGTH,
    "tool_use": StopReason.TOOL_CALLS,
    "refusal": StopReason.ERROR,
}

# Stream error types with an HTTP equivalent; overloaded_error is the 529 status
_STREAM_ERROR_STATUS = {
    "overloaded_error": 529,
    "rate_limit_error": 429,
    "api_error": 500,
}


# -- Encoding ------------------------------------------------------------------

def _assistant_blocks(message: ChatMessage) -> list[dict]:
    blocks: list[dict] = []
    if message.text:
        blocks.append({"type": "text", "text": message.text})
    for call in message.tool_calls:
        blocks.append({
            "type": "tool_use", "id": call.id,
            "name": call.name, "input": call.arguments,
        })
    return blocks


def encode_messages(messages: tuple[ChatMessage, ...]) -> tuple[str | None, list[dict]]:
    """Split out the system prompt and encode the rest as Anthropic turns."""
    system_parts = []
    encoded: list[dict] = []
    for msg in messages:
        if msg.role == Role.SYSTEM:
            system_parts.append(msg.text)
        elif msg.role == Role.USER:
            encoded.append({"role": "user", "content": msg.text})
        elif msg.role == Role.ASSISTANT:
            encoded.append({"role": "assistant", "content": _assistant_blocks(msg)})
        else:
            blocks = [
                {
                    "type": "tool_result", "tool_use_id": r.call_id,
                    "content": r.content, "is_error": r.is_error,
                }
                for r in msg.tool_results
            ]
            last = encoded[-1] if encoded else None
            if last and last["role"] == "user" and isinstance(last["content"], list):
                last["content"].extend(blocks)
            else:
                encoded.append({"role": "user", "content": blocks})
    system = "\n\n".join(p for p in system_parts if p) or None
    return system, encoded


def encode_tools(tools: tuple[ToolDefinition, ...]) -> list[dict]:
    return [
        {"name": t.name, "description": t.description, "input_schema": t.parameters}
        for t in tools
    ]


def build_kwargs(request: ChatRequest, default_max_tokens: int = DEFAULT_MAX_TOKENS) -> dict:
    system, messages = encode_messages(request.messages)
    kwargs: dict[str, Any] = {
        "model": request.model,
        "max_tokens": request.max_tokens or default_max_tokens,
        "messages": messages,
    }
    if system:
        kwargs["system"] = system
    if request.tools:
        kwargs["tools"] = encode_tools(request.tools)
    if request.temperature is not None:
        kwargs["temperature"] = request.temperature
    return kwargs


# -- Decoding ------------------------------------------------------------------

def map_stop_reason(reason: str | None) -> StopReason | None:
    if reason is None:
        return None
    return _STOP_REASONS.get(reason, StopReason.STOP)


def decode_usage(usage: Any) -> TokenUsage:
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        input_tokens=getattr(usage, "input_tokens", 0) or 0,
        output_tokens=getattr(usage, "output_tokens", 0) or 0,
        cached_input_tokens=getattr(usage, "cache_read_input_tokens", 0) or 0,
        cache_write_tokens=getattr(usage, "cache_creation_input_tokens", 0) or 0,
    )


def decode_message(message: Any, provider: str | None = None) -> ChatResponse:
    text = []
    calls = []
    for block in getattr(message, "content", None) or []:
        btype = getattr(block, "type", None)
        if btype == "text":
            text.append(block.text)
        elif btype == "tool_use":
            calls.append(ToolCallPart(id=block.id, name=block.name, arguments=block.input or {}))
    return ChatResponse(
        message=ChatMessage.assistant("".join(text), calls),
        usage=decode_usage(getattr(message, "usage", None)),
        stop_reason=resolve_stop_reason(
            map_stop_reason(getattr(message, "stop_reason", None)), bool(calls),
        ),
        provider=provider,
        model=getattr(message, "model", None),
    )


class StreamEventDecoder:
    """Stateful translation of raw Messages stream events into fragments."""

    def __init__(self) -> None:
        self._tool_blocks: set[int] = set()
        self._usage = TokenUsage()
        self.stopped = False

    def decode(self, event: Any) -> list[StreamFragment]:
        etype = getattr(event, "type", None)
        if etype == "message_start":
            self._usage = decode_usage(getattr(event.message, "usage", None))
            return [UsageReport(self._usage)]
        if etype == "content_block_start":
            return self._block_start(event.index, event.content_block)
        if etype == "content_block_delta":
            return self._block_delta(event.index, event.delta)
        if etype == "content_block_stop":
            if event.index in self._tool_blocks:
                return [ToolCallDone(event.index)]
            return []
        if etype == "message_delta":
            return self._message_delta(event)
        if etype == "message_stop":
            self.stopped = True
            return []
        if etype == "error":
            raise stream_error(getattr(event, "error", None))
        return []

    def _block_start(self, index: int, block: Any) -> list[StreamFragment]:
        btype = getattr(block, "type", None)
        if btype == "tool_use":
            self._tool_blocks.add(index)
            return [ToolCallFragment(index=index, id=block.id, name=block.name)]
        if btype == "text" and getattr(block, "text", ""):
            return [TextFragment(block.text)]
        return []

    def _block_delta(self, index: int, delta: Any) -> list[StreamFragment]:
        dtype = getattr(delta, "type", None)
        if dtype == "text_delta":
            return [TextFragment(delta.text)]
        if dtype == "input_json_delta":
            if index not in self._tool_blocks:
                raise DecodeError(f"input_json_delta for non-tool block {index}")
            return [ToolCallFragment(index=index, arguments=delta.partial_json)]
        return []

    def _message_delta(self, event: Any) -> list[StreamFragment]:
        fragments: list[StreamFragment] = []
        reason = map_stop_reason(getattr(event.delta, "stop_reason", None))
        if reason is not None:
            fragments.append(StopReport(reason))
        usage = getattr(event, "usage", None)
        if usage is not None:
            # message_delta carries cumulative output; input comes from message_start
            self._usage = self._usage.model_copy(update={
                "output_tokens": getattr(usage, "output_tokens", 0) or 0,
            })
            fragments.append(UsageReport(self._usage))
        return fragments


def stream_error(err: Any) -> ProviderError:
    """Map the payload of a stream error event to ProviderError."""
    etype = getattr(err, "type", None) or "error"
    message = getattr(err, "message", None) or str(err)
    return ProviderError(
        f"Stream error event ({etype}): {message}",
        status=_STREAM_ERROR_STATUS.get(etype),
        retryable=False,
    )
