"""Stream Assembler - folds canonical fragments into events and a final ChatResponse.

Invariants:
    - Text fragments concatenate losslessly in arrival order
    - Tool-call fragments accumulate per provider index; the id is fixed by the first fragment
    - A tool call explicitly marked done accepts no further fragments (DecodeError)
    - Accumulated state at finish() is authoritative; arguments are parsed only there
    - The last UsageReport wins; earlier ones are informational

Design Decisions:
    - Pure and synchronous: providers decode wire frames into fragments,
      this module owns everything provider-independent
    - Missing tool-call ids are synthesized as call_<index> so every delta event carries an id
"""

import json
from dataclasses import dataclass, field
from typing import Union

from pydantic import BaseModel

from pi_runtime.core.domain_types import StopReason
from pi_runtime.core.errors import DecodeError
from pi_runtime.schemas.chat import ChatResponse
from pi_runtime.schemas.messages import ChatMessage, ToolCallPart
from pi_runtime.schemas.stream import TextDeltaEvent, ToolCallDeltaEvent, UsageEvent
from pi_runtime.schemas.usage import TokenUsage


# ─── Fragments (provider decoder output) ────────────────────────

@dataclass(frozen=True)
class TextFragment:
    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class ToolCallDone:
    """Provider explicitly marked the tool call at index complete."""
    index: int


@dataclass(frozen=True)
class UsageReport:
    usage: TokenUsage


@dataclass(frozen=True)
class StopReport:
    reason: StopReason


StreamFragment = Union[
    TextFragment, ToolCallFragment, ToolCallDone, UsageReport, StopReport,
]


# ─── Assembly ───────────────────────────────────────────────────

@dataclass
class _ToolAccumulator:
    id: str
    name: str | None = None
    arguments: list[str] = field(default_factory=list)
    completed: bool = False


def resolve_stop_reason(
    reported: StopReason | None, has_tool_calls: bool,
) -> StopReason:
    """Fill in or correct the stop reason from the message shape."""
    if reported is None:
        return StopReason.TOOL_CALLS if has_tool_calls else StopReason.STOP
    if reported == StopReason.STOP and has_tool_calls:
        return StopReason.TOOL_CALLS
    return reported


def parse_tool_arguments(raw: str, call_id: str):
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid arguments for tool call {call_id}: {e}")


class StreamAssembler:

    def __init__(self) -> None:
        self._text: list[str] = []
        self._tools: dict[int, _ToolAccumulator] = {}
        self.usage: TokenUsage | None = None
        self.stop_reason: StopReason | None = None

    @property
    def text(self) -> str:
        return "".join(self._text)

    def apply(self, fragment: StreamFragment) -> list[BaseModel]:
        """Fold one fragment in; return the canonical events it produces."""
        if isinstance(fragment, TextFragment):
            if not fragment.text:
                return []
            self._text.append(fragment.text)
            return [TextDeltaEvent(text=fragment.text)]
        if isinstance(fragment, ToolCallFragment):
            return self._apply_tool_fragment(fragment)
        if isinstance(fragment, ToolCallDone):
            acc = self._tools.get(fragment.index)
            if acc is None:
                raise DecodeError(f"Completion for unknown tool call index {fragment.index}")
            acc.completed = True
            return []
        if isinstance(fragment, UsageReport):
            self.usage = fragment.usage
            return [UsageEvent(usage=fragment.usage)]
        if isinstance(fragment, StopReport):
            self.stop_reason = fragment.reason
            return []
        raise DecodeError(f"Unknown stream fragment: {fragment!r}")

    def _apply_tool_fragment(self, fragment: ToolCallFragment) -> list[BaseModel]:
        acc = self._tools.get(fragment.index)
        if acc is None:
            acc = _ToolAccumulator(id=fragment.id or f"call_{fragment.index}")
            self._tools[fragment.index] = acc
        elif acc.completed:
            raise DecodeError(f"Fragment for completed tool call {acc.id}")
        if fragment.name:
            acc.name = fragment.name
        if fragment.arguments:
            acc.arguments.append(fragment.arguments)
        if not (fragment.name or fragment.arguments or fragment.id):
            return []
        return [ToolCallDeltaEvent(
            id=acc.id, name=fragment.name, arguments_fragment=fragment.arguments,
        )]

    def tool_calls(self) -> list[ToolCallPart]:
        calls = []
        for _, acc in sorted(self._tools.items()):
            if not acc.name:
                raise DecodeError(f"Tool call {acc.id} has no name")
            raw = "".join(acc.arguments)
            calls.append(ToolCallPart(
                id=acc.id, name=acc.name,
                arguments=parse_tool_arguments(raw, acc.id),
            ))
        return calls

    def finish(
        self, provider: str | None = None, model: str | None = None,
    ) -> ChatResponse:
        calls = self.tool_calls()
        return ChatResponse(
            message=ChatMessage.assistant(self.text, calls),
            usage=self.usage or TokenUsage(),
            stop_reason=resolve_stop_reason(self.stop_reason, bool(calls)),
            provider=provider,
            model=model,
        )
