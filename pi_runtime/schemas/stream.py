"""Stream Event Schemas - the canonical, provider-agnostic stream vocabulary.

Invariants:
    - A valid stream is: one StartEvent, zero or more deltas, exactly one terminal event
    - Terminal events are EndEvent (carries the final ChatResponse) and ErrorEvent
    - UsageEvent is informational; the usage on EndEvent.response is authoritative

Design Decisions:
    - "type" discriminator on every event: events serialize one per JSONL line
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from pi_runtime.core.domain_types import ErrorKind
from pi_runtime.schemas.chat import ChatResponse
from pi_runtime.schemas.usage import TokenUsage


class StartEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["start"] = "start"
    provider: str | None = None
    model: str | None = None


class TextDeltaEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text_delta"] = "text_delta"
    text: str


class ToolCallDeltaEvent(BaseModel):
    """One fragment of a streamed tool call; fragments for an id accumulate."""
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_call_delta"] = "tool_call_delta"
    id: str
    name: str | None = None
    arguments_fragment: str | None = None


class UsageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["usage"] = "usage"
    usage: TokenUsage


class EndEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["end"] = "end"
    response: ChatResponse


class ErrorEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    kind: ErrorKind
    message: str
    status: int | None = None


ChatStreamEvent = Annotated[
    Union[
        StartEvent, TextDeltaEvent, ToolCallDeltaEvent,
        UsageEvent, EndEvent, ErrorEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = (EndEvent, ErrorEvent)


def is_terminal(event: BaseModel) -> bool:
    return isinstance(event, TERMINAL_EVENT_TYPES)
