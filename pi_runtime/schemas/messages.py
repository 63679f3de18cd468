"""Message Schemas - chat messages, content parts, tool definitions and Context.

Invariants:
    - ChatMessage is frozen; content is an ordered tuple of parts
    - tool_call parts only appear in assistant messages
    - tool_result parts only appear in tool messages, and a tool message carries nothing else
    - Context is append-only: no API removes or rewrites a message

Design Decisions:
    - Discriminated union on "type" for content parts: JSON round-trips without custom decoders
    - Context.to_records() emits one dict per message in arrival order (JSONL-friendly)
"""

import json
from typing import Annotated, Any, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pi_runtime.core.domain_types import Role, require_identifier


# ─── Content Parts ───────────────────────────────────────────────

class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolCallPart(BaseModel):
    """A structured request from the model to invoke a named tool."""
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: Any = Field(default_factory=dict)

    @field_validator("id", "name")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        return require_identifier(v, "tool call id/name")


class ToolResultPart(BaseModel):
    """Outcome of one tool call, fed back to the model."""
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    call_id: str
    content: str
    is_error: bool = False


ContentPart = Annotated[
    Union[TextPart, ToolCallPart, ToolResultPart],
    Field(discriminator="type"),
]


# ─── Messages ────────────────────────────────────────────────────

class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: tuple[ContentPart, ...] = ()

    @model_validator(mode="after")
    def _check_parts_match_role(self) -> "ChatMessage":
        for part in self.content:
            if isinstance(part, ToolCallPart) and self.role != Role.ASSISTANT:
                raise ValueError("tool_call parts are only valid in assistant messages")
            if isinstance(part, ToolResultPart) and self.role != Role.TOOL:
                raise ValueError("tool_result parts are only valid in tool messages")
        if self.role == Role.TOOL:
            if not self.content or not all(
                isinstance(p, ToolResultPart) for p in self.content
            ):
                raise ValueError("tool messages must carry only tool_result parts")
        return self

    @classmethod
    def system(cls, text: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=(TextPart(text=text),))

    @classmethod
    def user(cls, text: str) -> "ChatMessage":
        return cls(role=Role.USER, content=(TextPart(text=text),))

    @classmethod
    def assistant(
        cls, text: str = "", tool_calls: Iterable[ToolCallPart] = (),
    ) -> "ChatMessage":
        parts: list = [TextPart(text=text)] if text else []
        parts.extend(tool_calls)
        return cls(role=Role.ASSISTANT, content=tuple(parts))

    @classmethod
    def tool_result(
        cls, call_id: str, content: str, is_error: bool = False,
    ) -> "ChatMessage":
        part = ToolResultPart(call_id=call_id, content=content, is_error=is_error)
        return cls(role=Role.TOOL, content=(part,))

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.content if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.content if isinstance(p, ToolResultPart)]


class ToolResult(BaseModel):
    """What a tool executor returns for one call."""
    model_config = ConfigDict(frozen=True)

    content: str
    is_error: bool = False

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=message, is_error=True)


class ToolDefinition(BaseModel):
    """Tool (function) definition advertised to providers."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
    )

    @field_validator("name")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        return require_identifier(v, "tool name")


# ─── Context ─────────────────────────────────────────────────────

class Context(BaseModel):
    """Ordered conversation history passed to a model call."""

    messages: list[ChatMessage] = Field(default_factory=list)

    def append(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def extend(self, messages: Iterable[ChatMessage]) -> None:
        for m in messages:
            self.append(m)

    def __len__(self) -> int:
        return len(self.messages)

    @property
    def last(self) -> ChatMessage | None:
        return self.messages[-1] if self.messages else None

    def snapshot(self) -> "Context":
        """Shallow copy; messages are frozen so sharing them is safe."""
        return Context(messages=list(self.messages))

    def to_records(self) -> list[dict]:
        return [m.model_dump(mode="json") for m in self.messages]

    def to_jsonl(self) -> str:
        return "".join(
            json.dumps(r, ensure_ascii=False) + "\n" for r in self.to_records()
        )

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> "Context":
        return cls(messages=[ChatMessage.model_validate(r) for r in records])
