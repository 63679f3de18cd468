"""Chat Request/Response Schemas - what a provider receives and returns per call."""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pi_runtime.core.domain_types import Role, StopReason
from pi_runtime.schemas.messages import ChatMessage, ToolDefinition
from pi_runtime.schemas.usage import CostBreakdown, TokenUsage


class ChatRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    messages: tuple[ChatMessage, ...]
    tools: tuple[ToolDefinition, ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None


class ChatResponse(BaseModel):
    """Final assistant message of one model call plus accounting."""
    model_config = ConfigDict(frozen=True)

    message: ChatMessage
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostBreakdown | None = None
    stop_reason: StopReason = StopReason.STOP
    provider: str | None = None
    model: str | None = None

    @model_validator(mode="after")
    def _assistant_only(self) -> "ChatResponse":
        if self.message.role != Role.ASSISTANT:
            raise ValueError("ChatResponse.message must be an assistant message")
        return self

    @property
    def text(self) -> str:
        return self.message.text

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.message.tool_calls)
