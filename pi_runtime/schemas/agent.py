"""Agent Schemas - events and final result of an agent tool-loop run.

Invariants:
    - ToolResultEvent is emitted once per dispatched call, in call order
    - LoopFinishedEvent is the last event of every run, Done or Failed, and carries the result
    - AgentRunResult.context is the full history, including the failing step

Design Decisions:
    - Loop events sit beside the model stream events, so one consumer handles both;
      they are not part of the per-call stream contract
    - The typed error stays on the result but is excluded from serialization;
      error_kind / error_message are the serializable view
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from pi_runtime.core.domain_types import ErrorKind, LoopState
from pi_runtime.core.errors import PiError
from pi_runtime.schemas.chat import ChatResponse
from pi_runtime.schemas.messages import Context, ToolResult
from pi_runtime.schemas.usage import CostBreakdown, TokenUsage


class ToolResultEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    turn: int
    call_id: str
    name: str
    result: ToolResult


class AgentRunResult(BaseModel):
    """Outcome of an agent run: terminal state, history and accounting."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: LoopState
    context: Context
    turns: int = 0
    responses: list[ChatResponse] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostBreakdown | None = None
    error: PiError | None = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.state == LoopState.DONE

    @property
    def final_response(self) -> ChatResponse | None:
        return self.responses[-1] if self.responses else None

    @computed_field
    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    @computed_field
    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None


class LoopFinishedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["loop_finished"] = "loop_finished"
    result: AgentRunResult

    @property
    def state(self) -> LoopState:
        return self.result.state
