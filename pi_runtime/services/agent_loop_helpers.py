"""Agent Loop Helpers - pure builders for loop messages, events and results.

Invariants:
    - All functions are pure: no IO, no awaiting, inputs never mutated
    - Tool result messages are built in call order, one message per call
"""

from pi_runtime.core.agent_state import AgentRunState
from pi_runtime.core.cost import sum_costs, sum_usage
from pi_runtime.core.domain_types import Role, StopReason
from pi_runtime.schemas.agent import AgentRunResult, ToolResultEvent
from pi_runtime.schemas.chat import ChatResponse
from pi_runtime.schemas.messages import ChatMessage, Context, ToolCallPart, ToolResult


# -- Context shaping -----------------------------------------------------------

def with_system_prompt(context: Context, system_prompt: str | None) -> Context:
    """Copy of context, with system_prompt prepended unless it has a system message."""
    messages = list(context.messages)
    if system_prompt and not any(m.role == Role.SYSTEM for m in messages):
        messages.insert(0, ChatMessage.system(system_prompt))
    return Context(messages=messages)


def tool_result_messages(
    calls: list[ToolCallPart], results: list[ToolResult],
) -> list[ChatMessage]:
    return [
        ChatMessage.tool_result(call.id, result.content, result.is_error)
        for call, result in zip(calls, results)
    ]


# -- Response introspection ----------------------------------------------------

def ends_run(response: ChatResponse) -> bool:
    """A response ends the run unless it asks for tools and stopped to get them."""
    return (
        not response.has_tool_calls
        or response.stop_reason != StopReason.TOOL_CALLS
    )


# -- Event & result builders ---------------------------------------------------

def tool_result_events(
    turn: int, calls: list[ToolCallPart], results: list[ToolResult],
) -> list[ToolResultEvent]:
    return [
        ToolResultEvent(turn=turn, call_id=c.id, name=c.name, result=r)
        for c, r in zip(calls, results)
    ]


def build_run_result(
    state: AgentRunState, context: Context, responses: list[ChatResponse],
) -> AgentRunResult:
    return AgentRunResult(
        state=state.state,
        context=context,
        turns=state.turns,
        responses=list(responses),
        usage=sum_usage(r.usage for r in responses),
        cost=sum_costs(r.cost for r in responses),
        error=state.error,
    )
