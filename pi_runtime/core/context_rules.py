"""Context Rules - call/result pairing checks over a conversation Context.

Invariants:
    - Every tool_call in an assistant message is answered by tool messages that
      immediately follow it, one per call, in the same order as the calls
    - A context handed to a model call has no unanswered tool calls
    - A loop context contains at least one user message

Design Decisions:
    - Strict positional pairing: some providers reject interleaved or reordered results
"""

from pi_runtime.core.domain_types import Role
from pi_runtime.core.errors import InvalidContextError
from pi_runtime.schemas.messages import ChatMessage, Context, ToolCallPart


def pending_tool_calls(context: Context) -> list[ToolCallPart]:
    """Tool calls of the last assistant message that have no result yet."""
    messages = context.messages
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == Role.ASSISTANT:
            answered = {
                r.call_id
                for m in messages[i + 1:] if m.role == Role.TOOL
                for r in m.tool_results
            }
            return [c for c in messages[i].tool_calls if c.id not in answered]
    return []


def check_pairing(messages: list[ChatMessage]) -> None:
    i = 0
    while i < len(messages):
        msg = messages[i]
        if msg.role == Role.TOOL:
            raise InvalidContextError(
                f"Tool result at position {i} does not answer a preceding tool call",
            )
        calls = msg.tool_calls
        if not calls:
            i += 1
            continue
        results = messages[i + 1:i + 1 + len(calls)]
        if len(results) < len(calls):
            raise InvalidContextError(
                f"Assistant message at position {i} has unanswered tool calls",
            )
        for call, result_msg in zip(calls, results):
            if result_msg.role != Role.TOOL:
                raise InvalidContextError(
                    f"Tool call {call.id} is not followed by its result",
                )
            if result_msg.tool_results[0].call_id != call.id:
                raise InvalidContextError(
                    f"Tool result for {result_msg.tool_results[0].call_id} "
                    f"is out of order; expected {call.id}",
                )
        i += 1 + len(calls)


def validate_loop_context(context: Context) -> None:
    """Raise InvalidContextError unless the context can start a loop run."""
    if not any(m.role == Role.USER for m in context.messages):
        raise InvalidContextError("Context must contain at least one user message")
    check_pairing(context.messages)
