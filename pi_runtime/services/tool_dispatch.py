"""Tool Dispatch - runs one turn's tool calls through the executor, behind an error boundary.

Invariants:
    - dispatch_all() returns exactly one result per call, in call order,
      regardless of completion order
    - A call naming a tool outside the advertised definitions never reaches the
      executor; it becomes an is_error result
    - An executor exception becomes an is_error result (never raises into the loop)
    - At most max_parallel executor calls are in flight at once

Design Decisions:
    - Sync and async executors both accepted: awaitable results are awaited
    - ToolRegistry keeps every name -> handler mapping explicit in one dict,
      no getattr magic, no auto-discovery
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Union

from pi_runtime.core.errors import ToolDispatchError
from pi_runtime.core.provider_protocols import ToolExecutor
from pi_runtime.schemas.messages import ToolCallPart, ToolDefinition, ToolResult

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[ToolResult, str, Awaitable[Union[ToolResult, str]]]]

DEFAULT_MAX_PARALLEL = 8


def _as_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, str):
        return ToolResult(content=value)
    return ToolResult(content=json.dumps(value, ensure_ascii=False, default=str))


class ToolRegistry:
    """ToolExecutor backed by an explicit name -> handler dict.

    Handlers receive the parsed arguments and may return a ToolResult, a str,
    or any JSON-serializable value, synchronously or as an awaitable.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._definitions: dict[str, ToolDefinition] = {}

    def register(
        self, definition: ToolDefinition, handler: Handler,
    ) -> None:
        if definition.name in self._handlers:
            raise ValueError(f"Tool '{definition.name}' is already registered")
        self._handlers[definition.name] = handler
        self._definitions[definition.name] = definition

    @property
    def definitions(self) -> list[ToolDefinition]:
        return list(self._definitions.values())

    async def execute(self, call: ToolCallPart) -> ToolResult:
        handler = self._handlers.get(call.name)
        if handler is None:
            return ToolResult.error(f"Tool '{call.name}' does not exist.")
        value = handler(call.arguments)
        if inspect.isawaitable(value):
            value = await value
        return _as_result(value)


class ToolDispatch:
    """Routes a turn's tool calls to the executor with bounded parallelism."""

    def __init__(
        self,
        executor: ToolExecutor,
        definitions: Iterable[ToolDefinition] = (),
        max_parallel: int = DEFAULT_MAX_PARALLEL,
    ):
        self._executor = executor
        self._known = {d.name for d in definitions}
        self._semaphore = asyncio.Semaphore(max(1, max_parallel))

    async def dispatch_all(self, calls: list[ToolCallPart]) -> list[ToolResult]:
        """Run all calls concurrently; results line up with calls by index."""
        return list(await asyncio.gather(*(self._run(c) for c in calls)))

    async def _run(self, call: ToolCallPart) -> ToolResult:
        async with self._semaphore:
            return await self.execute_safe(call)

    async def execute_safe(self, call: ToolCallPart) -> ToolResult:
        """Execute one call with error boundary. Never raises."""
        if call.name not in self._known:
            logger.warning(
                "Model called undefined tool",
                extra={"tool_name": call.name, "call_id": call.id},
            )
            return ToolResult.error(f"Tool '{call.name}' does not exist.")
        try:
            value = self._executor.execute(call)
            if inspect.isawaitable(value):
                value = await value
            return _as_result(value)
        except Exception as e:
            error = ToolDispatchError(call.name, f"Tool '{call.name}' failed: {e}")
            error.context.call_id = call.id
            logger.warning(
                "Tool error: %s", error.message,
                extra={
                    "tool_name": call.name, "call_id": call.id,
                    "error_kind": error.kind.value,
                },
            )
            return ToolResult.error(error.message)
