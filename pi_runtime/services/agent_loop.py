"""Agent Loop - drives model calls and tool dispatch until Done or Failed.

Invariants:
    - Every run ends in exactly one terminal state, Done or Failed, and the last
      event yielded is LoopFinishedEvent
    - Each model response is appended to the context as one assistant message;
      its tool results follow as tool messages, in call order
    - Exceeding max_turns fails the run with TurnLimitExceededError at turn max_turns + 1,
      after the assistant message that asked for the extra turn is appended
    - Provider, decode, timeout and cancel errors fail the run; the context up to the
      failing call is preserved in the result
    - Tool executor errors never fail the run: they come back as is_error results

Design Decisions:
    - The loop works on its own copy of the caller's context and owns it while running
    - Each run gets a fresh cancel token unless LoopConfig.cancel_token is set;
      a caller-supplied token is shared by every run
    - Streaming mode forwards every model stream event; non-streaming mode forwards none
    - Pure helpers extracted to agent_loop_helpers.py
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable

from pydantic import BaseModel

from pi_runtime.core.agent_state import AgentRunState
from pi_runtime.core.context_rules import validate_loop_context
from pi_runtime.core.errors import CallCancelledError, PiError
from pi_runtime.core.provider_protocols import ToolExecutor
from pi_runtime.schemas.agent import AgentRunResult, LoopFinishedEvent
from pi_runtime.schemas.chat import ChatResponse
from pi_runtime.schemas.messages import Context, ToolDefinition
from pi_runtime.schemas.models import ModelDescriptor
from pi_runtime.services.ai_client import AiClient, ChatOptions
from pi_runtime.services.agent_loop_helpers import (
    build_run_result, ends_run,
    tool_result_events, tool_result_messages, with_system_prompt,
)
from pi_runtime.services.cancellation import CancelToken, run_cancellable
from pi_runtime.services.tool_dispatch import DEFAULT_MAX_PARALLEL, ToolDispatch

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 32


@dataclass
class LoopConfig:
    max_turns: int = DEFAULT_MAX_TURNS
    call_timeout: float | None = None
    stream: bool = True
    max_parallel_tools: int = DEFAULT_MAX_PARALLEL
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    cancel_token: CancelToken | None = None


class AgentLoop:
    """Tool-using agent loop over one model. One run at a time per instance."""

    def __init__(
        self,
        client: AiClient,
        descriptor: ModelDescriptor,
        executor: ToolExecutor,
        tools: Iterable[ToolDefinition] = (),
        config: LoopConfig | None = None,
    ):
        self.client = client
        self.descriptor = descriptor
        self.executor = executor
        self.tools = tuple(tools)
        self.config = config or LoopConfig()
        self._token = self.config.cancel_token or CancelToken()
        self.result: AgentRunResult | None = None
        self._last_response: ChatResponse | None = None

    def cancel(self) -> None:
        """Cancel the run in progress; it ends Failed with kind cancelled."""
        self._token.cancel()

    async def run(self, context: Context) -> AgentRunResult:
        """Run to a terminal state and return the result."""
        async for _ in self.iter_events(context):
            pass
        return self.result

    async def iter_events(self, context: Context) -> AsyncIterator[BaseModel]:
        """Async generator: model stream events, tool results, then LoopFinishedEvent."""
        if self.config.cancel_token is None:
            self._token = CancelToken()
        state = AgentRunState(max_turns=self.config.max_turns)
        ctx = with_system_prompt(context, self.config.system_prompt)
        responses: list[ChatResponse] = []
        dispatch = ToolDispatch(
            self.executor, self.tools, self.config.max_parallel_tools,
        )
        try:
            async for event in self._turn_loop(state, ctx, responses, dispatch):
                yield event
        except asyncio.CancelledError:
            logger.info(
                "Agent loop cancelled by task cancellation",
                extra={"model": self.descriptor.id, "turn": state.turns},
            )
            raise

        self.result = build_run_result(state, ctx, responses)
        self._log_finished(state)
        yield LoopFinishedEvent(result=self.result)

    async def _turn_loop(self, state, ctx, responses, dispatch):
        """Main loop: yields events until state is terminal."""
        try:
            validate_loop_context(ctx)
        except PiError as e:
            state.fail(e)
            return

        while True:
            state.await_model()
            self._last_response = None
            try:
                async for event in self._call_model(ctx):
                    yield event
            except PiError as e:
                e.context.turn = state.turns
                state.fail(e)
                return
            response = self._last_response
            ctx.append(response.message)
            responses.append(response)

            if ends_run(response):
                state.finish()
                return

            try:
                state.begin_tool_dispatch()
            except PiError as e:
                state.fail(e)
                return

            calls = response.message.tool_calls
            try:
                results = await run_cancellable(
                    dispatch.dispatch_all(calls), token=self._token,
                )
            except CallCancelledError as e:
                e.context.turn = state.turns
                state.fail(e)
                return
            ctx.extend(tool_result_messages(calls, results))
            for event in tool_result_events(state.turns, calls, results):
                yield event

    async def _call_model(self, ctx: Context):
        """Async generator: yields stream events, sets self._last_response."""
        options = ChatOptions(
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout=self.config.call_timeout,
            cancel_token=self._token,
        )
        if not self.config.stream:
            self._last_response = await self.client.complete(
                self.descriptor, ctx, self.tools, options,
            )
            return

        stream = self.client.stream(self.descriptor, ctx, self.tools, options)
        async with stream:
            async for event in stream:
                yield event
        if stream.error is not None:
            raise stream.error
        self._last_response = stream.response

    def _log_finished(self, state: AgentRunState) -> None:
        extra = {
            "provider": self.descriptor.provider,
            "model": self.descriptor.id,
            "turn": state.turns,
            "status": state.state.value,
        }
        if state.error is None:
            logger.info("Agent loop finished", extra=extra)
            return
        extra["error_kind"] = state.error.kind.value
        logger.warning(
            "Agent loop failed: %s", state.error.message, extra=extra,
        )
