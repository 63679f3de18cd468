"""Tests for agent loop failure paths - turn limit, provider errors, cancel, timeout.

Invariants:
    - Every failure ends in LoopState.FAILED with a typed error and a LoopFinishedEvent
    - The context up to the failing step is preserved in the result
    - Tool errors are fed back to the model and never fail the run
    - Malformed provider payloads and unexpected provider exceptions fail the run, never crash it
    - cancel() ends only the run in progress; the next run starts uncancelled
"""

import asyncio
import json

import httpx
import pytest

from pi_runtime.core.domain_types import ErrorKind, LoopState, Role
from pi_runtime.core.errors import (
    CallCancelledError,
    DecodeError,
    InvalidContextError,
    ModelTimeoutError,
    ProviderError,
    TurnLimitExceededError,
)
from pi_runtime.core.model_catalog import ModelCatalog
from pi_runtime.core.provider_hub import ProviderHub
from pi_runtime.core.stream_assembler import TextFragment
from pi_runtime.infrastructure.openai_provider import OpenAICompatibleProvider
from pi_runtime.infrastructure.retry import RetryPolicy
from pi_runtime.schemas.agent import LoopFinishedEvent
from pi_runtime.schemas.messages import ChatMessage, Context, ToolCallPart, ToolDefinition
from pi_runtime.schemas.models import ModelDescriptor
from pi_runtime.services.agent_loop import AgentLoop, LoopConfig
from pi_runtime.services.ai_client import AiClient
from pi_runtime.services.cancellation import CancelToken

from tests.services.mock_provider import (
    EchoExecutor,
    FailingExecutor,
    HangingProvider,
    ScriptedProvider,
    text_turn,
    tool_turn,
)


# -- Helpers -------------------------------------------------------------------

DESCRIPTOR = ModelDescriptor(provider="mock", id="mock-model")
ECHO = ToolDefinition(name="echo")


def _loop(provider, executor=None, **config):
    hub = ProviderHub()
    hub.insert("mock", provider)
    client = AiClient(ModelCatalog([DESCRIPTOR]), hub)
    return AgentLoop(
        client, DESCRIPTOR, executor or EchoExecutor(), [ECHO], LoopConfig(**config),
    )


def _context():
    return Context(messages=[ChatMessage.user("go")])


def _echo_turn(i):
    return tool_turn([(f"c{i}", "echo", {"text": str(i)})])


# ==============================================================================
# Turn limit
# ==============================================================================


@pytest.mark.parametrize("stream", [True, False])
async def test_turn_limit_fails_on_extra_turn(stream):
    max_turns = 2
    provider = ScriptedProvider([_echo_turn(i) for i in range(max_turns + 1)])
    loop = _loop(provider, max_turns=max_turns, stream=stream)

    result = await loop.run(_context())

    assert result.state == LoopState.FAILED
    assert isinstance(result.error, TurnLimitExceededError)
    assert result.error_kind == ErrorKind.TURN_LIMIT_EXCEEDED
    assert result.turns == max_turns
    assert len(provider.requests) == max_turns + 1
    # user + (assistant, tool) per turn + the assistant asking for one more
    assert len(result.context) == 1 + 2 * max_turns + 1
    assert result.context.last.role == Role.ASSISTANT


async def test_exactly_max_turns_succeeds():
    provider = ScriptedProvider([_echo_turn(0), _echo_turn(1), text_turn("done")])
    result = await _loop(provider, max_turns=2).run(_context())
    assert result.ok
    assert result.turns == 2


# ==============================================================================
# Model call failures
# ==============================================================================


@pytest.mark.parametrize("stream", [True, False])
async def test_provider_error_fails_run_and_keeps_context(stream):
    provider = ScriptedProvider([
        _echo_turn(0), ProviderError("HTTP 503: overloaded", status=503),
    ])
    loop = _loop(provider, stream=stream)
    events = [e async for e in loop.iter_events(_context())]

    result = loop.result
    assert isinstance(events[-1], LoopFinishedEvent)
    assert events[-1].result is result
    assert result.state == LoopState.FAILED
    assert isinstance(result.error, ProviderError)
    assert result.error.status == 503
    assert result.error.context.turn == 1
    assert len(result.context) == 3
    assert result.error_message == "HTTP 503: overloaded"


async def test_decode_error_mid_stream_fails_run():
    provider = ScriptedProvider([[TextFragment("par"), DecodeError("bad frame")]])
    result = await _loop(provider).run(_context())
    assert isinstance(result.error, DecodeError)
    assert len(result.context) == 1
    assert result.responses == []


@pytest.mark.parametrize("stream", [True, False])
async def test_call_timeout_fails_run(stream):
    provider = HangingProvider()
    result = await _loop(provider, call_timeout=0.05, stream=stream).run(_context())
    assert result.state == LoopState.FAILED
    assert isinstance(result.error, ModelTimeoutError)
    assert provider.closed


@pytest.mark.parametrize("stream", [True, False])
async def test_malformed_openai_payload_fails_run(stream):
    def handler(request):
        if json.loads(request.content).get("stream"):
            chunk = json.dumps({"choices": [{"delta": "Hello"}]})
            return httpx.Response(200, content=f"data: {chunk}\n\ndata: [DONE]\n\n".encode())
        return httpx.Response(200, json={
            "choices": [{"message": {"content": "x", "tool_calls": ["bad"]}}],
        })

    provider = OpenAICompatibleProvider(
        "openai",
        api_key="sk-test",
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="https://api.test",
        ),
        retry=RetryPolicy(max_retries=0),
    )
    descriptor = ModelDescriptor(provider="openai", id="gpt-4o-mini")
    hub = ProviderHub()
    hub.insert("openai", provider)
    client = AiClient(ModelCatalog([descriptor]), hub)
    loop = AgentLoop(
        client, descriptor, EchoExecutor(), [ECHO], LoopConfig(stream=stream),
    )

    events = [e async for e in loop.iter_events(_context())]

    assert isinstance(events[-1], LoopFinishedEvent)
    assert loop.result.state == LoopState.FAILED
    assert loop.result.error_kind == ErrorKind.DECODE
    assert len(loop.result.context) == 1


@pytest.mark.parametrize("stream", [True, False])
async def test_unexpected_provider_exception_fails_run(stream):
    provider = ScriptedProvider([ValueError("boom")])
    loop = _loop(provider, stream=stream)
    events = [e async for e in loop.iter_events(_context())]

    assert isinstance(events[-1], LoopFinishedEvent)
    assert loop.result.state == LoopState.FAILED
    assert loop.result.error_kind == ErrorKind.PROVIDER
    assert "boom" in loop.result.error_message


# ==============================================================================
# Cancellation
# ==============================================================================


@pytest.mark.parametrize("stream", [True, False])
async def test_cancel_during_model_call(stream):
    provider = HangingProvider()
    loop = _loop(provider, stream=stream)

    async def cancel_later():
        await provider.started.wait()
        loop.cancel()

    canceller = asyncio.create_task(cancel_later())
    result = await loop.run(_context())
    await canceller

    assert result.state == LoopState.FAILED
    assert isinstance(result.error, CallCancelledError)
    assert provider.closed


async def test_cancel_during_tool_dispatch():
    token = CancelToken()
    started = asyncio.Event()

    class SlowExecutor:
        async def execute(self, call):
            started.set()
            await asyncio.sleep(10)

    async def cancel_later():
        await started.wait()
        token.cancel()

    provider = ScriptedProvider([_echo_turn(0), text_turn("never")])
    loop = _loop(provider, SlowExecutor(), cancel_token=token)
    canceller = asyncio.create_task(cancel_later())
    result = await loop.run(_context())
    await canceller

    assert result.error_kind == ErrorKind.CANCELLED
    assert result.turns == 1
    assert len(provider.requests) == 1
    assert result.context.last.role == Role.ASSISTANT


async def test_pre_cancelled_run_never_calls_provider():
    token = CancelToken()
    token.cancel()
    provider = ScriptedProvider([text_turn("never")])
    result = await _loop(provider, stream=False, cancel_token=token).run(_context())
    assert isinstance(result.error, CallCancelledError)
    assert provider.requests == []


async def test_cancel_applies_to_current_run_only():
    class CancellingExecutor:
        async def execute(self, call):
            loop.cancel()
            await asyncio.sleep(10)

    provider = ScriptedProvider([_echo_turn(0), text_turn("second run")])
    loop = _loop(provider, CancellingExecutor())

    first = await loop.run(_context())
    assert first.error_kind == ErrorKind.CANCELLED

    second = await loop.run(_context())
    assert second.state == LoopState.DONE
    assert second.context.last.text == "second run"
    assert len(provider.requests) == 2


# ==============================================================================
# Invalid context & tool errors
# ==============================================================================


async def test_context_without_user_message_fails():
    provider = ScriptedProvider([text_turn("never")])
    context = Context(messages=[ChatMessage.system("only system")])
    result = await _loop(provider).run(context)
    assert isinstance(result.error, InvalidContextError)
    assert provider.requests == []


async def test_context_with_unanswered_call_fails():
    context = Context(messages=[
        ChatMessage.user("go"),
        ChatMessage.assistant("", [ToolCallPart(id="c1", name="echo")]),
    ])
    provider = ScriptedProvider([text_turn("never")])
    result = await _loop(provider).run(context)
    assert result.error_kind == ErrorKind.INVALID_CONTEXT


async def test_tool_error_fed_back_and_run_continues():
    provider = ScriptedProvider([_echo_turn(0), text_turn("recovered")])
    result = await _loop(provider, FailingExecutor("kaput")).run(_context())

    assert result.ok
    tool_result = result.context.messages[2].tool_results[0]
    assert tool_result.is_error
    assert "kaput" in tool_result.content


async def test_undefined_tool_fed_back_as_error():
    provider = ScriptedProvider([
        tool_turn([("c1", "shell", {"cmd": "ls"})]), text_turn("ok"),
    ])
    executor = EchoExecutor()
    result = await _loop(provider, executor).run(_context())
    assert result.ok
    assert result.context.messages[2].tool_results[0].is_error
    assert executor.calls == []


async def test_task_cancellation_propagates():
    provider = HangingProvider()
    loop = _loop(provider, stream=False)
    task = asyncio.create_task(loop.run(_context()))
    await provider.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert loop.result is None
