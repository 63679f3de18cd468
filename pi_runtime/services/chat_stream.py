"""Chat Stream - single-consumer handle over one streaming model call.

Invariants:
    - Yields exactly one StartEvent first and exactly one terminal event last
    - Iterable once; a second `async for` raises RuntimeError
    - Producer and consumer are decoupled by a bounded queue: a slow consumer
      stalls the producer instead of growing memory
    - cancel() or deadline expiry ends the stream with ErrorEvent(cancelled|timeout)
      and cancels the producer task, which releases the network connection
    - After the terminal event, `response` (End) or `error` (Error) is set, never both

Design Decisions:
    - StartEvent is emitted by the consumer side, so a pre-cancelled stream still
      opens with Start and closes with Error
    - Producer errors keep their typed PiError; `error` re-raises it from collect()
    - Every event passes through StreamSequenceChecker before it is handed out
"""

import asyncio
import logging
from typing import Callable

from pydantic import BaseModel

from pi_runtime.core.errors import (
    CallCancelledError,
    ModelTimeoutError,
    PiError,
    ProviderError,
    error_from_stream_event,
)
from pi_runtime.core.provider_protocols import ChatProvider
from pi_runtime.core.stream_assembler import StreamAssembler
from pi_runtime.core.stream_contract import StreamSequenceChecker
from pi_runtime.schemas.chat import ChatRequest, ChatResponse
from pi_runtime.schemas.stream import EndEvent, ErrorEvent, StartEvent, is_terminal
from pi_runtime.services.cancellation import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 64


class ChatStream:
    """Async iterator of canonical stream events for one model call."""

    def __init__(
        self,
        provider: ChatProvider,
        request: ChatRequest,
        *,
        provider_id: str | None = None,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        on_end: Callable[[ChatResponse], ChatResponse] | None = None,
    ):
        self._provider = provider
        self._request = request
        self._provider_id = provider_id or getattr(provider, "provider_id", None)
        self._timeout = timeout
        self._token = cancel_token or CancelToken()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._on_end = on_end
        self._checker = StreamSequenceChecker()

        self._task: asyncio.Task | None = None
        self._deadline: float | None = None
        self._iterated = False
        self._finished = False
        self._producer_error: PiError | None = None
        self._response: ChatResponse | None = None
        self._error: PiError | None = None

    # -- Public API ------------------------------------------------------------

    @property
    def text(self) -> str:
        """Text accumulated from deltas handed out so far."""
        return self._checker.text

    @property
    def response(self) -> ChatResponse | None:
        return self._response

    @property
    def error(self) -> PiError | None:
        return self._error

    @property
    def finished(self) -> bool:
        return self._finished

    def cancel(self) -> None:
        self._token.cancel()

    async def collect(self) -> ChatResponse:
        """Drain the stream; return the final response or raise its error."""
        while not self._finished:
            await self.__anext__()
        if self._error is not None:
            raise self._error
        return self._response

    async def aclose(self) -> None:
        await self._stop_producer()
        self._finished = True

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> "ChatStream":
        if self._iterated:
            raise RuntimeError("ChatStream can only be iterated once")
        self._iterated = True
        return self

    async def __anext__(self) -> BaseModel:
        if self._finished:
            raise StopAsyncIteration
        if not self._checker.started:
            self._start()
            event: BaseModel = StartEvent(
                provider=self._provider_id, model=self._request.model,
            )
        else:
            event = await self._next_event()
        self._checker.observe(event)
        if is_terminal(event):
            await self._finish(event)
        return event

    # -- Producer --------------------------------------------------------------

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        if self._timeout is not None:
            self._deadline = loop.time() + self._timeout
        self._task = asyncio.create_task(self._produce())

    async def _produce(self) -> None:
        assembler = StreamAssembler()
        try:
            async for fragment in self._provider.stream_deltas(self._request):
                for event in assembler.apply(fragment):
                    await self._queue.put(event)
            response = assembler.finish(self._provider_id, self._request.model)
            if self._on_end is not None:
                response = self._on_end(response)
            await self._queue.put(EndEvent(response=response))
        except PiError as e:
            self._producer_error = e
            await self._queue.put(e.to_stream_event())
        except Exception as e:
            logger.error(
                "Unexpected error in stream producer: %s", e,
                extra={"provider": self._provider_id, "model": self._request.model},
                exc_info=True,
            )
            err = ProviderError(f"Stream failed: {e}")
            self._producer_error = err
            await self._queue.put(err.to_stream_event())

    async def _stop_producer(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    # -- Consumer --------------------------------------------------------------

    async def _next_event(self) -> BaseModel:
        if self._token.cancelled:
            return await self._abort(CallCancelledError())

        remaining = None
        if self._deadline is not None:
            remaining = self._deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                return await self._abort(ModelTimeoutError(self._timeout))

        getter = asyncio.ensure_future(self._queue.get())
        cancel_waiter = asyncio.ensure_future(self._token.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, cancel_waiter}, timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_waiter.cancel()
            if not getter.done():
                getter.cancel()

        if getter in done:
            return getter.result()
        if cancel_waiter in done:
            return await self._abort(CallCancelledError())
        return await self._abort(ModelTimeoutError(self._timeout))

    async def _abort(self, error: PiError) -> ErrorEvent:
        await self._stop_producer()
        self._producer_error = error
        return error.to_stream_event()

    async def _finish(self, event: BaseModel) -> None:
        self._finished = True
        if isinstance(event, EndEvent):
            self._response = event.response
            usage = event.response.usage
            logger.info(
                "Stream completed",
                extra={
                    "provider": self._provider_id,
                    "model": self._request.model,
                    "input_tokens": usage.input_tokens,
                    "output_tokens": usage.output_tokens,
                },
            )
        else:
            err = self._producer_error
            if err is None or err.kind != event.kind:
                err = error_from_stream_event(event)
            self._error = err
            logger.warning(
                "Stream ended with error: %s", event.message,
                extra={
                    "provider": self._provider_id,
                    "model": self._request.model,
                    "error_kind": event.kind.value,
                },
            )
        await self._stop_producer()
