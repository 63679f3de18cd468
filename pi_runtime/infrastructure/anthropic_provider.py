"""Anthropic Provider - wraps AsyncAnthropic with retry, backoff, and error mapping.

Invariants:
    - Rate limits (429), overloaded (529), 5xx and connection errors retry with
      exponential backoff and jitter; Retry-After is respected
    - Timeouts and other 4xx fail immediately
    - Timeouts map to ModelTimeoutError; every other SDK failure maps to ProviderError
      carrying the upstream status
    - Streams are not retried: errors during setup or mid-stream map and propagate
    - A stream that closes before message_stop is a DecodeError

Design Decisions:
    - SDK-level retries disabled (max_retries=0): RetryPolicy is the single retry layer
    - Client injectable: tests pass a fake exposing messages.create / messages.stream
"""

import logging
from typing import AsyncIterator

import anthropic
from anthropic import APIConnectionError, APIError, APIStatusError, APITimeoutError

from pi_runtime.core.domain_types import Capability
from pi_runtime.core.errors import (
    DecodeError,
    ErrorContext,
    ModelTimeoutError,
    PiError,
    ProviderError,
)
from pi_runtime.core.stream_assembler import StreamFragment
from pi_runtime.infrastructure.anthropic_wire import (
    DEFAULT_MAX_TOKENS,
    StreamEventDecoder,
    build_kwargs,
    decode_message,
)
from pi_runtime.infrastructure.retry import RetryPolicy, parse_retry_after
from pi_runtime.schemas.chat import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)


def map_sdk_error(
    e: APIError,
    context: ErrorContext | None = None,
    timeout_seconds: float | None = None,
) -> PiError:
    """Map an Anthropic SDK exception to ModelTimeoutError or ProviderError."""
    # APITimeoutError subclasses APIConnectionError: check it first
    if isinstance(e, APITimeoutError):
        return ModelTimeoutError(
            timeout_seconds, message="Anthropic API timeout", context=context,
        )
    if isinstance(e, APIConnectionError):
        return ProviderError(f"Connection error: {e}", context=context)
    if isinstance(e, APIStatusError):
        headers = e.response.headers if e.response is not None else None
        return ProviderError(
            f"HTTP {e.status_code}: {e.message}",
            status=e.status_code,
            retry_after_ms=parse_retry_after(headers),
            context=context,
        )
    return ProviderError(str(e), context=context)


class AnthropicProvider:
    """ChatProvider for the Anthropic Messages API."""

    capabilities = frozenset({Capability.COMPLETE, Capability.STREAM})

    def __init__(
        self,
        provider_id: str = "anthropic",
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float = 120,
        retry: RetryPolicy | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        client=None,
    ):
        self.provider_id = provider_id
        self.retry = retry or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self.default_max_tokens = default_max_tokens
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=0,
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        kwargs = build_kwargs(request, self.default_max_tokens)
        ctx = ErrorContext(provider=self.provider_id, model=request.model)

        async def call() -> ChatResponse:
            try:
                message = await self.client.messages.create(**kwargs)
            except APIError as e:
                raise map_sdk_error(e, ctx, self.timeout_seconds)
            self._log_success(message)
            return decode_message(message, self.provider_id)

        return await self.retry.run(call, provider=self.provider_id, model=request.model)

    async def stream_deltas(self, request: ChatRequest) -> AsyncIterator[StreamFragment]:
        kwargs = build_kwargs(request, self.default_max_tokens)
        ctx = ErrorContext(provider=self.provider_id, model=request.model)
        decoder = StreamEventDecoder()
        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    for fragment in decoder.decode(event):
                        yield fragment
            if not decoder.stopped:
                raise DecodeError("Stream closed before message_stop", ctx)
        except APIError as e:
            raise map_sdk_error(e, ctx, self.timeout_seconds)

    def _log_success(self, message) -> None:
        """Log successful API call with cache metrics."""
        usage = getattr(message, "usage", None)
        if usage is None:
            return
        logger.info(
            "Anthropic API success",
            extra={
                "provider": self.provider_id,
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "cached_input_tokens": getattr(usage, "cache_read_input_tokens", 0) or 0,
            },
        )

    async def aclose(self) -> None:
        await self.client.close()
