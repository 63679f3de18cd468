"""OpenAI-compatible Provider - Chat Completions over httpx, with retry and SSE streaming.

Invariants:
    - complete(): 429, 5xx and connection errors retry with backoff; other 4xx fail at once
    - Transport timeouts map to ModelTimeoutError and are not retried
    - Every other HTTP failure maps to ProviderError carrying the upstream status
    - A stream must end with data: [DONE]; a stream that closes before it is a DecodeError
    - Leaving stream_deltas() early (cancel, error, deadline) closes the HTTP response

Design Decisions:
    - One class serves OpenAI and any compatible server (Ollama, vLLM, proxies):
      only provider_id, base_url and the API key differ
    - The httpx client is injectable: tests pass httpx.MockTransport
    - Streams are not retried: fragments may already have reached the consumer
"""

import logging
import os
from typing import AsyncIterator

import httpx

from pi_runtime.core.domain_types import Capability
from pi_runtime.core.errors import (
    DecodeError,
    ErrorContext,
    ModelTimeoutError,
    ProviderError,
)
from pi_runtime.core.stream_assembler import StreamFragment
from pi_runtime.infrastructure.openai_wire import (
    DONE_SENTINEL,
    build_payload,
    decode_chunk,
    decode_completion,
)
from pi_runtime.infrastructure.retry import RetryPolicy, parse_retry_after
from pi_runtime.infrastructure.sse import iter_sse
from pi_runtime.schemas.chat import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/v1/chat/completions"
DEFAULT_BASE_URL = "https://api.openai.com"


def status_error(response: httpx.Response, context: ErrorContext | None = None) -> ProviderError:
    """Map a non-2xx response to ProviderError (body must already be read)."""
    detail = ""
    try:
        body = response.json()
        err = body.get("error") if isinstance(body, dict) else None
        if isinstance(err, dict):
            detail = err.get("message") or ""
        elif err:
            detail = str(err)
    except ValueError:
        detail = response.text[:500]
    return ProviderError(
        f"HTTP {response.status_code}: {detail or response.reason_phrase}",
        status=response.status_code,
        retry_after_ms=parse_retry_after(response.headers),
        context=context,
    )


class OpenAICompatibleProvider:
    """ChatProvider for /v1/chat/completions endpoints."""

    capabilities = frozenset({Capability.COMPLETE, Capability.STREAM})

    def __init__(
        self,
        provider_id: str = "openai",
        *,
        api_key: str | None = None,
        api_key_env: str | None = "OPENAI_API_KEY",
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 120,
        retry: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.provider_id = provider_id
        self.retry = retry or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout_seconds,
        )
        if api_key is None and api_key_env:
            api_key = os.environ.get(api_key_env)
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    async def complete(self, request: ChatRequest) -> ChatResponse:
        payload = build_payload(request)
        ctx = ErrorContext(provider=self.provider_id, model=request.model)

        async def call() -> ChatResponse:
            try:
                response = await self._client.post(
                    COMPLETIONS_PATH, json=payload, headers=self._headers,
                )
            except httpx.TimeoutException as e:
                raise ModelTimeoutError(
                    self.timeout_seconds, message=f"Request timed out: {e}", context=ctx,
                )
            except httpx.HTTPError as e:
                raise ProviderError(f"Connection error: {e}", context=ctx)
            if response.status_code >= 400:
                raise status_error(response, ctx)
            try:
                body = response.json()
            except ValueError as e:
                raise DecodeError(f"Completion body is not JSON: {e}", ctx)
            return decode_completion(body, self.provider_id)

        return await self.retry.run(call, provider=self.provider_id, model=request.model)

    async def stream_deltas(self, request: ChatRequest) -> AsyncIterator[StreamFragment]:
        payload = build_payload(request, stream=True)
        ctx = ErrorContext(provider=self.provider_id, model=request.model)
        try:
            async with self._client.stream(
                "POST", COMPLETIONS_PATH, json=payload, headers=self._headers,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise status_error(response, ctx)
                saw_done = False
                async for event in iter_sse(response.aiter_text()):
                    if event.data.strip() == DONE_SENTINEL:
                        saw_done = True
                        break
                    for fragment in decode_chunk(event.data):
                        yield fragment
                if not saw_done:
                    raise DecodeError("Stream closed before [DONE]", ctx)
        except httpx.TimeoutException as e:
            raise ModelTimeoutError(
                self.timeout_seconds, message=f"Stream timed out: {e}", context=ctx,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Connection error during stream: {e}", context=ctx)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
