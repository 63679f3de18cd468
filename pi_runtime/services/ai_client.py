"""AI Client - uniform complete/stream facade over the provider hub and model catalog.

Invariants:
    - Resolution order: provider (hub) first, then model (catalog)
    - Capability and tool-support checks happen before any network call,
      so UnsupportedOperationError is raised synchronously from stream()
    - Every final response carries cost = estimate_usd(usage, descriptor.pricing)
    - complete() honours ChatOptions.timeout and cancel_token like stream() does
    - complete() only raises PiError: unexpected provider exceptions become ProviderError,
      as they do inside ChatStream

Design Decisions:
    - The client holds no per-call state: one instance serves concurrent conversations
    - Cost is attached here, not in providers: adapters stay pricing-agnostic
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from pi_runtime.core.cost import estimate_usd
from pi_runtime.core.domain_types import Capability
from pi_runtime.core.errors import (
    ErrorContext,
    PiError,
    ProviderError,
    UnsupportedOperationError,
)
from pi_runtime.core.model_catalog import ModelCatalog
from pi_runtime.core.provider_hub import ProviderHub
from pi_runtime.core.provider_protocols import ChatProvider
from pi_runtime.schemas.chat import ChatRequest, ChatResponse
from pi_runtime.schemas.messages import ChatMessage, Context, ToolDefinition
from pi_runtime.schemas.models import ModelDescriptor
from pi_runtime.services.cancellation import CancelToken, run_cancellable
from pi_runtime.services.chat_stream import DEFAULT_QUEUE_SIZE, ChatStream

logger = logging.getLogger(__name__)


@dataclass
class ChatOptions:
    """Per-call knobs. None means provider default / no deadline."""
    temperature: float | None = None
    max_tokens: int | None = None
    timeout: float | None = None
    cancel_token: CancelToken | None = None


def build_request(
    descriptor: ModelDescriptor,
    messages: Context | Iterable[ChatMessage],
    tools: Iterable[ToolDefinition] = (),
    options: ChatOptions | None = None,
) -> ChatRequest:
    options = options or ChatOptions()
    if isinstance(messages, Context):
        messages = messages.messages
    return ChatRequest(
        model=descriptor.id,
        messages=tuple(messages),
        tools=tuple(tools),
        temperature=options.temperature,
        max_tokens=options.max_tokens,
    )


class AiClient:
    """Entry point: model(provider, id) then complete() or stream()."""

    def __init__(
        self,
        catalog: ModelCatalog,
        hub: ProviderHub,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.catalog = catalog
        self.hub = hub
        self.queue_size = queue_size

    def model(self, provider: str, model_id: str) -> ModelDescriptor:
        """Resolve a descriptor; UnknownProvider wins over UnknownModel."""
        self.hub.get(provider)
        return self.catalog.lookup(provider, model_id)

    async def complete(
        self,
        descriptor: ModelDescriptor,
        messages: Context | Iterable[ChatMessage],
        tools: Iterable[ToolDefinition] = (),
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        options = options or ChatOptions()
        tools = tuple(tools)
        provider = self._resolve(descriptor, Capability.COMPLETE, tools)
        request = build_request(descriptor, messages, tools, options)
        try:
            response = await run_cancellable(
                provider.complete(request), options.timeout, options.cancel_token,
            )
        except PiError as e:
            self._log_failure(descriptor, e)
            raise
        except Exception as e:
            logger.error(
                "Unexpected error in model call: %s", e,
                extra={"provider": descriptor.provider, "model": descriptor.id},
                exc_info=True,
            )
            error = ProviderError(f"Call failed: {e}")
            self._log_failure(descriptor, error)
            raise error from e
        response = self.attach_cost(descriptor, response)
        self._log_success(descriptor, response)
        return response

    def stream(
        self,
        descriptor: ModelDescriptor,
        messages: Context | Iterable[ChatMessage],
        tools: Iterable[ToolDefinition] = (),
        options: ChatOptions | None = None,
    ) -> ChatStream:
        """Start a streaming call. Resolution errors raise here, not in the stream."""
        options = options or ChatOptions()
        tools = tuple(tools)
        provider = self._resolve(descriptor, Capability.STREAM, tools)
        if not descriptor.supports_streaming:
            raise UnsupportedOperationError(
                descriptor.provider, Capability.STREAM.value,
                ErrorContext(model=descriptor.id),
            )
        request = build_request(descriptor, messages, tools, options)
        return ChatStream(
            provider,
            request,
            provider_id=descriptor.provider,
            timeout=options.timeout,
            cancel_token=options.cancel_token,
            queue_size=self.queue_size,
            on_end=lambda r: self.attach_cost(descriptor, r),
        )

    @staticmethod
    def attach_cost(
        descriptor: ModelDescriptor, response: ChatResponse,
    ) -> ChatResponse:
        return response.model_copy(update={
            "cost": estimate_usd(response.usage, descriptor.pricing),
            "provider": response.provider or descriptor.provider,
            "model": response.model or descriptor.id,
        })

    def _resolve(
        self,
        descriptor: ModelDescriptor,
        capability: Capability,
        tools: tuple[ToolDefinition, ...],
    ) -> ChatProvider:
        provider = self.hub.require(descriptor.provider, capability)
        if tools and not descriptor.supports_tools:
            raise UnsupportedOperationError(
                descriptor.provider, "tools", ErrorContext(model=descriptor.id),
            )
        return provider

    def _log_failure(self, descriptor: ModelDescriptor, error: PiError) -> None:
        error.context.provider = error.context.provider or descriptor.provider
        error.context.model = error.context.model or descriptor.id
        logger.warning(
            "Model call failed: %s", error.message,
            extra={
                "provider": descriptor.provider, "model": descriptor.id,
                "error_kind": error.kind.value,
            },
        )

    def _log_success(
        self, descriptor: ModelDescriptor, response: ChatResponse,
    ) -> None:
        usage = response.usage
        logger.info(
            "Model call completed",
            extra={
                "provider": descriptor.provider,
                "model": descriptor.id,
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "cached_input_tokens": usage.cached_input_tokens,
                "cost_usd": response.cost.total if response.cost else None,
            },
        )
