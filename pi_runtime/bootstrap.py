"""Composition - builds catalog, provider hub, client and loop config from Settings.

Invariants:
    - The only module that turns Settings into provider instances
    - A cloud provider is registered only when its API key is configured;
      the local ollama provider is always registered
    - Hub and catalog are fully populated before the client is returned

Design Decisions:
    - Plain functions over a DI container: every wiring step is visible here
"""

import logging
from dataclasses import replace

from pi_runtime.config import Settings, get_settings
from pi_runtime.core.model_catalog import ModelCatalog
from pi_runtime.core.provider_hub import ProviderHub
from pi_runtime.infrastructure.anthropic_provider import AnthropicProvider
from pi_runtime.infrastructure.observability import setup_logging
from pi_runtime.infrastructure.openai_provider import OpenAICompatibleProvider
from pi_runtime.infrastructure.retry import RetryPolicy
from pi_runtime.services.agent_loop import LoopConfig
from pi_runtime.services.ai_client import AiClient

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.provider_max_retries,
        base_delay_ms=settings.provider_base_delay_ms,
        max_delay_ms=settings.provider_max_delay_ms,
    )


def build_provider_hub(settings: Settings | None = None) -> ProviderHub:
    settings = settings or get_settings()
    hub = ProviderHub()
    retry = build_retry_policy(settings)
    timeout = settings.provider_timeout_seconds

    if settings.openai_api_key:
        hub.insert("openai", OpenAICompatibleProvider(
            "openai",
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout_seconds=timeout,
            retry=retry,
        ))
    if settings.anthropic_api_key:
        hub.insert("anthropic", AnthropicProvider(
            "anthropic",
            api_key=settings.anthropic_api_key,
            base_url=settings.anthropic_base_url,
            timeout_seconds=timeout,
            retry=retry,
        ))
    hub.insert("ollama", OpenAICompatibleProvider(
        "ollama",
        api_key=None,
        api_key_env=None,
        base_url=settings.ollama_base_url,
        timeout_seconds=timeout,
        retry=retry,
    ))
    logger.info("Provider hub ready: %s", ", ".join(sorted(hub.ids())))
    return hub


def build_ai_client(
    settings: Settings | None = None,
    catalog: ModelCatalog | None = None,
    hub: ProviderHub | None = None,
) -> AiClient:
    settings = settings or get_settings()
    return AiClient(
        catalog or ModelCatalog.builtin(),
        hub or build_provider_hub(settings),
        queue_size=settings.stream_queue_size,
    )


def build_loop_config(settings: Settings | None = None, **overrides) -> LoopConfig:
    settings = settings or get_settings()
    config = LoopConfig(
        max_turns=settings.agent_max_turns,
        call_timeout=settings.agent_call_timeout_seconds,
        stream=settings.agent_stream,
        max_parallel_tools=settings.agent_max_parallel_tools,
    )
    return replace(config, **overrides)
