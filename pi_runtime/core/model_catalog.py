"""Model Catalog - registry of ModelDescriptors keyed by (provider, model).

Invariants:
    - register() never overwrites: a second (provider, model) raises DuplicateModelError
      and leaves the first descriptor intact
    - lookup() is total: absent key raises UnknownModelError
    - Descriptors are frozen; the catalog hands out the registered instance

Design Decisions:
    - Read-mostly: extended at composition time, only read while serving requests,
      so lookups take no lock
    - builtin() seeds a small starter set; pricing None means "cost not computable"
"""

from typing import Iterable, Iterator

from pi_runtime.core.domain_types import ApiKind, InputModality
from pi_runtime.core.errors import DuplicateModelError, UnknownModelError
from pi_runtime.schemas.models import ModelDescriptor
from pi_runtime.schemas.usage import TokenCost


class ModelCatalog:

    def __init__(self, models: Iterable[ModelDescriptor] = ()):
        self._models: dict[tuple[str, str], ModelDescriptor] = {}
        self.extend(models)

    def register(self, descriptor: ModelDescriptor) -> None:
        if descriptor.key in self._models:
            raise DuplicateModelError(descriptor.provider, descriptor.id)
        self._models[descriptor.key] = descriptor

    def extend(self, descriptors: Iterable[ModelDescriptor]) -> None:
        for d in descriptors:
            self.register(d)

    def find(self, provider: str, model_id: str) -> ModelDescriptor | None:
        return self._models.get((provider, model_id))

    def lookup(self, provider: str, model_id: str) -> ModelDescriptor:
        descriptor = self.find(provider, model_id)
        if descriptor is None:
            raise UnknownModelError(provider, model_id)
        return descriptor

    def all(self) -> Iterator[ModelDescriptor]:
        return iter(list(self._models.values()))

    def for_provider(self, provider: str) -> list[ModelDescriptor]:
        return [d for d in self._models.values() if d.provider == provider]

    def __contains__(self, key: object) -> bool:
        return key in self._models

    def __len__(self) -> int:
        return len(self._models)

    @classmethod
    def builtin(cls) -> "ModelCatalog":
        """Starter catalog. Prices are USD per 1M tokens at time of writing."""
        text = (InputModality.TEXT,)
        text_image = (InputModality.TEXT, InputModality.IMAGE)
        return cls([
            ModelDescriptor(
                provider="openai", id="gpt-4o-mini", name="GPT-4o mini",
                api=ApiKind.OPENAI_COMPLETIONS,
                context_window=128_000, max_output_tokens=16_000,
                input_modalities=text,
                pricing=TokenCost(input=0.15, output=0.60, cached_input=0.075),
            ),
            ModelDescriptor(
                provider="openai", id="gpt-4o", name="GPT-4o",
                api=ApiKind.OPENAI_COMPLETIONS,
                context_window=128_000, max_output_tokens=16_000,
                input_modalities=text_image,
                pricing=TokenCost(input=2.50, output=10.0, cached_input=1.25),
            ),
            ModelDescriptor(
                provider="openai", id="gpt-5.1-codex", name="GPT-5.1 Codex",
                api=ApiKind.OPENAI_COMPLETIONS,
                context_window=200_000, max_output_tokens=32_000,
                input_modalities=text, reasoning=True,
                pricing=TokenCost(input=1.25, output=10.0, cached_input=0.125),
            ),
            ModelDescriptor(
                provider="anthropic", id="claude-sonnet-4-5",
                name="Claude Sonnet 4.5",
                api=ApiKind.ANTHROPIC_MESSAGES,
                context_window=200_000, max_output_tokens=32_000,
                input_modalities=text_image, reasoning=True,
                pricing=TokenCost(
                    input=3.0, output=15.0, cached_input=0.30, cache_write=3.75,
                ),
            ),
            ModelDescriptor(
                provider="google", id="gemini-2.5-flash",
                name="Gemini 2.5 Flash",
                api=ApiKind.GOOGLE_GENERATIVE_AI,
                context_window=1_000_000, max_output_tokens=32_000,
                input_modalities=text_image, reasoning=True,
                pricing=TokenCost(input=0.30, output=2.50, cached_input=0.075),
            ),
            ModelDescriptor(
                provider="ollama", id="llama-3.1-8b",
                name="Llama 3.1 8B (Ollama)",
                api=ApiKind.OPENAI_COMPLETIONS,
                context_window=128_000, max_output_tokens=32_000,
                input_modalities=text,
                base_url="http://localhost:11434/v1",
            ),
        ])
