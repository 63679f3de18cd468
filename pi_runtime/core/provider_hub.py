"""Provider Hub - registry mapping a provider id to a provider implementation.

Invariants:
    - insert() refuses to rebind an id unless replace=True is passed explicitly
    - get() is total: absent id raises UnknownProviderError
    - A failed insert leaves the existing binding untouched

Design Decisions:
    - Populated once at composition time, then shared read-only across conversations
"""

from typing import Iterator

from pi_runtime.core.domain_types import Capability, require_identifier
from pi_runtime.core.errors import (
    DuplicateProviderError,
    UnknownProviderError,
    UnsupportedOperationError,
)
from pi_runtime.core.provider_protocols import ChatProvider


class ProviderHub:

    def __init__(self) -> None:
        self._providers: dict[str, ChatProvider] = {}

    def insert(
        self, provider_id: str, provider: ChatProvider, *, replace: bool = False,
    ) -> None:
        require_identifier(provider_id, "provider id")
        if provider_id in self._providers and not replace:
            raise DuplicateProviderError(provider_id)
        self._providers[provider_id] = provider

    def get(self, provider_id: str) -> ChatProvider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise UnknownProviderError(provider_id)
        return provider

    def require(self, provider_id: str, capability: Capability) -> ChatProvider:
        """get() plus a capability check, raising UnsupportedOperationError."""
        provider = self.get(provider_id)
        if capability not in provider.capabilities:
            raise UnsupportedOperationError(provider_id, capability.value)
        return provider

    def ids(self) -> Iterator[str]:
        return iter(list(self._providers))

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)
