"""Boundary Protocols - contracts between the runtime and its collaborators.

Invariants:
    - Core never imports a concrete provider or tool implementation
    - A provider declares its capability set; the facade checks it before dispatch
    - stream_deltas() yields canonical fragments; ChatStream turns them into events

Design Decisions:
    - Protocol over ABC: structural subtyping, test doubles need no inheritance
    - Tool executors may be sync or async; ToolDispatch awaits when the result is awaitable
"""

from typing import AsyncIterator, Awaitable, Protocol, Union

from pi_runtime.core.domain_types import Capability
from pi_runtime.core.stream_assembler import StreamFragment
from pi_runtime.schemas.chat import ChatRequest, ChatResponse
from pi_runtime.schemas.messages import ToolCallPart, ToolResult


class ChatProvider(Protocol):
    """An LLM backend reachable through a uniform interface."""
    provider_id: str
    capabilities: frozenset[Capability]

    async def complete(self, request: ChatRequest) -> ChatResponse: ...

    def stream_deltas(self, request: ChatRequest) -> AsyncIterator[StreamFragment]: ...


class ToolExecutor(Protocol):
    """External tool collaborator. Unknown names must come back as error results."""

    def execute(
        self, call: ToolCallPart,
    ) -> Union[ToolResult, Awaitable[ToolResult]]: ...
