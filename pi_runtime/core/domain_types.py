"""Domain Types - identifiers and closed enums shared by every layer.

Invariants:
    - ProviderId and ModelId are non-empty, whitespace-trimmed identifiers
    - All valid states encoded as Enums, never raw string matching
    - str Enums serialize to JSON without custom encoders

Design Decisions:
    - NewType over wrapper classes: zero runtime cost, full type-checker support
    - require_identifier() is the single validation point for ids
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

ProviderId = NewType("ProviderId", str)
ModelId = NewType("ModelId", str)


def require_identifier(value: str, what: str) -> str:
    """Return value unchanged if it is a non-empty identifier, else raise ValueError."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{what} must be a non-empty identifier")
    return value


# ─── Enums ───────────────────────────────────────────────────────

class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StopReason(str, Enum):
    """Why the model stopped generating."""
    TOOL_CALLS = "tool_calls"
    STOP = "stop"
    LENGTH = "length"
    ERROR = "error"


class Capability(str, Enum):
    """Operations a provider implementation can perform."""
    COMPLETE = "complete"
    STREAM = "stream"


class ApiKind(str, Enum):
    """Provider API families."""
    OPENAI_COMPLETIONS = "openai-completions"
    OPENAI_RESPONSES = "openai-responses"
    ANTHROPIC_MESSAGES = "anthropic-messages"
    GOOGLE_GENERATIVE_AI = "google-generative-ai"


class InputModality(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class LoopState(str, Enum):
    """Agent tool-loop lifecycle states."""
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_DISPATCH = "tool_dispatch"
    DONE = "done"
    FAILED = "failed"


TERMINAL_LOOP_STATES = frozenset({LoopState.DONE, LoopState.FAILED})


class ErrorKind(str, Enum):
    """Closed set of failure kinds; flattened to a status code at boundaries."""
    UNKNOWN_PROVIDER = "unknown_provider"
    UNKNOWN_MODEL = "unknown_model"
    DUPLICATE_PROVIDER = "duplicate_provider"
    DUPLICATE_MODEL = "duplicate_model"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    PROVIDER = "provider"
    DECODE = "decode"
    TURN_LIMIT_EXCEEDED = "turn_limit_exceeded"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TOOL_DISPATCH = "tool_dispatch"
    INVALID_CONTEXT = "invalid_context"
