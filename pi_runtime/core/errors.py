"""Error Hierarchy - typed, categorized exceptions for every runtime failure mode.

Invariants:
    - Every error has a kind (ErrorKind), category, severity and a stable status_code
    - Registry/catalog errors are terminal for the operation that raised them
    - ToolDispatchError never aborts a loop; it becomes an is_error tool result
    - to_response() flattens to code + message; to_stream_event() yields the canonical ErrorEvent

Design Decisions:
    - Single hierarchy with PiError base: callers catch one type and branch on kind
    - ErrorContext as dataclass: rich observability without coupling to the logging setup
    - error_from_stream_event() rebuilds the typed error so a drained stream can re-raise it
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pi_runtime.core.domain_types import ErrorKind
from pi_runtime.schemas.stream import ErrorEvent


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    EXTERNAL_API = "external_api"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    provider: str | None = None
    model: str | None = None
    tool_name: str | None = None
    call_id: str | None = None
    turn: int | None = None
    retry_after_ms: int | None = None
    debug_info: dict[str, Any] | None = None


# Stable boundary codes, one per kind.
STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.UNKNOWN_PROVIDER: 10,
    ErrorKind.UNKNOWN_MODEL: 11,
    ErrorKind.DUPLICATE_PROVIDER: 12,
    ErrorKind.DUPLICATE_MODEL: 13,
    ErrorKind.UNSUPPORTED_OPERATION: 14,
    ErrorKind.INVALID_CONTEXT: 15,
    ErrorKind.PROVIDER: 20,
    ErrorKind.DECODE: 21,
    ErrorKind.TIMEOUT: 22,
    ErrorKind.CANCELLED: 23,
    ErrorKind.TURN_LIMIT_EXCEEDED: 30,
    ErrorKind.TOOL_DISPATCH: 31,
}


class PiError(Exception):
    """Base exception for all runtime errors."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()

    @property
    def code(self) -> str:
        return self.kind.value.upper()

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def status(self) -> int | None:
        """Upstream HTTP status, where one exists."""
        return None

    def to_response(self) -> dict:
        """Flatten to a boundary envelope: status code plus readable message."""
        return {
            "error": {
                "code": self.code,
                "kind": self.kind.value,
                "status_code": self.status_code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "provider": self.context.provider,
                    "model": self.context.model,
                    "tool_name": self.context.tool_name,
                    "turn": self.context.turn,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }

    def to_stream_event(self) -> ErrorEvent:
        return ErrorEvent(kind=self.kind, message=self.message, status=self.status)


# ─── Lookup & Registration Errors ───────────────────────────────

class UnknownProviderError(PiError):
    def __init__(self, provider_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"No provider registered for '{provider_id}'",
            ErrorKind.UNKNOWN_PROVIDER, ErrorCategory.RESOURCE_NOT_FOUND,
            context=context,
        )
        self.provider_id = provider_id


class UnknownModelError(PiError):
    def __init__(
        self, provider_id: str, model_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Unknown model {provider_id}:{model_id}",
            ErrorKind.UNKNOWN_MODEL, ErrorCategory.RESOURCE_NOT_FOUND,
            context=context,
        )
        self.provider_id = provider_id
        self.model_id = model_id


class DuplicateProviderError(PiError):
    def __init__(self, provider_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"Provider '{provider_id}' is already registered",
            ErrorKind.DUPLICATE_PROVIDER, ErrorCategory.CONFLICT,
            context=context,
        )
        self.provider_id = provider_id


class DuplicateModelError(PiError):
    def __init__(
        self, provider_id: str, model_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Model {provider_id}:{model_id} is already registered",
            ErrorKind.DUPLICATE_MODEL, ErrorCategory.CONFLICT,
            context=context,
        )
        self.provider_id = provider_id
        self.model_id = model_id


class UnsupportedOperationError(PiError):
    def __init__(
        self, provider_id: str, operation: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Provider '{provider_id}' does not support '{operation}'",
            ErrorKind.UNSUPPORTED_OPERATION, ErrorCategory.VALIDATION,
            context=context,
        )
        self.provider_id = provider_id
        self.operation = operation


class InvalidContextError(PiError):
    """Context violates the call/result pairing rules."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, ErrorKind.INVALID_CONTEXT, ErrorCategory.VALIDATION,
            context=context,
        )


# ─── Provider & Stream Errors ───────────────────────────────────

class ProviderError(PiError):
    """Network, 4xx or 5xx failure reported by a provider."""
    def __init__(
        self,
        message: str,
        status: int | None = None,
        retry_after_ms: int | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.retry_after_ms = retry_after_ms
        super().__init__(
            message, ErrorKind.PROVIDER, ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, ctx,
        )
        self._status = status
        if retryable is None:
            # Connection failures, rate limits and 5xx are transient
            retryable = status is None or status == 429 or status >= 500
        self.retryable = retryable

    @property
    def status(self) -> int | None:
        return self._status


class DecodeError(PiError):
    """Malformed stream frame or payload."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, ErrorKind.DECODE, ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, context,
        )


class ModelTimeoutError(PiError):
    """A model call exceeded its deadline."""
    def __init__(
        self,
        timeout_seconds: float | None = None,
        message: str | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            message or f"Model call exceeded deadline of {timeout_seconds}s",
            ErrorKind.TIMEOUT, ErrorCategory.TIMEOUT,
            ErrorSeverity.ERROR, context,
        )
        self.timeout_seconds = timeout_seconds


class CallCancelledError(PiError):
    """The caller cancelled an in-flight call or loop."""
    def __init__(
        self, message: str = "Cancelled by caller", context: ErrorContext | None = None,
    ):
        super().__init__(
            message, ErrorKind.CANCELLED, ErrorCategory.CANCELLED,
            ErrorSeverity.WARNING, context,
        )


# ─── Loop Errors ────────────────────────────────────────────────

class TurnLimitExceededError(PiError):
    def __init__(self, max_turns: int, context: ErrorContext | None = None):
        super().__init__(
            f"Agent exceeded maximum turn limit ({max_turns})",
            ErrorKind.TURN_LIMIT_EXCEEDED, ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, context,
        )
        self.max_turns = max_turns


class ToolDispatchError(PiError):
    """Wraps a failing external tool call. Recovered into an is_error result."""
    def __init__(
        self, tool_name: str, message: str, context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.tool_name = tool_name
        super().__init__(
            message, ErrorKind.TOOL_DISPATCH, ErrorCategory.EXTERNAL_API,
            ErrorSeverity.WARNING, ctx,
        )
        self.tool_name = tool_name


def error_from_stream_event(event: ErrorEvent) -> PiError:
    """Rebuild a typed error from a terminal ErrorEvent."""
    if event.kind == ErrorKind.CANCELLED:
        return CallCancelledError(event.message)
    if event.kind == ErrorKind.DECODE:
        return DecodeError(event.message)
    if event.kind == ErrorKind.PROVIDER:
        return ProviderError(event.message, status=event.status)
    if event.kind == ErrorKind.TIMEOUT:
        return ModelTimeoutError(message=event.message)
    return PiError(event.message, event.kind, ErrorCategory.INTERNAL)
