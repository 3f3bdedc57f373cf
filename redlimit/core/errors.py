"""Library-level exception types.

Configuration problems are fatal and raised at construction time. Store
failures are raised by the store adapters and converted into rejection
results by the limiter, so they never reach request handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability.

    Fields are optional; adapters fill in what they know.
    """

    code: str
    message: str
    hint: str
    key: str
    operation: str
    timeout_ms: int
    field: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for library failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when a limiter or store is constructed with invalid settings."""


class StoreAppError(AppError):
    """Raised when the counter store cannot be reached or replies unexpectedly."""


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed."""
