"""Exception types raised inside the KPI AI core."""

from __future__ import annotations


class KpiAIError(Exception):
    """Base class for errors raised by this package."""


class RateLimitExceededError(KpiAIError):
    def __init__(self, service_name: str) -> None:
        super().__init__(f"Rate limit exceeded for {service_name}")
        self.service_name = service_name


class ServiceNotFoundError(KpiAIError):
    def __init__(self, service_name: str) -> None:
        super().__init__(f"Service {service_name} not found")
        self.service_name = service_name


class MethodNotFoundError(KpiAIError):
    def __init__(self, service_name: str, method: str) -> None:
        super().__init__(f"Method {method} not found on service {service_name}")
        self.service_name = service_name
        self.method = method


class ServiceTimeoutError(KpiAIError):
    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"AI service call timeout after {timeout_ms} ms")
        self.timeout_ms = timeout_ms


class BackendError(KpiAIError):
    """An LLM provider answered with a non-2xx status or an unusable body."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnknownProviderError(KpiAIError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown AI provider: {provider}")
        self.provider = provider


class DimensionMismatchError(KpiAIError, ValueError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: store holds {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


# Failures that cannot succeed on a later attempt.
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    RateLimitExceededError,
    ServiceNotFoundError,
    MethodNotFoundError,
    UnknownProviderError,
)
