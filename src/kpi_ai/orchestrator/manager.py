"""Service orchestrator: rate limiting, caching, retries and timeouts around AI services."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import re
import uuid
from collections import deque
from datetime import datetime, timezone
from time import perf_counter, time
from typing import Any

from kpi_ai.config import OrchestratorSettings
from kpi_ai.errors import (
    NON_RETRYABLE_ERRORS,
    MethodNotFoundError,
    RateLimitExceededError,
    ServiceTimeoutError,
)
from kpi_ai.llm.backends import LLMBackend, create_backend
from kpi_ai.orchestrator.cache import TTLCache, make_cache_key
from kpi_ai.orchestrator.rate_limit import SlidingWindowRateLimiter
from kpi_ai.orchestrator.registry import ServiceRegistry, build_default_registry
from kpi_ai.types import Priority, ServiceCallRecord, ServiceResponse, UsageMetrics

logger = logging.getLogger(__name__)

_SENSITIVE_PARAMS = ("apiKey", "api_key", "password", "token")
_PROMPT_LOG_CHARS = 500
_RESULT_LOG_CHARS = 1000
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def sanitize_params(params: dict[str, Any]) -> dict[str, Any]:
    """Copy of `params` safe to keep in the call history."""
    sanitized = {key: value for key, value in params.items() if key not in _SENSITIVE_PARAMS}
    prompt = sanitized.get("prompt")
    if isinstance(prompt, str) and len(prompt) > _PROMPT_LOG_CHARS:
        sanitized["prompt"] = prompt[:_PROMPT_LOG_CHARS] + "..."
    return sanitized


def sanitize_result(result: Any) -> Any:
    if isinstance(result, str) and len(result) > _RESULT_LOG_CHARS:
        return result[:_RESULT_LOG_CHARS] + "..."
    return result


def _new_call_id() -> str:
    return f"ai-call-{int(time() * 1000)}-{uuid.uuid4().hex[:9]}"


class ServiceOrchestrator:
    """Uniform, resilient entry point for every AI service call.

    One instance is owned by the hosting application. Services are created on
    first use through the registry and receive this orchestrator so they can
    issue nested calls (typically prompts routed to the LLM backend).

    `call_service` never raises; failures come back as an unsuccessful
    `ServiceResponse`.
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        *,
        registry: ServiceRegistry | None = None,
        backend: LLMBackend | None = None,
    ) -> None:
        self.settings = settings or OrchestratorSettings()
        self.registry = registry or build_default_registry()
        self._backend = backend
        self._owns_backend = backend is None
        self._retired_backends: list[LLMBackend] = []

        self._cache = TTLCache(self.settings.cache_ttl_ms)
        self._rate_limiter = SlidingWindowRateLimiter(self.settings.rate_limit_rpm)
        self._history: deque[ServiceCallRecord] = deque(maxlen=self.settings.history_limit)
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def backend(self) -> LLMBackend:
        if self._backend is None:
            self._backend = create_backend(self.settings)
        return self._backend

    async def call_service(
        self,
        service_name: str,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        bypass_cache: bool = False,
        priority: Priority = "normal",
        user_id: str | None = None,
    ) -> ServiceResponse:
        params = dict(params or {})
        self._ensure_sweeper()
        started = perf_counter()
        record = ServiceCallRecord(
            id=_new_call_id(),
            service_name=service_name,
            method=method,
            params=sanitize_params(params),
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=user_id,
            priority=priority,
        )
        use_cache = self.settings.cache_enabled and not bypass_cache

        try:
            if not self._rate_limiter.try_acquire(service_name):
                logger.warning("Rate limit exceeded for %s", service_name)
                raise RateLimitExceededError(service_name)

            cache_key = make_cache_key(service_name, method, params)
            if use_cache:
                entry = self._cache.get(cache_key)
                if entry is not None:
                    record.status = "success"
                    record.cached = True
                    record.duration_ms = (perf_counter() - started) * 1000
                    return ServiceResponse(
                        success=True,
                        data=entry.data,
                        cached=True,
                        duration_ms=record.duration_ms,
                        call_id=record.id,
                    )

            result = await self._execute_with_retries(service_name, method, params)

            if use_cache and result is not None:
                self._cache.set(cache_key, result)
            record.status = "success"
            record.result = sanitize_result(result)
            record.duration_ms = (perf_counter() - started) * 1000
            return ServiceResponse(
                success=True,
                data=result,
                cached=False,
                duration_ms=record.duration_ms,
                call_id=record.id,
            )
        except Exception as exc:
            record.status = "timeout" if isinstance(exc, ServiceTimeoutError) else "error"
            record.error = str(exc) or type(exc).__name__
            record.duration_ms = (perf_counter() - started) * 1000
            logger.warning("AI service call %s.%s failed: %s", service_name, method, record.error)
            if self.settings.debug:
                logger.debug("Failed call record: %r", record)
            return ServiceResponse(
                success=False,
                error=record.error,
                duration_ms=record.duration_ms,
                call_id=record.id,
            )
        except asyncio.CancelledError:
            record.status = "error"
            record.error = "AI service call cancelled"
            record.duration_ms = (perf_counter() - started) * 1000
            logger.warning("AI service call %s.%s cancelled", service_name, method)
            raise
        finally:
            self._history.append(record)

    async def execute_prompt(self, prompt: str, context: dict[str, Any] | None = None) -> Any:
        return await self.backend.complete(prompt, context or {})

    async def _execute_with_retries(
        self, service_name: str, method: str, params: dict[str, Any]
    ) -> Any:
        service = self.registry.get(service_name, self)
        attempts = self.settings.max_retries
        timeout_s = self.settings.timeout_ms / 1000
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._call_method(service_name, service, method, params),
                    timeout=timeout_s,
                )
            except NON_RETRYABLE_ERRORS:
                raise
            except asyncio.TimeoutError:
                last_error = ServiceTimeoutError(self.settings.timeout_ms)
            except Exception as exc:
                last_error = exc

            if attempt < attempts:
                delay = self.settings.retry_base_delay_seconds * 2 ** (attempt - 1)
                logger.info(
                    "Retry attempt %d for %s.%s after %.2fs: %s",
                    attempt + 1,
                    service_name,
                    method,
                    delay,
                    last_error,
                )
                await asyncio.sleep(delay)

        if last_error is None:
            raise RuntimeError(f"No attempts made for {service_name}.{method}")
        raise last_error

    async def _call_method(
        self, service_name: str, service: Any, method: str, params: dict[str, Any]
    ) -> Any:
        handler = getattr(service, method, None)
        if not callable(handler):
            handler = getattr(service, to_snake_case(method), None)
        if not callable(handler):
            raise MethodNotFoundError(service_name, method)

        prompt = params.get("prompt")
        if prompt:
            return await self.execute_prompt(prompt, params)

        result = handler(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def get_usage_metrics(self) -> UsageMetrics:
        records = list(self._history)
        total = len(records)
        successes = [record for record in records if record.status == "success"]
        errors = sum(1 for record in records if record.status in ("error", "timeout"))
        cached_hits = sum(1 for record in successes if record.cached)
        durations = [record.duration_ms for record in records if record.duration_ms is not None]

        service_calls: dict[str, int] = {}
        for record in records:
            service_calls[record.service_name] = service_calls.get(record.service_name, 0) + 1

        return UsageMetrics(
            total_calls=total,
            success_rate=(len(successes) / total * 100) if total else 0.0,
            average_response_time_ms=round(sum(durations) / len(durations)) if durations else 0,
            error_count=errors,
            cache_hit_rate=(cached_hits / len(successes) * 100) if successes else 0.0,
            cost_estimate_usd=(len(successes) - cached_hits) * self.settings.cost_per_call_usd,
            service_calls=service_calls,
        )

    def get_call_history(self, limit: int = 50) -> list[ServiceCallRecord]:
        """Most recent calls first."""
        if limit <= 0:
            return []
        return list(reversed(list(self._history)[-limit:]))

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("AI service cache cleared")

    def update_config(self, **updates: Any) -> OrchestratorSettings:
        """Re-validate settings with `updates` applied and rebuild dependent parts."""
        merged = {**self.settings.model_dump(), **updates}
        self.settings = OrchestratorSettings.model_validate(merged)

        self._rate_limiter.limit = self.settings.rate_limit_rpm
        self._cache.ttl_ms = self.settings.cache_ttl_ms
        if self._history.maxlen != self.settings.history_limit:
            self._history = deque(self._history, maxlen=self.settings.history_limit)
        if self._owns_backend and self._backend is not None:
            self._retired_backends.append(self._backend)
            self._backend = None
        logger.info("AI service configuration updated: %s", sorted(updates))
        return self.settings

    async def health_check(self) -> dict[str, Any]:
        services: dict[str, bool] = {}
        for name, service in self.registry.instances().items():
            probe = getattr(service, "health_check", None)
            if probe is None:
                services[name] = True
                continue
            try:
                outcome = probe()
                if inspect.isawaitable(outcome):
                    await outcome
                services[name] = True
            except Exception:
                logger.exception("Health check failed for %s", name)
                services[name] = False
        status = "healthy" if all(services.values()) else "degraded"
        return {"status": status, "services": services}

    async def cleanup(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        self._cache.clear()
        self._history.clear()
        self._rate_limiter.reset()

        backends = list(self._retired_backends)
        if self._owns_backend and self._backend is not None:
            backends.append(self._backend)
        for backend in backends:
            await backend.aclose()
        self._retired_backends.clear()
        if self._owns_backend:
            self._backend = None
        logger.info("AI service orchestrator cleaned up")

    async def __aenter__(self) -> "ServiceOrchestrator":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.cleanup()

    def _ensure_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cache_sweep_interval_seconds)
            self._cache.sweep()
