from collections.abc import Callable
from typing import Any

import pytest

from kpi_ai.config import OrchestratorSettings


class FakeBackend:
    """Stands in for an LLM provider; records every prompt it receives."""

    def __init__(self, reply: Any = "ok") -> None:
        self.reply = reply
        self.prompts: list[tuple[str, dict[str, Any]]] = []

    async def complete(self, prompt: str, context: dict[str, Any] | None = None) -> Any:
        self.prompts.append((prompt, context or {}))
        if callable(self.reply):
            return self.reply(prompt)
        return self.reply

    async def aclose(self) -> None:
        return None


@pytest.fixture
def make_settings() -> Callable[..., OrchestratorSettings]:
    def _make(**overrides: Any) -> OrchestratorSettings:
        values: dict[str, Any] = {
            "provider": "local",
            "retry_base_delay_seconds": 0.0,
            "timeout_ms": 2_000,
        }
        values.update(overrides)
        return OrchestratorSettings(**values)

    return _make


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()
