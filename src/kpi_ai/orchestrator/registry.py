"""Static registry of lazily constructed, memoized services."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from kpi_ai.errors import ServiceNotFoundError

if TYPE_CHECKING:
    from kpi_ai.orchestrator.manager import ServiceOrchestrator

ServiceFactory = Callable[["ServiceOrchestrator"], Any]


class ServiceRegistry:
    """Maps service names to factories and keeps one instance per name.

    Factories receive the orchestrator so services can issue nested calls.
    """

    def __init__(self) -> None:
        self._factories: dict[str, ServiceFactory] = {}
        self._instances: dict[str, Any] = {}

    def register(self, name: str, factory: ServiceFactory) -> None:
        if name in self._factories:
            raise ValueError(f"Service already registered: {name}")
        self._factories[name] = factory

    def get(self, name: str, orchestrator: "ServiceOrchestrator") -> Any:
        instance = self._instances.get(name)
        if instance is not None:
            return instance
        factory = self._factories.get(name)
        if factory is None:
            raise ServiceNotFoundError(name)
        instance = factory(orchestrator)
        self._instances[name] = instance
        return instance

    def names(self) -> list[str]:
        return list(self._factories)

    def instances(self) -> dict[str, Any]:
        return dict(self._instances)

    def reset(self) -> None:
        self._instances.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._factories


def build_default_registry(knowledge_base: Any | None = None) -> ServiceRegistry:
    """Registry holding the built-in and domain services."""
    from kpi_ai.services.anomaly_detector import AnomalyDetector
    from kpi_ai.services.approval_assistant import ApprovalAssistant
    from kpi_ai.services.builtin import DocumentAnalyzer, TextProcessor
    from kpi_ai.services.kpi_suggestion import KpiSuggestionService
    from kpi_ai.services.smart_validator import SmartValidator

    registry = ServiceRegistry()
    registry.register("document-analyzer", DocumentAnalyzer)
    registry.register("text-processor", TextProcessor)
    registry.register(
        "kpi-suggestion",
        lambda orchestrator: KpiSuggestionService(orchestrator, knowledge_base=knowledge_base),
    )
    registry.register("smart-validator", SmartValidator)
    registry.register("anomaly-detector", AnomalyDetector)
    registry.register("approval-assistant", ApprovalAssistant)
    return registry
