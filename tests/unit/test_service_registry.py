import pytest

from kpi_ai.errors import ServiceNotFoundError
from kpi_ai.orchestrator.registry import ServiceRegistry, build_default_registry


def test_registry_builds_lazily_and_memoizes() -> None:
    registry = ServiceRegistry()
    built = []

    def _factory(orchestrator: object) -> dict[str, object]:
        built.append(orchestrator)
        return {"owner": orchestrator}

    registry.register("svc", _factory)
    assert registry.instances() == {}

    sentinel = object()
    first = registry.get("svc", sentinel)
    second = registry.get("svc", sentinel)

    assert first is second
    assert first["owner"] is sentinel
    assert built == [sentinel]


def test_duplicate_service_registration_rejected() -> None:
    registry = ServiceRegistry()
    registry.register("svc", lambda orchestrator: object())

    with pytest.raises(ValueError):
        registry.register("svc", lambda orchestrator: object())


def test_unknown_service_raises() -> None:
    with pytest.raises(ServiceNotFoundError):
        ServiceRegistry().get("missing", object())


def test_default_registry_names() -> None:
    registry = build_default_registry()

    assert set(registry.names()) == {
        "document-analyzer",
        "text-processor",
        "kpi-suggestion",
        "smart-validator",
        "anomaly-detector",
        "approval-assistant",
    }
