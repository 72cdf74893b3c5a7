import pytest

from kpi_ai.orchestrator.manager import ServiceOrchestrator
from kpi_ai.services.smart_validator import (
    KpiInput,
    heuristic_criteria,
    model_criteria,
    score_level,
)


def test_score_levels() -> None:
    assert [score_level(s) for s in (95, 90, 80, 75, 65, 60, 10)] == [
        "Excellent",
        "Excellent",
        "Good",
        "Good",
        "Fair",
        "Fair",
        "Poor",
    ]


def test_heuristic_criteria_reward_complete_definitions() -> None:
    complete = KpiInput.model_validate(
        {
            "title": "Reduce customer churn rate",
            "description": "Quarterly churn",
            "target": 5,
            "unit": "%",
            "dataSource": "CRM",
            "timeline": "Q4 2025",
        }
    )

    criteria = heuristic_criteria(complete)

    assert {name: item["score"] for name, item in criteria.items()} == {
        "specific": 100,
        "measurable": 100,
        "achievable": 100,
        "relevant": 100,
        "time_bound": 100,
    }


def test_model_criteria_requires_all_numeric_scores() -> None:
    full = {
        "criteria": {
            name: {"score": 80, "feedback": "ok"}
            for name in ("specific", "measurable", "achievable", "relevant", "timeBound")
        }
    }
    partial = {"criteria": {"specific": {"score": 80}}}

    assert model_criteria(full)["time_bound"]["score"] == 80.0
    assert model_criteria(partial) is None
    assert model_criteria("not json") is None


@pytest.mark.asyncio
async def test_validate_kpi_falls_back_to_heuristics(make_settings, fake_backend) -> None:
    fake_backend.reply = "Sorry, I cannot help with that."
    params = {"title": "X", "target": 10, "unit": "%"}
    async with ServiceOrchestrator(make_settings(), backend=fake_backend) as orchestrator:
        first = await orchestrator.call_service("smart-validator", "validateKPI", params)
        second = await orchestrator.call_service("smart-validator", "validateKPI", params)

    assert first.success is True
    assert first.data["source"] == "heuristic"
    assert first.data["overall_score"] == 52
    assert first.data["level"] == "Poor"
    assert first.data["auto_improvements"]["primary_weakness"] == "specific"
    assert first.data["auto_improvements"]["suggested_title"] == "X - achieve specific measurable target"
    assert second.cached is True
    assert second.data == first.data


@pytest.mark.asyncio
async def test_validate_kpi_uses_model_scores(make_settings, fake_backend) -> None:
    fake_backend.reply = {
        "criteria": {
            name: {"score": 90, "feedback": "fine", "improvements": []}
            for name in ("specific", "measurable", "achievable", "relevant", "timeBound")
        },
        "autoImprovements": {"suggestedTitle": "Better title", "confidenceScore": 70},
    }
    async with ServiceOrchestrator(make_settings(), backend=fake_backend) as orchestrator:
        response = await orchestrator.call_service(
            "smart-validator", "validateKPI", {"title": "Grow revenue", "target": 5, "unit": "%"}
        )

    assert response.data["source"] == "model"
    assert response.data["overall_score"] == 90
    assert response.data["level"] == "Excellent"
    assert response.data["auto_improvements"]["suggested_title"] == "Better title"
    assert response.data["criteria"]["time_bound"]["improvement_needed"] is False


@pytest.mark.asyncio
async def test_validate_evidence_falls_back_when_backend_fails(make_settings, fake_backend) -> None:
    def _fail(prompt: str) -> None:
        raise RuntimeError("provider down")

    fake_backend.reply = _fail
    async with ServiceOrchestrator(
        make_settings(max_retries=1), backend=fake_backend
    ) as orchestrator:
        response = await orchestrator.call_service(
            "smart-validator",
            "validateEvidence",
            {"actualValue": 10, "targetValue": 12, "reportedDate": "2025-01-01"},
        )

    assert response.success is True
    assert response.data["isValid"] is False
    assert response.data["reason"] == "AI Service unavailable"
    assert len(fake_backend.prompts) == 1
