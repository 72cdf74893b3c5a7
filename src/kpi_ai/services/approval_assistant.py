"""Approval recommendations for KPI submissions."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field

from kpi_ai.services.base import OrchestratedService, ServiceInput

logger = logging.getLogger(__name__)

BASE_REVIEW_MINUTES = 10
MINUTES_PER_KPI = 3


class ApprovalInput(ServiceInput):
    employee_name: str = ""
    kpi_definitions: list[dict[str, Any]] = Field(default_factory=list)
    approver_strictness: int = Field(default=5, ge=0, le=10)


def neutral_recommendation(reason: str) -> dict[str, Any]:
    return {
        "recommendation": "REVIEW",
        "confidence": 0,
        "summary": reason,
        "specificFeedback": [],
    }


class ApprovalAssistant(OrchestratedService):
    service_name = "approval-assistant"

    async def generate_recommendation(self, params: dict[str, Any]) -> dict[str, Any]:
        request = ApprovalInput.model_validate(params)
        scores = await self._smart_scores(request.kpi_definitions)
        average = round(sum(scores) / len(scores)) if scores else None

        reply = await self.ask("generateRecommendation", self._prompt(request, scores))
        if isinstance(reply, dict):
            recommendation = dict(reply)
        else:
            recommendation = neutral_recommendation("AI recommendation unavailable")

        recommendation["smart_compliance"] = {"scores": scores, "average": average}
        recommendation["time_estimate_minutes"] = (
            BASE_REVIEW_MINUTES + MINUTES_PER_KPI * len(request.kpi_definitions)
        )
        recommendation["comment_style"] = (
            "formal" if request.approver_strictness > 7 else "collaborative"
        )
        return recommendation

    async def _smart_scores(self, kpis: list[dict[str, Any]]) -> list[float]:
        scores: list[float] = []
        for kpi in kpis:
            response = await self.orchestrator.call_service("smart-validator", "validateKPI", kpi)
            if response.success and isinstance(response.data, dict):
                scores.append(response.data["overall_score"])
        return scores

    def _prompt(self, request: ApprovalInput, scores: list[float]) -> str:
        lines = "\n".join(
            f"- {kpi.get('title', 'Untitled')}: target {kpi.get('target', 'N/A')} "
            f"{kpi.get('unit', '')}, weight {kpi.get('weight', 'N/A')}"
            for kpi in request.kpi_definitions
        )
        return (
            f"Review the KPI submission of {request.employee_name or 'the employee'} "
            "and recommend APPROVE, REVISE or REJECT.\n\n"
            f"KPIs:\n{lines or '- none'}\n\n"
            f"SMART scores: {scores}\n\n"
            'Respond as JSON: {"recommendation", "confidence", "summary", '
            '"specificFeedback": [{"kpi", "comment"}]}'
        )
