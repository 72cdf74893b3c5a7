"""SMART-criteria scoring for KPI definitions."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from pydantic import Field

from kpi_ai.services.base import OrchestratedService, ServiceInput

logger = logging.getLogger(__name__)

CRITERIA = ("specific", "measurable", "achievable", "relevant", "time_bound")
IMPROVEMENT_THRESHOLD = 70

_TARGETED_IMPROVEMENTS = {
    "specific": [
        "Add quantifiable outcomes",
        "Define exact scope and boundaries",
        "Specify target audience/recipients",
    ],
    "measurable": [
        "Define measurement methodology",
        "Specify data sources and tools",
        "Set measurement frequency",
    ],
    "achievable": [
        "Validate resource availability",
        "Consider historical performance",
        "Account for external constraints",
    ],
    "relevant": [
        "Link to strategic objectives",
        "Align with role responsibilities",
        "Ensure business impact",
    ],
    "time_bound": [
        "Set specific deadlines",
        "Define milestone checkpoints",
        "Establish review schedules",
    ],
}


class KpiInput(ServiceInput):
    title: str = ""
    description: str = ""
    target: float = 0.0
    unit: str = ""
    measurement_method: str | None = None
    timeline: str | None = None
    data_source: str | None = None
    type: int | str | None = None


class EvidenceInput(ServiceInput):
    actual_value: float
    target_value: float
    reported_date: str
    evidence_content: str = ""
    evidence_type: str = Field(default="document")


def score_level(score: float) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 75:
        return "Good"
    if score >= 60:
        return "Fair"
    return "Poor"


def progress_color(score: float) -> str:
    if score >= 90:
        return "#10B981"
    if score >= 75:
        return "#3B82F6"
    if score >= 60:
        return "#F59E0B"
    return "#EF4444"


def _criterion(score: float, feedback: str, improvements: list[str] | None = None) -> dict[str, Any]:
    return {
        "score": score,
        "feedback": feedback,
        "improvements": improvements or [],
        "examples": [],
    }


def heuristic_criteria(kpi: KpiInput) -> dict[str, dict[str, Any]]:
    """Rule-based scores used when no model assessment is available."""
    title = kpi.title.strip()
    description = kpi.description.strip()
    data_source = (kpi.data_source or "").strip()

    if len(title) > 10:
        specific = _criterion(100, "Title describes a concrete outcome")
    elif len(title) > 5:
        specific = _criterion(50, "Title could be more specific", ["Add quantifiable outcomes"])
    else:
        specific = _criterion(0, "Title is too short to be specific", ["Define exact scope and boundaries"])

    if kpi.unit and kpi.target > 0:
        measurable = _criterion(100, "Target and unit are defined")
    elif kpi.unit or kpi.target > 0:
        measurable = _criterion(50, "Target or unit is missing", ["Define measurement methodology"])
    else:
        measurable = _criterion(0, "No measurable target", ["Set a numeric target with a unit"])

    if 0 < kpi.target < 1_000_000:
        achievable = _criterion(100, "Target is within a realistic range")
    elif kpi.target > 0:
        achievable = _criterion(50, "Target looks unusually large", ["Consider historical performance"])
    else:
        achievable = _criterion(0, "Target is not positive", ["Validate resource availability"])

    if data_source:
        relevant = _criterion(100, "Backed by a named data source")
    elif description:
        relevant = _criterion(50, "Description given but no data source", ["Link to strategic objectives"])
    else:
        relevant = _criterion(0, "No description or data source", ["Ensure business impact"])

    if kpi.timeline and kpi.timeline.strip():
        time_bound = _criterion(100, "Timeline is stated")
    else:
        time_bound = _criterion(60, "Timeline assumed from the review cycle", ["Set specific deadlines"])

    return {
        "specific": specific,
        "measurable": measurable,
        "achievable": achievable,
        "relevant": relevant,
        "time_bound": time_bound,
    }


def model_criteria(payload: Any) -> dict[str, dict[str, Any]] | None:
    """Criteria from a model reply, or None unless all five carry numeric scores."""
    if not isinstance(payload, dict) or not isinstance(payload.get("criteria"), dict):
        return None
    raw = payload["criteria"]
    criteria: dict[str, dict[str, Any]] = {}
    for name in CRITERIA:
        item = raw.get(name) or raw.get("timeBound" if name == "time_bound" else name)
        if not isinstance(item, dict):
            return None
        score = item.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            return None
        criteria[name] = {
            "score": max(0.0, min(float(score), 100.0)),
            "feedback": str(item.get("feedback", "")),
            "improvements": list(item.get("improvements") or []),
            "examples": list(item.get("examples") or []),
        }
    return criteria


def improve_specificity(title: str) -> str:
    if "improve" in title.lower():
        return re.sub("improve", "increase by X%", title, flags=re.IGNORECASE)
    if "enhance" in title.lower():
        return re.sub("enhance", "achieve specific target of", title, flags=re.IGNORECASE)
    if "by" not in title and "%" not in title and "target" not in title:
        return f"{title} - achieve specific measurable target"
    return title


def improve_measurability(kpi: KpiInput) -> str:
    parts = []
    if not kpi.data_source:
        parts.append("Data source: [Specify system/report name]")
    if not kpi.measurement_method:
        parts.append("Measurement: [Define calculation method]")
    parts.append("Frequency: [Daily/Weekly/Monthly tracking]")
    parts.append("Reporting: [Dashboard/Report format]")
    return " | ".join(parts)


def build_result(
    kpi: KpiInput,
    criteria: dict[str, dict[str, Any]],
    suggestions: dict[str, Any] | None = None,
    *,
    source: str = "heuristic",
) -> dict[str, Any]:
    suggestions = suggestions or {}
    overall = round(sum(criteria[name]["score"] for name in CRITERIA) / len(CRITERIA))
    primary_weakness = min(CRITERIA, key=lambda name: criteria[name]["score"])
    weak_score = criteria[primary_weakness]["score"]

    title = suggestions.get("suggestedTitle") or kpi.title
    description = suggestions.get("suggestedDescription") or kpi.description
    measurement = suggestions.get("suggestedMeasurement") or kpi.measurement_method or ""
    if primary_weakness == "specific" and weak_score < IMPROVEMENT_THRESHOLD:
        title = improve_specificity(kpi.title)
    if primary_weakness == "measurable" and weak_score < IMPROVEMENT_THRESHOLD:
        measurement = improve_measurability(kpi)

    scores = [criteria[name]["score"] for name in CRITERIA]
    return {
        "overall_score": overall,
        "level": score_level(overall),
        "source": source,
        "criteria": {
            name: {
                **criteria[name],
                "level": score_level(criteria[name]["score"]),
                "color": progress_color(criteria[name]["score"]),
                "improvement_needed": criteria[name]["score"] < IMPROVEMENT_THRESHOLD,
            }
            for name in CRITERIA
        },
        "auto_improvements": {
            "suggested_title": title,
            "suggested_description": description,
            "suggested_measurement": measurement,
            "confidence_score": suggestions.get("confidenceScore") or 80,
            "primary_weakness": primary_weakness,
            "targeted_improvements": list(_TARGETED_IMPROVEMENTS[primary_weakness]),
        },
        "strengths_count": sum(1 for score in scores if score >= 80),
        "weaknesses_count": sum(1 for score in scores if score < IMPROVEMENT_THRESHOLD),
    }


class SmartValidator(OrchestratedService):
    """Scores KPI definitions against the five SMART criteria.

    Model scores replace the rule-based ones only when the model returns all
    five criteria with numeric scores.
    """

    service_name = "smart-validator"

    async def validate_kpi(self, params: dict[str, Any]) -> dict[str, Any]:
        kpi = KpiInput.model_validate(params)
        reply = await self.ask("validateSMART", self._prompt(kpi))
        criteria = model_criteria(reply)
        if criteria is None:
            return build_result(kpi, heuristic_criteria(kpi))
        suggestions = reply.get("autoImprovements") if isinstance(reply, dict) else None
        return build_result(
            kpi,
            criteria,
            suggestions if isinstance(suggestions, dict) else None,
            source="model",
        )

    async def validate_smart(self, params: dict[str, Any]) -> Any:
        kpi = KpiInput.model_validate(params)
        return await self.orchestrator.execute_prompt(self._prompt(kpi), {"temperature": 0.1})

    async def validate_multiple_kpis(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        kpis = params.get("kpis") or []
        return list(await asyncio.gather(*(self.validate_kpi(kpi) for kpi in kpis)))

    async def validate_evidence(self, params: dict[str, Any]) -> dict[str, Any]:
        evidence = EvidenceInput.model_validate(params)
        prompt = (
            "Verify if the submitted evidence supports the reported KPI result.\n\n"
            f"Actual Value: {evidence.actual_value}\n"
            f"Target Value: {evidence.target_value}\n"
            f"Date: {evidence.reported_date}\n\n"
            f'EVIDENCE CONTENT:\n"""{evidence.evidence_content}"""\n\n'
            'Respond as JSON: {"isValid": bool, "confidence": 0-100, '
            '"reason": str, "discrepancies": [str]}'
        )
        reply = await self.ask("validateEvidence", prompt)
        if isinstance(reply, dict):
            return reply
        return {
            "isValid": False,
            "confidence": 0,
            "reason": "AI Service unavailable",
            "discrepancies": [],
        }

    def _prompt(self, kpi: KpiInput) -> str:
        return (
            "Perform SMART criteria analysis for this KPI and score each criterion 0-100.\n\n"
            f'Title: "{kpi.title}"\n'
            f'Description: "{kpi.description}"\n'
            f"Target: {kpi.target} {kpi.unit}\n"
            f'Measurement Method: "{kpi.measurement_method or "Not specified"}"\n'
            f'Data Source: "{kpi.data_source or "Not specified"}"\n'
            f'Timeline: "{kpi.timeline or "Not specified"}"\n\n'
            'Respond as JSON: {"criteria": {"specific": {"score", "feedback", '
            '"improvements", "examples"}, "measurable": {...}, "achievable": {...}, '
            '"relevant": {...}, "timeBound": {...}}, "autoImprovements": '
            '{"suggestedTitle", "suggestedDescription", "suggestedMeasurement", '
            '"confidenceScore"}}'
        )
