"""KPI suggestions for a role, grounded in knowledge-base context when available."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import Field

from kpi_ai.services.base import OrchestratedService, ServiceInput

if TYPE_CHECKING:
    from kpi_ai.knowledge_base import KnowledgeBaseService

logger = logging.getLogger(__name__)


class SuggestionUser(ServiceInput):
    id: str = ""
    department: str = ""
    job_title: str = ""


class SuggestionInput(ServiceInput):
    user: SuggestionUser = Field(default_factory=SuggestionUser)
    historical_data: list[dict[str, Any]] = Field(default_factory=list)
    max_suggestions: int = Field(default=5, ge=1, le=20)


class KpiSuggestionService(OrchestratedService):
    service_name = "kpi-suggestion"

    def __init__(
        self, orchestrator: Any, *, knowledge_base: "KnowledgeBaseService | None" = None
    ) -> None:
        super().__init__(orchestrator)
        self.knowledge_base = knowledge_base

    async def generate_suggestions(self, params: dict[str, Any]) -> dict[str, Any]:
        request = SuggestionInput.model_validate(params)
        context = ""
        if self.knowledge_base is not None:
            context = await self.knowledge_base.retrieve_context(
                f"KPIs for {request.user.job_title} in {request.user.department}",
                department=request.user.department or None,
            )

        reply = await self.ask("generateSuggestions", self._prompt(request, context))
        suggestions = reply.get("suggestions") if isinstance(reply, dict) else None
        if not isinstance(suggestions, list):
            suggestions = []
        suggestions = [item for item in suggestions if isinstance(item, dict)]
        return {
            "suggestions": suggestions[: request.max_suggestions],
            "context_used": bool(context),
        }

    def _prompt(self, request: SuggestionInput, context: str) -> str:
        history = "\n".join(f"- {item}" for item in request.historical_data) or "- none"
        return (
            f"Suggest up to {request.max_suggestions} SMART KPIs for a "
            f"{request.user.job_title or 'staff member'} in the "
            f"{request.user.department or 'general'} department.\n\n"
            f"Historical performance:\n{history}\n"
            f"{context}\n"
            'Respond as JSON: {"suggestions": [{"title", "description", "target", '
            '"unit", "weight", "measurementMethod", "dataSource"}]}'
        )
