"""Common plumbing for services invoked through the orchestrator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from kpi_ai.orchestrator.manager import ServiceOrchestrator

logger = logging.getLogger(__name__)


class ServiceInput(BaseModel):
    """Service parameters accepted in either camelCase or snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class OrchestratedService:
    """A service holding a back-reference to the orchestrator that built it."""

    service_name: str = ""

    def __init__(self, orchestrator: "ServiceOrchestrator") -> None:
        self.orchestrator = orchestrator

    async def ask(
        self,
        method: str,
        prompt: str,
        *,
        bypass_cache: bool = False,
        **context: Any,
    ) -> Any | None:
        """Nested prompt call through the orchestrator; None when it fails."""
        response = await self.orchestrator.call_service(
            self.service_name,
            method,
            {"prompt": prompt, **context},
            bypass_cache=bypass_cache,
            priority="high" if bypass_cache else "normal",
        )
        if not response.success:
            logger.warning("%s.%s fell back: %s", self.service_name, method, response.error)
            return None
        return response.data

    def health_check(self) -> dict[str, str]:
        return {"status": "ok"}
