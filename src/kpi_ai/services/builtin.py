"""Built-in document and text services."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from kpi_ai.ingest.parser import ParserRegistry
from kpi_ai.services.base import OrchestratedService

logger = logging.getLogger(__name__)


class DocumentAnalyzer(OrchestratedService):
    service_name = "document-analyzer"

    def __init__(self, orchestrator: Any, parser_registry: ParserRegistry | None = None) -> None:
        super().__init__(orchestrator)
        self.parser_registry = parser_registry or ParserRegistry()

    async def analyze_evidence(self, params: dict[str, Any]) -> Any:
        content = self._extract(params.get("file_path") or params.get("filePath") or "")
        instructions = params.get("instructions") or "Analyze this evidence document."
        return await self.orchestrator.execute_prompt(
            f"{instructions}\n\nDOCUMENT CONTENT:\n{content}",
            {"max_tokens": 2000, "temperature": 0.1},
        )

    async def extract_data(self, params: dict[str, Any]) -> Any:
        content = self._extract(params.get("file_path") or params.get("filePath") or "")
        fields = params.get("expected_fields") or params.get("expectedFields") or []
        prompt = (
            "Extract the following data fields from this document:\n"
            f"Fields: {', '.join(fields)}\n\n"
            f"Document content:\n{content}\n\n"
            "Return as JSON with the requested fields."
        )
        return await self.orchestrator.execute_prompt(
            prompt, {"max_tokens": 1000, "temperature": 0.1}
        )

    def _extract(self, file_path: str) -> str:
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError:
            logger.error("Error extracting content from %s", file_path)
            return ""
        return self.parser_registry.parse_bytes(data, file_name=path.name)


class TextProcessor(OrchestratedService):
    service_name = "text-processor"

    async def summarize(self, params: dict[str, Any]) -> Any:
        max_length = params.get("max_length") or params.get("maxLength") or 200
        prompt = (
            f"Summarize the following text in {max_length} words or less:\n\n"
            f"{params.get('text', '')}\n\n"
            "Focus on key points and actionable items."
        )
        return await self.orchestrator.execute_prompt(
            prompt, {"max_tokens": 500, "temperature": 0.3}
        )

    async def analyze(self, params: dict[str, Any]) -> Any:
        return await self.orchestrator.execute_prompt(
            str(params.get("prompt", "")), {"max_tokens": 1000, "temperature": 0.3}
        )
