"""FastAPI entrypoint exposing the orchestrator and knowledge base."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from langchain_core.embeddings import Embeddings
from pydantic import BaseModel, Field

from kpi_ai.config import KnowledgeBaseConfig, OrchestratorSettings, VectorStoreConfig
from kpi_ai.ingest.embedder import HashingEmbedder, create_openai_embedder
from kpi_ai.knowledge_base import KnowledgeBaseService
from kpi_ai.logging_config import configure_logging
from kpi_ai.orchestrator.manager import ServiceOrchestrator
from kpi_ai.orchestrator.registry import build_default_registry
from kpi_ai.retrieval.vector_store import JsonFileVectorStore


def _create_embedder(config: KnowledgeBaseConfig) -> Embeddings:
    if not os.getenv("OPENAI_API_KEY"):
        return HashingEmbedder()
    return create_openai_embedder(config.embedding_model)


class CallRequest(BaseModel):
    service: str = Field(min_length=1)
    method: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    bypass_cache: bool = False
    user_id: str | None = None


class IndexRequest(BaseModel):
    resource_id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    file_name: str = ""
    mime_type: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContextRequest(BaseModel):
    query: str = Field(min_length=1)
    department: str | None = None


def create_app(
    settings: OrchestratorSettings | None = None,
    *,
    orchestrator: ServiceOrchestrator | None = None,
    knowledge_base: KnowledgeBaseService | None = None,
) -> FastAPI:
    settings = settings or (orchestrator.settings if orchestrator else OrchestratorSettings())
    configure_logging(settings.debug)

    if knowledge_base is None:
        kb_config = KnowledgeBaseConfig()
        knowledge_base = KnowledgeBaseService(
            JsonFileVectorStore(VectorStoreConfig()),
            _create_embedder(kb_config),
            config=kb_config,
        )
    if orchestrator is None:
        orchestrator = ServiceOrchestrator(
            settings, registry=build_default_registry(knowledge_base=knowledge_base)
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await orchestrator.cleanup()

    app = FastAPI(title="KPI AI Core", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.knowledge_base = knowledge_base

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        report = await request.app.state.orchestrator.health_check()
        return {**report, "provider": request.app.state.orchestrator.settings.provider}

    @app.post("/ai/call")
    async def call(payload: CallRequest, request: Request) -> dict[str, Any]:
        response = await request.app.state.orchestrator.call_service(
            payload.service,
            payload.method,
            payload.params,
            bypass_cache=payload.bypass_cache,
            user_id=payload.user_id,
        )
        return response.to_dict()

    @app.post("/ai/validate")
    async def validate(params: dict[str, Any], request: Request) -> dict[str, Any]:
        response = await request.app.state.orchestrator.call_service(
            "smart-validator", "validateKPI", params
        )
        return response.to_dict()

    @app.post("/ai/anomalies")
    async def anomalies(params: dict[str, Any], request: Request) -> dict[str, Any]:
        response = await request.app.state.orchestrator.call_service(
            "anomaly-detector", "analyzeKpiSubmission", params, bypass_cache=True
        )
        return response.to_dict()

    @app.post("/knowledge/index")
    async def index(payload: IndexRequest, request: Request) -> dict[str, Any]:
        metadata = {
            **payload.metadata,
            "fileName": payload.file_name,
            "mimeType": payload.mime_type,
        }
        kb: KnowledgeBaseService = request.app.state.knowledge_base
        indexed = await kb.index_document(payload.resource_id, payload.content, metadata)
        if not indexed:
            raise HTTPException(status_code=422, detail="Document could not be indexed")
        return {"indexed": True, "documents": len(kb.vector_store)}

    @app.post("/knowledge/context")
    async def context(payload: ContextRequest, request: Request) -> dict[str, Any]:
        kb: KnowledgeBaseService = request.app.state.knowledge_base
        text = await kb.retrieve_context(payload.query, department=payload.department)
        return {"context": text}

    @app.get("/metrics")
    def metrics(request: Request) -> dict[str, Any]:
        return asdict(request.app.state.orchestrator.get_usage_metrics())

    @app.get("/history")
    def history(request: Request, limit: int = 50) -> dict[str, Any]:
        records = request.app.state.orchestrator.get_call_history(limit=limit)
        return {"items": [asdict(record) for record in records]}

    return app


app = create_app()
