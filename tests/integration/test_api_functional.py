import base64
from pathlib import Path

from fastapi.testclient import TestClient

from kpi_ai.api.main import create_app
from kpi_ai.config import KnowledgeBaseConfig, VectorStoreConfig
from kpi_ai.ingest.embedder import HashingEmbedder
from kpi_ai.knowledge_base import KnowledgeBaseService
from kpi_ai.orchestrator.manager import ServiceOrchestrator
from kpi_ai.orchestrator.registry import build_default_registry
from kpi_ai.retrieval.vector_store import JsonFileVectorStore


def test_api_validate_index_context_metrics(tmp_path: Path, make_settings, fake_backend) -> None:
    knowledge_base = KnowledgeBaseService(
        JsonFileVectorStore(VectorStoreConfig(path=tmp_path / "store.json")),
        HashingEmbedder(),
        config=KnowledgeBaseConfig(),
    )
    orchestrator = ServiceOrchestrator(
        make_settings(),
        registry=build_default_registry(knowledge_base=knowledge_base),
        backend=fake_backend,
    )
    fake_backend.reply = "no structured answer"
    app = create_app(orchestrator=orchestrator, knowledge_base=knowledge_base)

    with TestClient(app) as client:
        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "healthy"
        assert health.json()["provider"] == "local"

        validate = client.post(
            "/ai/validate", json={"title": "Cut ticket backlog", "target": 20, "unit": "tickets"}
        )
        assert validate.status_code == 200
        body = validate.json()
        assert body["success"] is True
        assert body["data"]["source"] == "heuristic"
        assert body["cached"] is False

        unknown = client.post("/ai/call", json={"service": "nope", "method": "run"})
        assert unknown.status_code == 200
        assert unknown.json()["success"] is False
        assert unknown.json()["error"] == "Service nope not found"

        content = base64.b64encode(b"Support resolves tickets within two days.").decode("ascii")
        indexed = client.post(
            "/knowledge/index",
            json={
                "resource_id": "support-1",
                "content": f"data:text/plain;base64,{content}",
                "file_name": "support.txt",
                "mime_type": "text/plain",
                "metadata": {"department": "Support"},
            },
        )
        assert indexed.status_code == 200
        assert indexed.json() == {"indexed": True, "documents": 1}

        rejected = client.post(
            "/knowledge/index",
            json={"resource_id": "bad", "content": "***", "mime_type": "text/plain"},
        )
        assert rejected.status_code == 422

        context = client.post(
            "/knowledge/context", json={"query": "ticket resolution", "department": "Support"}
        )
        assert context.status_code == 200
        assert "[support.txt]: Support resolves tickets" in context.json()["context"]

        metrics = client.get("/metrics")
        assert metrics.status_code == 200
        assert metrics.json()["total_calls"] >= 2
        assert metrics.json()["error_count"] >= 1

        history = client.get("/history", params={"limit": 1})
        assert history.status_code == 200
        assert len(history.json()["items"]) == 1
        assert history.json()["items"][0]["service_name"] == "nope"
