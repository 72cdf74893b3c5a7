"""Knowledge base: indexes uploaded documents and retrieves prompt context."""

from __future__ import annotations

import base64
import binascii
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from langchain_core.embeddings import Embeddings

from kpi_ai.config import KnowledgeBaseConfig
from kpi_ai.ingest.chunker import CharacterChunker
from kpi_ai.ingest.embedder import normalize_for_embedding
from kpi_ai.ingest.parser import ParserRegistry
from kpi_ai.retrieval.vector_store import JsonFileVectorStore
from kpi_ai.types import VectorDocument

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "RELEVANT KNOWLEDGE BASE CONTEXT:"

IndexedCallback = Callable[[str, int], Awaitable[None] | None]
LegacyContextProvider = Callable[[str, str | None], Awaitable[str] | str]


def decode_base64_payload(content: str) -> bytes:
    """Decode a `data:<mime>;base64,<payload>` URL or bare base64 text."""
    payload = content.split(",", 1)[1] if content.startswith("data:") else content
    payload = payload.strip()
    if not payload:
        raise ValueError("Invalid base64 content")
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError("Invalid base64 content") from exc


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _department_scope(department: str) -> Callable[[VectorDocument], bool]:
    """Matches documents of `department` and documents shared across departments."""

    def _match(document: VectorDocument) -> bool:
        return document.metadata.get("department") in (None, "", department)

    return _match


class KnowledgeBaseService:
    def __init__(
        self,
        vector_store: JsonFileVectorStore,
        embedder: Embeddings,
        *,
        config: KnowledgeBaseConfig | None = None,
        parser_registry: ParserRegistry | None = None,
        on_indexed: IndexedCallback | None = None,
        legacy_context: LegacyContextProvider | None = None,
    ) -> None:
        self.config = config or KnowledgeBaseConfig()
        self.vector_store = vector_store
        self.embedder = embedder
        self.parser_registry = parser_registry or ParserRegistry()
        self.chunker = CharacterChunker(self.config.chunk_size)
        self._on_indexed = on_indexed
        self._legacy_context = legacy_context

    async def index_document(
        self, resource_id: str, base64_content: str, metadata: dict[str, Any]
    ) -> bool:
        """Parse, chunk, embed and store one document.

        Returns False instead of raising when any step fails.
        """
        file_name = str(metadata.get("fileName") or metadata.get("file_name") or "")
        mime_type = str(metadata.get("mimeType") or metadata.get("mime_type") or "")
        logger.info("Indexing document %s (%s)", file_name or "<unnamed>", resource_id)
        try:
            data = decode_base64_payload(base64_content)
            text = self.parser_registry.parse_bytes(data, mime_type, file_name)
            if not text.strip():
                logger.warning("No text extracted from document %s", resource_id)
                return False

            chunks = self.chunker.chunk(text)
            embeddings = await self.embedder.aembed_documents(
                [normalize_for_embedding(chunk) for chunk in chunks]
            )
            documents = [
                VectorDocument(
                    id=f"chunk-{resource_id}-{uuid.uuid4().hex[:9]}",
                    source_id=resource_id,
                    content=chunk,
                    metadata={**metadata, "text": self._preview(chunk)},
                    embedding=list(embedding),
                )
                for chunk, embedding in zip(chunks, embeddings, strict=True)
            ]
            await self.vector_store.add_documents(documents)
            if self._on_indexed is not None:
                await _maybe_await(self._on_indexed(resource_id, len(documents)))
        except Exception:
            logger.exception("Indexing failed for %s", resource_id)
            return False

        logger.info("Indexed %d chunks for %s", len(documents), resource_id)
        return True

    async def retrieve_context(self, query: str, *, department: str | None = None) -> str:
        """Prompt-ready context block for `query`, or "" when nothing is found."""
        try:
            query_embedding = await self.embedder.aembed_query(normalize_for_embedding(query))
            documents = await self.vector_store.search(
                query_embedding,
                self.config.top_k,
                where=_department_scope(department) if department else None,
            )
            if not documents:
                if self._legacy_context is None:
                    return ""
                return await _maybe_await(self._legacy_context(query, department))

            lines = [
                f"- [{document.metadata.get('fileName') or 'Doc'}]: {document.content}"
                for document in documents
            ]
        except Exception:
            logger.exception("Context retrieval failed")
            return ""

        context = "\n\n".join(lines)
        return f"\n{CONTEXT_HEADER}\n{context}\n"

    def _preview(self, chunk: str) -> str:
        return chunk[: self.config.preview_chars] + "..."
