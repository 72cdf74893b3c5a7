"""JSON-file vector store with brute-force cosine search."""

from __future__ import annotations

import asyncio
import json
import logging
from math import sqrt
from collections.abc import Callable
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from kpi_ai.config import VectorStoreConfig
from kpi_ai.errors import DimensionMismatchError
from kpi_ai.types import ScoredDocument, VectorDocument

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between `a` and `b`; 0.0 when either has no magnitude."""
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def _metadata_match(metadata: dict[str, Any], metadata_filter: dict[str, Any] | None) -> bool:
    if not metadata_filter:
        return True
    for key, value in metadata_filter.items():
        if metadata.get(key) != value:
            return False
    return True


def _decode_documents(raw: str, path: Path) -> list[VectorDocument]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Vector store file %s is not valid JSON; starting empty", path)
        return []
    if not isinstance(payload, list):
        logger.warning("Vector store file %s does not hold a JSON array; starting empty", path)
        return []
    documents: list[VectorDocument] = []
    for item in payload:
        try:
            documents.append(VectorDocument.from_dict(item))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed vector store record in %s", path)
    return documents


class JsonFileVectorStore:
    """Append-only store persisted as one JSON array.

    Writes from this instance are serialized by a lock and each write reloads
    the file first, so concurrent `add_documents` calls never lose records.
    Writers in other processes are not coordinated.
    """

    def __init__(self, config: VectorStoreConfig | None = None) -> None:
        self.config = config or VectorStoreConfig()
        self.path = Path(self.config.path)
        self._lock = asyncio.Lock()
        self._documents: list[VectorDocument] = self._load_sync()

    @property
    def documents(self) -> list[VectorDocument]:
        return list(self._documents)

    @property
    def dimension(self) -> int | None:
        for document in self._documents:
            if document.embedding:
                return len(document.embedding)
        return None

    def __len__(self) -> int:
        return len(self._documents)

    async def add_documents(self, docs: list[VectorDocument]) -> None:
        if not docs:
            raise ValueError("add_documents requires at least one document")
        async with self._lock:
            current = await self._load()
            if self.config.enforce_dimension:
                self._check_dimensions(current, docs)
            updated = current + list(docs)
            await self._write(updated)
            self._documents = updated
        logger.info("Stored %d documents (total %d)", len(docs), len(updated))

    async def search(
        self,
        query_embedding: list[float],
        limit: int = 5,
        *,
        metadata_filter: dict[str, Any] | None = None,
        where: Callable[[VectorDocument], bool] | None = None,
    ) -> list[VectorDocument]:
        scored = await self.search_scored(
            query_embedding, limit, metadata_filter=metadata_filter, where=where
        )
        return [item.document for item in scored]

    async def search_scored(
        self,
        query_embedding: list[float],
        limit: int = 5,
        *,
        metadata_filter: dict[str, Any] | None = None,
        where: Callable[[VectorDocument], bool] | None = None,
    ) -> list[ScoredDocument]:
        """Top `limit` hits; `where` further restricts candidates."""
        if not self._documents or limit <= 0:
            return []
        ranked = sorted(
            (
                ScoredDocument(
                    document=document,
                    score=cosine_similarity(query_embedding, document.embedding),
                )
                for document in self._documents
                if _metadata_match(document.metadata, metadata_filter)
                and (where is None or where(document))
            ),
            key=lambda item: item.score,
            reverse=True,
        )
        return [
            ScoredDocument(document=item.document, score=item.score, rank=i + 1)
            for i, item in enumerate(ranked[:limit])
        ]

    async def clear(self) -> None:
        async with self._lock:
            await self._write([])
            self._documents = []

    def _check_dimensions(
        self, current: list[VectorDocument], incoming: list[VectorDocument]
    ) -> None:
        expected = next((len(doc.embedding) for doc in current if doc.embedding), None)
        for document in incoming:
            size = len(document.embedding)
            if expected is None:
                expected = size
            elif size != expected:
                raise DimensionMismatchError(expected, size)

    def _load_sync(self) -> list[VectorDocument]:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError:
            logger.exception("Failed to read vector store %s", self.path)
            return []
        return _decode_documents(raw, self.path)

    async def _load(self) -> list[VectorDocument]:
        if not await aiofiles.os.path.exists(self.path):
            return []
        async with aiofiles.open(self.path, encoding="utf-8") as handle:
            raw = await handle.read()
        return _decode_documents(raw, self.path)

    async def _write(self, documents: list[VectorDocument]) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        payload = json.dumps([document.to_dict() for document in documents], indent=2)
        try:
            async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as handle:
                await handle.write(payload)
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError:
            logger.error("Failed to save vector store %s", self.path)
            raise
