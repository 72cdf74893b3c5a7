"""Embedding models used to index and query the knowledge base."""

from __future__ import annotations

from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings


def normalize_for_embedding(text: str) -> str:
    return text.replace("\r\n", " ").replace("\n", " ")


class HashingEmbedder(Embeddings):
    """Deterministic token-hashing embedder that needs no model calls.

    Used offline and in tests; production deployments use
    `create_openai_embedder`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            vector[idx] += -1.0 if digest[4] % 2 else 1.0

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def create_openai_embedder(model: str = "text-embedding-3-small", **kwargs: object) -> Embeddings:
    from langchain_openai import OpenAIEmbeddings

    return OpenAIEmbeddings(model=model, **kwargs)
