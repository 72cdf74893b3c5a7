"""Fixed-size character chunking."""

from __future__ import annotations


class CharacterChunker:
    """Splits text into consecutive windows of at most `chunk_size` characters."""

    def __init__(self, chunk_size: int = 1000) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.chunk_size = chunk_size

    def chunk(self, text: str) -> list[str]:
        if not text:
            return []
        return [
            text[start : start + self.chunk_size]
            for start in range(0, len(text), self.chunk_size)
        ]
