"""Text extraction from uploaded document buffers."""

from __future__ import annotations

import csv
import io
import json
import logging
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Any

logger = logging.getLogger(__name__)


class Parser(ABC):
    """Turns a raw file buffer into plain text."""

    extensions: tuple[str, ...] = ()
    mime_markers: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, data: bytes) -> str:
        """Extract text from `data`."""

    def accepts(self, mime_type: str, extension: str) -> bool:
        mime_type = mime_type.lower()
        return extension in self.extensions or any(
            marker in mime_type for marker in self.mime_markers
        )


class TextParser(Parser):
    extensions = (".txt", ".log", ".md", ".markdown")
    mime_markers = ("text/plain", "text/markdown")

    def parse(self, data: bytes) -> str:
        return data.decode("utf-8", errors="replace")


class CsvParser(Parser):
    """Flattens rows to tab-separated lines."""

    extensions = (".csv",)
    mime_markers = ("text/csv",)

    def parse(self, data: bytes) -> str:
        reader = csv.reader(io.StringIO(data.decode("utf-8", errors="replace")))
        return "\n".join("\t".join(row) for row in reader)


class JsonParser(Parser):
    extensions = (".json",)
    mime_markers = ("application/json",)

    def parse(self, data: bytes) -> str:
        payload: Any = json.loads(data.decode("utf-8"))
        if isinstance(payload, (dict, list)):
            return json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)
        return str(payload)


class ParserRegistry:
    """Picks a parser by MIME type or file extension."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: list[Parser] = []
        for parser in parsers or [CsvParser(), JsonParser(), TextParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        self._parsers.append(parser)

    def parse_bytes(self, data: bytes, mime_type: str = "", file_name: str = "") -> str:
        """Extract text, or return "" for unsupported formats."""
        extension = PurePath(file_name).suffix.lower()
        for parser in self._parsers:
            if parser.accepts(mime_type, extension):
                return parser.parse(data)
        if mime_type.lower().startswith("text/"):
            return TextParser().parse(data)
        logger.warning("Unsupported file type: %s (%s)", mime_type or "unknown", file_name)
        return ""
