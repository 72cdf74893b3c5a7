"""Shared domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

CallStatus = Literal["pending", "success", "error", "timeout"]
Priority = Literal["low", "normal", "high"]


@dataclass(slots=True)
class ServiceCallRecord:
    """One orchestrated invocation, kept in the call history for auditing."""

    id: str
    service_name: str
    method: str
    params: dict[str, Any]
    timestamp: str
    status: CallStatus = "pending"
    user_id: str | None = None
    priority: Priority = "normal"
    cached: bool = False
    duration_ms: float | None = None
    error: str | None = None
    result: Any = None


@dataclass(slots=True)
class CacheEntry:
    """A cached service result with its own time-to-live."""

    data: Any
    timestamp: float
    ttl_ms: float

    def is_valid(self, now: float) -> bool:
        return (now - self.timestamp) * 1000.0 <= self.ttl_ms


@dataclass(slots=True)
class ServiceResponse:
    """Uniform envelope returned by every orchestrated call."""

    success: bool
    duration_ms: float
    call_id: str
    data: Any = None
    error: str | None = None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "duration_ms": self.duration_ms,
            "call_id": self.call_id,
        }
        if self.success:
            payload["data"] = self.data
            payload["cached"] = self.cached
        else:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class UsageMetrics:
    total_calls: int
    success_rate: float
    average_response_time_ms: float
    error_count: int
    cache_hit_rate: float
    cost_estimate_usd: float
    service_calls: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class VectorDocument:
    """An embedded text chunk stored in the vector store."""

    id: str
    source_id: str
    content: str
    metadata: dict[str, Any]
    embedding: list[float]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "VectorDocument":
        return cls(
            id=str(payload["id"]),
            source_id=str(payload.get("source_id", payload.get("sourceId", ""))),
            content=str(payload.get("content", "")),
            metadata=dict(payload.get("metadata") or {}),
            embedding=[float(value) for value in payload.get("embedding", [])],
        )


@dataclass(slots=True)
class ScoredDocument:
    """A search hit with its cosine similarity."""

    document: VectorDocument
    score: float
    rank: int = 0
