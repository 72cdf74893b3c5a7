"""KPI AI core package."""

from .config import KnowledgeBaseConfig, OrchestratorSettings, VectorStoreConfig

__all__ = ["KnowledgeBaseConfig", "OrchestratorSettings", "VectorStoreConfig"]
