"""Multi-source knowledge base with grounded question answering and credit metering."""

from .config import ChunkingConfig, PromptConfig, RetrievalConfig, Settings

__all__ = ["ChunkingConfig", "PromptConfig", "RetrievalConfig", "Settings"]
