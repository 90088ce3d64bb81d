"""Configuration models for the knowledge base system."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingConfig(BaseModel):
    """Configures source-type-aware chunking behavior.

    Sizes are measured in characters; token counting is avoided on the
    ingestion path.
    """

    document_chars: int = Field(default=1500, ge=100)
    web_chars: int = Field(default=1200, ge=100)
    video_chars: int = Field(default=1200, ge=100)
    audio_chars: int = Field(default=3000, ge=100)
    min_chunk_chars: int = Field(default=50, ge=1)
    transcript_soft_floor: float = Field(default=0.7, gt=0.0, le=1.0)


class IndexingConfig(BaseModel):
    """Configures embedding fan-out and vector upsert batching."""

    upsert_batch_size: int = Field(default=100, ge=1)
    embed_concurrency: int = Field(default=8, ge=1)


class RetrievalConfig(BaseModel):
    """Configures similarity search and diverse-context selection."""

    top_k: int = Field(default=15, ge=1)
    filtered_top_k: int = Field(default=30, ge=1)
    min_match_chars: int = Field(default=50, ge=0)
    max_context_tokens: int = Field(default=5000, ge=1)
    avg_tokens_per_chunk: int = Field(default=375, ge=1)
    simple_max_chunks: int = Field(default=5, ge=1)
    complex_max_chunks: int = Field(default=10, ge=1)
    simple_floor_share: int = Field(default=1, ge=1)
    complex_floor_share: int = Field(default=2, ge=1)
    simple_question_max_chars: int = Field(default=50, ge=1)


class PromptConfig(BaseModel):
    """Configures completion requests issued by the prompt composer."""

    factual_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    synthesis_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)


class Settings(BaseSettings):
    """Process-level settings loaded from the environment or `.env`."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Server-side provider key; enables the metered credits path.
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    llm_provider: str = "openai"  # openai|anthropic|offline
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-large"

    vector_backend: str = "memory"  # memory|faiss
    ledger_backend: str = "memory"  # memory|sqlite
    ledger_path: str = "knowledge_qa_credits.db"

    log_level: str = "INFO"
    log_file: str | None = None

    credit_cost_overrides: dict[str, int] = Field(default_factory=dict)
    # Bearer token -> user id; token verification itself is external.
    auth_tokens: dict[str, str] = Field(default_factory=dict)

    def server_key(self) -> str | None:
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        if self.llm_provider == "offline":
            return self.openai_api_key or "offline"
        return self.openai_api_key
