"""Process-wide settings loaded from environment / ``.env``.

These are the *defaults* an engine starts from.  Everything here can be
overridden per engine (``ContextEngineConfig``) and, for chunking and
asset processing, per ``ingest`` call.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide settings, populated from ``CONTEXT_ENGINE_*`` env vars or ``.env``."""

    # Chunking
    chunk_size: int = Field(default=512, description="Maximum tokens per chunk")
    chunk_overlap: int = Field(default=50, description="Tokens carried over between consecutive chunks")
    min_chunk_size: int = Field(default=24, description="Chunks below this token count are merged")
    tokenizer_encoding: str = Field(default="o200k_base", description="tiktoken encoding used for counting")

    # Embedding / asset processing
    embedding_concurrency: int = 4
    embedding_batch_size: int = 32
    asset_concurrency: int = 4

    # Retrieval
    default_top_k: int = 8

    # Observability
    debug: bool = Field(default=False, description="Buffer debug events for replay")
    debug_buffer_size: int = 1000

    # LLM-backed extractors
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for a local server)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="Chat model used by LLM extractors")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible API. Leave empty to use OpenAI cloud, "
            "e.g. 'http://localhost:8000/v1' for a local vLLM server."
        ),
    )
    transcription_model: str = "whisper-1"

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "context_engine"

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    model_config = SettingsConfigDict(
        env_prefix="CONTEXT_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Singleton: import `settings` wherever needed.
settings = Settings()
