from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to this file's directory (the project root),
# not the working directory, so MCP clients launching the server from
# another cwd still pick it up.
_ENV_FILE = Path(__file__).resolve().parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(_ENV_FILE), case_sensitive=False)

    # Store
    database_url: str = Field(default="", validation_alias="DATABASE_URL")

    # Shared OpenAI credential.  EMBEDDING_API_KEY / LLM_API_KEY override it
    # per concern (e.g. a local embedding server with no key).
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")

    # ── Indexing: Embeddings ──────────────────────────────────────
    embedding_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="EMBEDDING_BASE_URL"
    )
    embedding_api_key: str | None = Field(default=None, validation_alias="EMBEDDING_API_KEY")
    embedding_model: str = Field(
        default="text-embedding-3-small", validation_alias="EMBEDDING_MODEL"
    )
    embedding_tokenizer_name: str = Field(
        default="cl100k_base", validation_alias="EMBEDDING_TOKENIZER_NAME"
    )
    # Texts per embedding API call.  The provider accepts more, but 100
    # keeps payloads small enough to stay well under request timeouts.
    embedding_batch_size: int = Field(default=100, validation_alias="EMBEDDING_BATCH_SIZE")
    # Max concurrent threads for embedding API calls.  4 is safe for the
    # lower OpenAI rate-limit tiers.
    embedding_max_workers: int = Field(default=4, validation_alias="EMBEDDING_MAX_WORKERS")

    # ── Indexing: LLM-assisted stages ─────────────────────────────
    llm_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="LLM_BASE_URL"
    )
    llm_api_key: str | None = Field(default=None, validation_alias="LLM_API_KEY")

    # ── Indexing: Chunking ────────────────────────────────────────
    # Smart chunking (structure + semantic/boundary splitting + context
    # headers).  When disabled the legacy paragraph chunker is used.
    enable_smart_chunking: bool = Field(default=True, validation_alias="ENABLE_SMART_CHUNKING")
    smart_chunk_structure: bool = Field(default=True, validation_alias="SMART_CHUNK_STRUCTURE")
    smart_chunk_semantic: bool = Field(default=True, validation_alias="SMART_CHUNK_SEMANTIC")
    smart_chunk_headers: bool = Field(default=True, validation_alias="SMART_CHUNK_HEADERS")
    smart_chunk_boundaries: bool = Field(default=True, validation_alias="SMART_CHUNK_BOUNDARIES")
    smart_chunk_model: str = Field(default="gpt-4o-mini", validation_alias="SMART_CHUNK_MODEL")
    chunk_target_size: int = Field(default=1500, validation_alias="CHUNK_TARGET_SIZE")
    chunk_min_size: int = Field(default=200, validation_alias="CHUNK_MIN_SIZE")
    chunk_max_size: int = Field(default=2500, validation_alias="CHUNK_MAX_SIZE")
    # Only applies to the fixed-size fallback split.
    chunk_overlap_percentage: int = Field(
        default=15, validation_alias="CHUNK_OVERLAP_PERCENTAGE"
    )
    semantic_batch_size: int = Field(default=10, validation_alias="SEMANTIC_BATCH_SIZE")

    # ── Indexing: Metadata enrichment ─────────────────────────────
    enable_metadata_generation: bool = Field(
        default=True, validation_alias="ENABLE_METADATA_GENERATION"
    )
    metadata_model: str = Field(default="gpt-4o-mini", validation_alias="METADATA_MODEL")
    metadata_concurrency: int = Field(default=5, validation_alias="METADATA_CONCURRENCY")
    metadata_batch_delay_ms: int = Field(
        default=200, validation_alias="METADATA_BATCH_DELAY_MS"
    )

    # ── Ingestion: Persistence ────────────────────────────────────
    chunk_insert_batch_size: int = Field(
        default=50, validation_alias="CHUNK_INSERT_BATCH_SIZE"
    )
    # The "mark complete" processing-log write is the only retried write.
    processing_log_retries: int = Field(default=3, validation_alias="PROCESSING_LOG_RETRIES")
    processing_log_retry_base_ms: int = Field(
        default=500, validation_alias="PROCESSING_LOG_RETRY_BASE_MS"
    )

    # ── Retrieval: Translation ────────────────────────────────────
    translation_model: str = Field(default="gpt-4o-mini", validation_alias="TRANSLATION_MODEL")
    default_document_language: str = Field(
        default="nl", validation_alias="DEFAULT_DOCUMENT_LANGUAGE"
    )

    # ── Retrieval: Search ─────────────────────────────────────────
    vector_search_top_k: int = Field(default=30, validation_alias="VECTOR_SEARCH_TOP_K")
    final_top_k: int = Field(default=8, validation_alias="FINAL_TOP_K")
    hybrid_similarity_threshold: float = Field(
        default=0.40, validation_alias="HYBRID_SIMILARITY_THRESHOLD"
    )
    # Stricter floor for the pure-vector fallback, which has no keyword
    # signal to compensate for weak semantic matches.
    vector_similarity_threshold: float = Field(
        default=0.45, validation_alias="VECTOR_SIMILARITY_THRESHOLD"
    )
    hybrid_vector_weight: float = Field(default=0.6, validation_alias="HYBRID_VECTOR_WEIGHT")
    hybrid_keyword_weight: float = Field(default=0.4, validation_alias="HYBRID_KEYWORD_WEIGHT")
    # Alternative phrasings searched when the primary search is thin.
    max_alternative_queries: int = Field(default=2, validation_alias="MAX_ALTERNATIVE_QUERIES")

    # ── Retrieval: Reranking ──────────────────────────────────────
    reranker_provider: str = Field(default="cohere", validation_alias="RERANKER_PROVIDER")
    reranker_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("RERANKER_API_KEY", "COHERE_API_KEY"),
    )
    reranker_model: str = Field(default="rerank-v3.5", validation_alias="RERANKER_MODEL")
    # Cohere bills per search unit; one unit covers a query with up to
    # 100 documents.
    reranker_cost_per_1k_searches: float = Field(
        default=1.0, validation_alias="RERANKER_COST_PER_1K_SEARCHES"
    )
    reranker_timeout: float = Field(default=30.0, validation_alias="RERANKER_TIMEOUT")

    # ── MCP Server ────────────────────────────────────────────────
    # "stdio" for desktop clients that launch the server as a subprocess,
    # "streamable-http" for hosted deployments.
    mcp_transport: str = Field(default="stdio", validation_alias="MCP_TRANSPORT")
    mcp_host: str = Field(default="0.0.0.0", validation_alias="MCP_HOST")
    mcp_port: int = Field(default=8765, validation_alias="MCP_PORT")
    # Bearer token required on streamable-http when set.
    mcp_auth_token: str | None = Field(default=None, validation_alias="MCP_AUTH_TOKEN")
    # Hard timeout (seconds) for a single tool call.
    mcp_tool_timeout: int = Field(default=120, validation_alias="MCP_TOOL_TIMEOUT")
    mcp_log_level: str = Field(default="INFO", validation_alias="MCP_LOG_LEVEL")


settings = Settings()
