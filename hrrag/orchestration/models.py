"""Orchestration-layer Pydantic models.

``RAGDetails`` is the per-request audit record: every stage's inputs,
outputs, cost and latency.  It is assembled once, after the response
is built, and frozen.  Retrieval-layer models (SearchResult, Citation)
are imported, never redefined.
"""

from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hrrag.retrieval.models import Citation


# ── Query stage ───────────────────────────────────────────────────


class TranslationDetails(BaseModel):
    original_language: str
    translated_query: str
    target_language: str
    was_translated: bool
    translation_cost: float
    translation_latency_ms: float


class RAGQueryDetails(BaseModel):
    original: str
    search_query: str
    expanded: str | None = None
    expansion_terms: list[str] = Field(default_factory=list)
    alternative_queries: list[str] = Field(default_factory=list)
    translation: TranslationDetails | None = None


# ── Search stage ──────────────────────────────────────────────────


class RAGSearchQuery(BaseModel):
    query: str
    tokens: int
    cost: float
    results_count: int
    failed: bool = False


class RAGRawSearchResult(BaseModel):
    chunk_id: UUID
    filename: str
    similarity: float
    page_number: int | None = None
    content: str  # first 200 characters
    section_title: str | None = None


class RAGMergeStats(BaseModel):
    total_before_merge: int
    total_after_merge: int
    duplicates_removed: int


class RAGSearchDetails(BaseModel):
    type: Literal["enhanced_hybrid", "multi_query", "vector"]
    vector_top_k: int
    final_top_k: int
    reranking_enabled: bool
    similarity_threshold: float
    vector_weight: float
    keyword_weight: float
    queries: list[RAGSearchQuery]
    raw_results: list[RAGRawSearchResult]
    matched_terms: list[str] = Field(default_factory=list)
    merge_stats: RAGMergeStats | None = None


# ── Reranking stage ───────────────────────────────────────────────


class RAGRerankingResultItem(BaseModel):
    filename: str
    page_number: int | None = None
    before_score: float
    after_score: float
    position_before: int
    position_after: int


class RAGRerankingDetails(BaseModel):
    enabled: bool
    model: str | None = None
    input_documents: int
    output_documents: int
    latency_ms: float = 0.0
    cost: float = 0.0
    results: list[RAGRerankingResultItem] = Field(default_factory=list)


# ── Totals ────────────────────────────────────────────────────────


class RAGCostDetails(BaseModel):
    embedding: float
    reranking: float
    translation: float
    total: float


class RAGTimingDetails(BaseModel):
    """Milliseconds per phase.  ``search_ms`` includes query embedding."""

    translation_ms: float = 0.0
    search_ms: float = 0.0
    reranking_ms: float = 0.0
    total_ms: float = 0.0


class RAGDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: RAGQueryDetails
    search: RAGSearchDetails
    reranking: RAGRerankingDetails
    costs: RAGCostDetails
    timing: RAGTimingDetails


class ContextResponse(BaseModel):
    """Top-level retrieval output handed to the answer-generation layer."""

    context_text: str
    citations: list[Citation]
    embedding_tokens: int
    embedding_cost: float
    rag_details: RAGDetails

    @property
    def is_empty(self) -> bool:
        return not self.citations
