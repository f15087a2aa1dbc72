from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """A candidate chunk returned by the store's search RPCs.

    ``similarity`` is the hybrid combined score (or the cosine similarity
    on the vector fallback) until reranking overwrites it with the
    reranker's relevance score.
    """

    chunk_id: UUID
    document_id: UUID
    filename: str
    file_path: str | None = None
    content: str
    page_number: int | None = None
    similarity: float

    # Section info pulled from the chunk's metadata blob.
    section_title: str | None = None
    section_path: list[str] = Field(default_factory=list)
    context_header: str | None = None

    # Hybrid search only.
    matched_terms: list[str] = Field(default_factory=list)


class CitationFile(BaseModel):
    name: str
    path: str | None = None


class CitationReference(BaseModel):
    pages: list[int]
    file: CitationFile
    section_title: str | None = None
    section_path: list[str] | None = None


class Citation(BaseModel):
    position: int
    preview: str
    references: list[CitationReference]
    relevance_score: float | None = None


class TranslationResult(BaseModel):
    original_query: str
    original_language: str
    translated_query: str
    target_language: str
    was_translated: bool
    cost: float = 0.0
    latency_ms: float = 0.0


class TenantInfo(BaseModel):
    id: str
    name: str
    is_active: bool
    document_language: str = "nl"


class RAGHealthCheck(BaseModel):
    healthy: bool
    document_count: int
    chunk_count: int
    error: str | None = None
