"""Ingestion-layer data contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStatus(str, Enum):
    """Phases recorded in ``document_processing_logs``."""

    UPLOADING = "uploading"
    PARSING = "parsing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentRecord(BaseModel):
    id: UUID
    tenant_id: str
    filename: str
    file_path: str | None = None
    total_pages: int | None = None
    total_chunks: int | None = None
    processing_status: DocumentStatus = DocumentStatus.PENDING
    processing_error: str | None = None
    created_at: datetime | None = None


class ProcessingResult(BaseModel):
    success: bool
    document_id: UUID | None = None
    chunks_created: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    metadata_cost: float = 0.0
    chunking_cost: float = 0.0
    error: str | None = None


# accumulated while a document moves through the pipeline; written once on completion
@dataclass
class ProcessingStats:
    total_pages: int = 0
    chunks_created: int = 0
    structures_detected: int = 0
    chunk_sizes: list[int] = field(default_factory=list)
    metadata_generated: bool = False
    keywords_count: int = 0
    topics_count: int = 0
    chunking_tokens: int = 0
    chunking_cost: float = 0.0
    metadata_tokens: int = 0
    metadata_cost: float = 0.0
    embedding_tokens: int = 0
    embedding_cost: float = 0.0
    parsing_duration_ms: int = 0
    chunking_duration_ms: int = 0
    metadata_duration_ms: int = 0
    embedding_duration_ms: int = 0
    total_duration_ms: int = 0

    @property
    def total_cost(self) -> float:
        return self.embedding_cost + self.metadata_cost + self.chunking_cost

    @property
    def avg_chunk_size(self) -> int:
        return round(sum(self.chunk_sizes) / len(self.chunk_sizes)) if self.chunk_sizes else 0

    @property
    def min_chunk_size(self) -> int:
        return min(self.chunk_sizes, default=0)

    @property
    def max_chunk_size(self) -> int:
        return max(self.chunk_sizes, default=0)
