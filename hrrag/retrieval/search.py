"""Hybrid vector + keyword search against the chunk store.

High-level flow:
1. Embed the query text once.
2. Walk a chain of search strategies, returning the first that answers:
   - HybridRpcSearch: ``search_documents_enhanced`` (cosine similarity
     blended 0.6/0.4 with a full-text rank over content, keywords and
     alternative terms; similarity floor 0.40)
   - VectorRpcSearch: ``search_documents`` (cosine only; floor 0.45)
3. Every strategy failing raises ``SearchUnavailableError``.

Section info (title, breadcrumb path, context header) is lifted out of
the chunk's stored metadata blob for citations.
"""

from __future__ import annotations

import asyncio
import logging
import time
import warnings
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row

from config import settings
from hrrag.errors import SearchUnavailableError
from hrrag.indexing.embedder import embed_text
from hrrag.retrieval.models import SearchResult

logger = logging.getLogger(__name__)


@dataclass
class SearchOutcome:
    results: list[SearchResult]
    strategy: str
    tokens: int = 0
    cost: float = 0.0
    matched_terms: list[str] = field(default_factory=list)
    search_ms: float = 0.0
    failed: bool = False


def _section_info(metadata: dict[str, Any] | None) -> tuple[str | None, list[str], str | None]:
    metadata = metadata or {}
    raw_path = metadata.get("structurePath")
    path = [str(p) for p in raw_path] if isinstance(raw_path, list) else []
    title = metadata.get("section_title") or (path[-1] if path else None)
    header = metadata.get("contextHeader") or (f"[{' > '.join(path)}]" if path else None)
    return title, path, header


def _row_to_result(row: dict[str, Any], score_column: str) -> SearchResult:
    title, path, header = _section_info(row.get("metadata"))
    return SearchResult(
        chunk_id=row["chunk_id"],
        document_id=row["document_id"],
        filename=row["filename"],
        file_path=row.get("file_path"),
        content=row["content"],
        page_number=row.get("page_number"),
        similarity=float(row[score_column]),
        section_title=title,
        section_path=path,
        context_header=header,
        matched_terms=list(row.get("matched_terms") or []),
    )


# ── Search strategies ─────────────────────────────────────────


class SearchStrategy(Protocol):
    name: str

    async def search(
        self,
        conn: AsyncConnection,
        tenant_id: str,
        query_text: str,
        embedding: list[float],
        top_k: int,
    ) -> list[SearchResult]: ...


class HybridRpcSearch:
    name = "enhanced_hybrid"

    def __init__(
        self,
        threshold: float | None = None,
        vector_weight: float | None = None,
        keyword_weight: float | None = None,
    ) -> None:
        self.threshold = settings.hybrid_similarity_threshold if threshold is None else threshold
        self.vector_weight = settings.hybrid_vector_weight if vector_weight is None else vector_weight
        self.keyword_weight = (
            settings.hybrid_keyword_weight if keyword_weight is None else keyword_weight
        )

    async def search(self, conn, tenant_id, query_text, embedding, top_k):
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT * FROM search_documents_enhanced(
                    %(tenant_id)s, %(embedding)s::vector, %(query_text)s, %(top_k)s,
                    %(threshold)s, %(vector_weight)s, %(keyword_weight)s
                )
                """,
                {
                    "tenant_id": tenant_id,
                    "embedding": embedding,
                    "query_text": query_text,
                    "top_k": top_k,
                    "threshold": self.threshold,
                    "vector_weight": self.vector_weight,
                    "keyword_weight": self.keyword_weight,
                },
            )
            rows = await cur.fetchall()
        return [_row_to_result(row, "combined_score") for row in rows]


class VectorRpcSearch:
    name = "vector"

    def __init__(self, threshold: float | None = None) -> None:
        self.threshold = settings.vector_similarity_threshold if threshold is None else threshold

    async def search(self, conn, tenant_id, query_text, embedding, top_k):
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT * FROM search_documents(
                    %(tenant_id)s, %(embedding)s::vector, %(top_k)s, %(threshold)s
                )
                """,
                {
                    "tenant_id": tenant_id,
                    "embedding": embedding,
                    "top_k": top_k,
                    "threshold": self.threshold,
                },
            )
            rows = await cur.fetchall()
        return [_row_to_result(row, "similarity") for row in rows]


def default_strategies() -> list[SearchStrategy]:
    return [HybridRpcSearch(), VectorRpcSearch()]


# ── Public interface ──────────────────────────────────────────


async def run_search_chain(
    conn: AsyncConnection,
    tenant_id: str,
    query_text: str,
    top_k: int,
    strategies: Sequence[SearchStrategy],
) -> SearchOutcome:
    """Embed *query_text* once and return the first strategy that answers.

    Embedding failures propagate; the query path cannot run without a
    vector.
    """
    started = time.perf_counter()
    embedded = await asyncio.to_thread(embed_text, query_text)

    for position, strategy in enumerate(strategies):
        try:
            results = await strategy.search(
                conn, tenant_id, query_text, embedded.embedding, top_k
            )
        except psycopg.Error as exc:
            remaining = strategies[position + 1 :]
            if remaining:
                warnings.warn(
                    f"Search strategy '{strategy.name}' failed ({exc!r}), "
                    f"falling back to '{remaining[0].name}'.",
                    stacklevel=2,
                )
            else:
                logger.error("search strategy '%s' failed: %r", strategy.name, exc)
            continue

        matched = list(dict.fromkeys(term for r in results for term in r.matched_terms))
        if matched:
            logger.info("keyword matches: %s", matched)
        return SearchOutcome(
            results=results,
            strategy=strategy.name,
            tokens=embedded.tokens,
            cost=embedded.cost,
            matched_terms=matched,
            search_ms=(time.perf_counter() - started) * 1000,
        )

    raise SearchUnavailableError(
        f"All search strategies failed for tenant {tenant_id!r}: "
        + ", ".join(s.name for s in strategies),
        tokens=embedded.tokens,
        cost=embedded.cost,
    )


async def hybrid_search(
    conn: AsyncConnection,
    tenant_id: str,
    query_text: str,
    top_k: int | None = None,
    *,
    strategies: Sequence[SearchStrategy] | None = None,
) -> SearchOutcome:
    return await run_search_chain(
        conn,
        tenant_id,
        query_text,
        top_k or settings.vector_search_top_k,
        strategies if strategies is not None else default_strategies(),
    )


async def vector_search(
    conn: AsyncConnection,
    tenant_id: str,
    query_text: str,
    top_k: int | None = None,
) -> SearchOutcome:
    """Vector-only search, used for the supplemental alternative queries."""
    return await run_search_chain(
        conn,
        tenant_id,
        query_text,
        top_k or settings.vector_search_top_k // 2,
        [VectorRpcSearch()],
    )
