"""RetrievalEngine: top-level entry point for the query path.

Coordinates one retrieval request end to end:

  1. Tenant validation (document language lookup).
  2. Query translation into the corpus language.
  3. Rule-based expansion + alternative query generation.
  4. Primary hybrid search (falls back to vector search).
  5. Multi-query supplement when the primary search is thin.
  6. Reranking (or a plain top-k slice).
  7. Citation + context assembly and RAGDetails telemetry.

Only tenant validation and the primary search are request-fatal; every
other stage degrades to its documented fallback.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from pgvector.psycopg import register_vector_async
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool

from config import settings
from hrrag.errors import SearchUnavailableError
from hrrag.orchestration.models import (
    ContextResponse,
    RAGCostDetails,
    RAGDetails,
    RAGMergeStats,
    RAGQueryDetails,
    RAGRawSearchResult,
    RAGRerankingDetails,
    RAGRerankingResultItem,
    RAGSearchDetails,
    RAGSearchQuery,
    RAGTimingDetails,
    TranslationDetails,
)
from hrrag.retrieval.citations import build_citations, build_context_text
from hrrag.retrieval.expander import (
    DUTCH_HR_TABLES,
    QueryExpansionTables,
    expand_query,
    expansion_terms,
    generate_alternative_queries,
)
from hrrag.retrieval.merger import (
    MergeKey,
    QueryResults,
    content_prefix_key,
    merge_and_rank_results,
    merge_stats,
)
from hrrag.retrieval.models import RAGHealthCheck, SearchResult, TranslationResult
from hrrag.retrieval.reranker import RerankOutcome, is_reranking_enabled, rerank_results
from hrrag.retrieval.search import SearchOutcome, SearchStrategy, hybrid_search, vector_search
from hrrag.retrieval.tenants import check_rag_health, validate_tenant
from hrrag.retrieval.translator import (
    HR_LANGUAGE_PROFILES,
    LanguageProfiles,
    translate_query_optimized,
)

logger = logging.getLogger(__name__)

RAW_PREVIEW_CHARS = 200


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _raw_results(results: list[SearchResult]) -> list[RAGRawSearchResult]:
    return [
        RAGRawSearchResult(
            chunk_id=r.chunk_id,
            filename=r.filename,
            similarity=r.similarity,
            page_number=r.page_number,
            content=r.content[:RAW_PREVIEW_CHARS],
            section_title=r.section_title,
        )
        for r in results
    ]


def _reranking_details(
    before: list[SearchResult], outcome: RerankOutcome | None, final: list[SearchResult]
) -> RAGRerankingDetails:
    if outcome is None or not outcome.enabled:
        return RAGRerankingDetails(
            enabled=False,
            input_documents=len(before),
            output_documents=len(final),
            latency_ms=outcome.latency_ms if outcome else 0.0,
        )
    positions = {r.chunk_id: (i, r.similarity) for i, r in enumerate(before)}
    items = []
    for after_position, result in enumerate(final):
        before_position, before_score = positions.get(result.chunk_id, (-1, 0.0))
        items.append(
            RAGRerankingResultItem(
                filename=result.filename,
                page_number=result.page_number,
                before_score=before_score,
                after_score=result.similarity,
                position_before=before_position,
                position_after=after_position,
            )
        )
    return RAGRerankingDetails(
        enabled=True,
        model=outcome.model,
        input_documents=len(before),
        output_documents=len(final),
        latency_ms=outcome.latency_ms,
        cost=outcome.cost,
        results=items,
    )


class RetrievalEngine:
    """Runs the query path against a pooled Postgres connection.

    Owns:
      - Connection pool management.
      - Stage sequencing, fan-out of supplemental queries, telemetry.

    Does NOT own:
      - Search SQL (``retrieval/search.py``).
      - Reranking calls (``retrieval/reranker.py``).
      - Expansion/translation tables, which are injected.
    """

    def __init__(
        self,
        *,
        expansion_tables: QueryExpansionTables = DUTCH_HR_TABLES,
        language_profiles: LanguageProfiles = HR_LANGUAGE_PROFILES,
        merge_key: MergeKey = content_prefix_key,
        search_strategies: Sequence[SearchStrategy] | None = None,
    ) -> None:
        self._pool: AsyncConnectionPool | None = None
        self.expansion_tables = expansion_tables
        self.language_profiles = language_profiles
        self.merge_key = merge_key
        self.search_strategies = search_strategies

    # ── Pool lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        """Open the connection pool.  Called lazily by the first request."""
        if self._pool is not None:
            return
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for retrieval.")
        self._pool = AsyncConnectionPool(
            conninfo=settings.database_url,
            min_size=2,
            max_size=10,
            open=False,
            kwargs={"autocommit": True},
        )
        await self._pool.open()

    async def stop(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _acquire_connection(self) -> AsyncConnection:
        """Get a pooled connection with pgvector types registered."""
        if self._pool is None:
            await self.start()
        assert self._pool is not None
        conn = await self._pool.getconn()
        await register_vector_async(conn)
        return conn

    async def _release_connection(self, conn: AsyncConnection) -> None:
        if self._pool is not None:
            await self._pool.putconn(conn)

    # ── Public entry points ───────────────────────────────────

    async def retrieve_context(
        self,
        tenant_id: str,
        question: str,
        top_k: int | None = None,
        skip_tenant_validation: bool = False,
    ) -> ContextResponse:
        conn = await self._acquire_connection()
        try:
            return await self.run(
                conn,
                tenant_id,
                question,
                top_k=top_k,
                skip_tenant_validation=skip_tenant_validation,
            )
        finally:
            await self._release_connection(conn)

    async def check_rag_health(self, tenant_id: str) -> RAGHealthCheck:
        conn = await self._acquire_connection()
        try:
            return await check_rag_health(conn, tenant_id)
        finally:
            await self._release_connection(conn)

    # ── Pipeline ──────────────────────────────────────────────

    async def run(
        self,
        conn: AsyncConnection,
        tenant_id: str,
        question: str,
        *,
        top_k: int | None = None,
        skip_tenant_validation: bool = False,
    ) -> ContextResponse:
        """Execute the query pipeline on an already-acquired connection."""
        total_started = time.perf_counter()
        top_k = top_k or settings.final_top_k
        vector_top_k = settings.vector_search_top_k
        reranking_enabled = is_reranking_enabled()
        timing = RAGTimingDetails()

        # ── Phase 1: Tenant ───────────────────────────────────
        document_language = settings.default_document_language
        if not skip_tenant_validation:
            tenant = await validate_tenant(conn, tenant_id)
            document_language = tenant.document_language

        # ── Phase 2: Translation ──────────────────────────────
        translation_started = time.perf_counter()
        translation: TranslationResult = await translate_query_optimized(
            question, document_language, profiles=self.language_profiles
        )
        search_query = translation.translated_query if translation.was_translated else question
        timing.translation_ms = _elapsed_ms(translation_started)

        # ── Phase 3: Expansion ────────────────────────────────
        alternatives = generate_alternative_queries(search_query, self.expansion_tables)
        expanded = expand_query(search_query, self.expansion_tables)
        logger.info(
            "query %r -> expanded %r, %d alternatives", question, expanded, len(alternatives)
        )

        # ── Phase 4: Primary search ───────────────────────────
        search_started = time.perf_counter()
        primary: SearchOutcome = await hybrid_search(
            conn, tenant_id, expanded, vector_top_k, strategies=self.search_strategies
        )
        search_queries = [
            RAGSearchQuery(
                query=expanded,
                tokens=primary.tokens,
                cost=primary.cost,
                results_count=len(primary.results),
            )
        ]
        raw_results = _raw_results(primary.results)
        merged = primary.results
        embedding_tokens = primary.tokens
        embedding_cost = primary.cost
        search_type = primary.strategy
        stats: RAGMergeStats | None = None

        # ── Phase 5: Multi-query supplement ───────────────────
        if len(merged) < vector_top_k / 2 and alternatives:
            supplemental = alternatives[: settings.max_alternative_queries]
            outcomes = await asyncio.gather(
                *(
                    self._supplemental_search(conn, tenant_id, query, vector_top_k // 2)
                    for query in supplemental
                )
            )
            query_results = [QueryResults(query=expanded, results=merged)]
            for query, outcome in zip(supplemental, outcomes):
                query_results.append(QueryResults(query=query, results=outcome.results))
                raw_results.extend(_raw_results(outcome.results))
                search_queries.append(
                    RAGSearchQuery(
                        query=query,
                        tokens=outcome.tokens,
                        cost=outcome.cost,
                        results_count=len(outcome.results),
                        failed=outcome.failed,
                    )
                )
                embedding_tokens += outcome.tokens
                embedding_cost += outcome.cost
            merged = merge_and_rank_results(query_results, vector_top_k, key=self.merge_key)
            merge = merge_stats(query_results, merged, key=self.merge_key)
            stats = RAGMergeStats(
                total_before_merge=merge.total_before_merge,
                total_after_merge=merge.total_after_merge,
                duplicates_removed=merge.duplicates_removed,
            )
            search_type = "multi_query"
        timing.search_ms = _elapsed_ms(search_started)

        # ── Phase 6: Reranking ────────────────────────────────
        rerank_started = time.perf_counter()
        before_rerank = merged
        rerank_outcome: RerankOutcome | None = None
        if merged:
            rerank_outcome = await rerank_results(search_query, merged, top_k)
            final = rerank_outcome.results
        else:
            final = []
        timing.reranking_ms = _elapsed_ms(rerank_started)
        rerank_cost = rerank_outcome.cost if rerank_outcome else 0.0

        # ── Phase 7: Assembly ─────────────────────────────────
        citations = build_citations(final)
        context_text = build_context_text(final)
        timing.total_ms = _elapsed_ms(total_started)

        rag_details = RAGDetails(
            query=RAGQueryDetails(
                original=question,
                search_query=search_query,
                expanded=expanded if expanded != search_query else None,
                expansion_terms=expansion_terms(search_query, self.expansion_tables),
                alternative_queries=alternatives,
                translation=TranslationDetails(
                    original_language=translation.original_language,
                    translated_query=translation.translated_query,
                    target_language=translation.target_language,
                    was_translated=translation.was_translated,
                    translation_cost=translation.cost,
                    translation_latency_ms=translation.latency_ms,
                ),
            ),
            search=RAGSearchDetails(
                type=search_type,
                vector_top_k=vector_top_k,
                final_top_k=top_k,
                reranking_enabled=reranking_enabled,
                similarity_threshold=settings.hybrid_similarity_threshold,
                vector_weight=settings.hybrid_vector_weight,
                keyword_weight=settings.hybrid_keyword_weight,
                queries=search_queries,
                raw_results=raw_results,
                matched_terms=primary.matched_terms,
                merge_stats=stats,
            ),
            reranking=_reranking_details(before_rerank, rerank_outcome, final),
            costs=RAGCostDetails(
                embedding=embedding_cost,
                reranking=rerank_cost,
                translation=translation.cost,
                total=embedding_cost + rerank_cost + translation.cost,
            ),
            timing=timing,
        )

        logger.info(
            "retrieved %d chunks for tenant %s via %s (%.0fms, $%.6f)",
            len(final), tenant_id, search_type, timing.total_ms, rag_details.costs.total,
        )
        return ContextResponse(
            context_text=context_text,
            citations=citations,
            embedding_tokens=embedding_tokens,
            embedding_cost=embedding_cost,
            rag_details=rag_details,
        )

    async def _supplemental_search(
        self, conn: AsyncConnection, tenant_id: str, query: str, top_k: int
    ) -> SearchOutcome:
        """Vector search for one alternative query.

        A failed query yields no results and ``failed=True`` but keeps the
        embedding usage already spent on it.
        """
        try:
            return await vector_search(conn, tenant_id, query, top_k)
        except SearchUnavailableError as exc:
            logger.warning("supplemental query %r failed: %r", query, exc)
            return SearchOutcome(
                results=[], strategy="vector", tokens=exc.tokens, cost=exc.cost, failed=True
            )
        except Exception as exc:
            logger.warning("supplemental query %r failed: %r", query, exc)
            return SearchOutcome(results=[], strategy="vector", failed=True)
