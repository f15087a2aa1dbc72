"""Unit tests for the RetrievalEngine query pipeline.

Every stage the engine calls is patched at ``hrrag.orchestration.engine``
so the tests exercise sequencing, fallbacks and cost accounting with
no database or external API.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

import pytest
from pydantic import ValidationError

from config import settings
from hrrag.errors import SearchUnavailableError
from hrrag.retrieval.models import SearchResult, TenantInfo, TranslationResult
from hrrag.retrieval.reranker import RerankOutcome
from hrrag.retrieval.search import SearchOutcome

ENGINE = "hrrag.orchestration.engine"


@contextmanager
def _override_settings(**overrides: Any) -> Iterator[None]:
    original: dict[str, Any] = {}
    for key, value in overrides.items():
        original[key] = getattr(settings, key)
        setattr(settings, key, value)
    try:
        yield
    finally:
        for key, value in original.items():
            setattr(settings, key, value)


_COUNTER = 0


def _result(content: str, similarity: float, page_number: int = 1) -> SearchResult:
    global _COUNTER
    _COUNTER += 1
    return SearchResult(
        chunk_id=UUID(int=_COUNTER),
        document_id=UUID(int=99),
        filename="Betaaldata 2025.pdf",
        file_path="acme/Betaaldata 2025.pdf",
        content=content,
        page_number=page_number,
        similarity=similarity,
        section_title="Betaaldata",
    )


def _untranslated(query: str, language: str = "nl") -> TranslationResult:
    return TranslationResult(
        original_query=query,
        original_language=language,
        translated_query=query,
        target_language=language,
        was_translated=False,
    )


def _passthrough_rerank(enabled: bool = False, cost: float = 0.0) -> AsyncMock:
    async def _rerank(query: str, documents: list[SearchResult], top_n: int | None = None):
        return RerankOutcome(results=documents[:top_n], enabled=enabled, cost=cost, model="m")

    return AsyncMock(side_effect=_rerank)


@contextmanager
def _patched_pipeline(
    *,
    primary: SearchOutcome,
    supplemental: list[Any] | None = None,
    translation: TranslationResult | None = None,
    rerank: AsyncMock | None = None,
    tenant: TenantInfo | Exception | None = None,
) -> Iterator[dict[str, MagicMock]]:
    tenant = tenant or TenantInfo(id="acme", name="Acme BV", is_active=True)
    mocks = {
        "validate_tenant": AsyncMock(
            side_effect=tenant if isinstance(tenant, Exception) else None,
            return_value=tenant,
        ),
        "translate_query_optimized": AsyncMock(
            side_effect=lambda q, lang, profiles=None: translation or _untranslated(q, lang)
        ),
        "hybrid_search": AsyncMock(return_value=primary),
        "vector_search": AsyncMock(side_effect=supplemental or []),
        "rerank_results": rerank or _passthrough_rerank(),
        "is_reranking_enabled": MagicMock(return_value=False),
    }
    patches = [patch(f"{ENGINE}.{name}", mock) for name, mock in mocks.items()]
    for p in patches:
        p.start()
    try:
        with _override_settings(vector_search_top_k=30, final_top_k=8, max_alternative_queries=2):
            yield mocks
    finally:
        for p in reversed(patches):
            p.stop()


# ---------------------------------------------------------------------------
# Query pipeline
# ---------------------------------------------------------------------------


class TestInformalSalaryQuestion:
    """"wanneer krijg ik geld" against a tenant holding Betaaldata 2025.pdf."""

    @pytest.mark.asyncio
    async def test_multi_query_supplement(self):
        from hrrag.orchestration.engine import RetrievalEngine

        betaaldata = _result("De betaaldata voor 2025 zijn: 24 januari, 25 februari ...", 0.52)
        other = _result("Reiskostenvergoeding wordt maandelijks uitbetaald ...", 0.41, 2)
        primary = SearchOutcome(
            results=[betaaldata, other], strategy="enhanced_hybrid", tokens=12, cost=0.0002
        )
        alt_one = SearchOutcome(results=[betaaldata], strategy="vector", tokens=5, cost=0.0001)
        alt_two = SearchOutcome(
            results=[betaaldata.model_copy(update={"similarity": 0.71})],
            strategy="vector",
            tokens=6,
            cost=0.0001,
        )

        with _patched_pipeline(primary=primary, supplemental=[alt_one, alt_two]) as mocks:
            response = await RetrievalEngine().run(MagicMock(), "acme", "wanneer krijg ik geld")

        expanded = mocks["hybrid_search"].await_args.args[2]
        assert expanded.startswith("wanneer krijg ik geld ")
        assert "betaaldata" in expanded

        supplemental_queries = [c.args[2] for c in mocks["vector_search"].await_args_list]
        assert supplemental_queries == [
            "betaaldata salaris uitbetaling",
            "betaaldata 2025 salarisbetaling",
        ]
        assert all(c.args[3] == 15 for c in mocks["vector_search"].await_args_list)

        details = response.rag_details
        assert details.search.type == "multi_query"
        assert details.search.merge_stats.total_before_merge == 4
        assert details.search.merge_stats.total_after_merge == 2
        assert len(details.search.queries) == 3

        assert response.citations[0].references[0].file.name == "Betaaldata 2025.pdf"
        assert response.citations[0].relevance_score == 0.71
        assert response.context_text.startswith(
            "[Document 1: Betaaldata 2025.pdf | page 1 | Betaaldata]\n"
        )

    @pytest.mark.asyncio
    async def test_cost_accounting(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(
            results=[_result("a", 0.5)], strategy="enhanced_hybrid", tokens=10, cost=0.0002
        )
        alt = SearchOutcome(results=[_result("b", 0.45)], strategy="vector", tokens=4, cost=0.0001)
        translation = TranslationResult(
            original_query="When do I get my money?",
            original_language="en",
            translated_query="wanneer krijg ik geld",
            target_language="nl",
            was_translated=True,
            cost=0.00003,
        )
        with _patched_pipeline(
            primary=primary,
            supplemental=[alt, alt],
            translation=translation,
            rerank=_passthrough_rerank(enabled=True, cost=0.002),
        ):
            response = await RetrievalEngine().run(MagicMock(), "acme", "When do I get my money?")

        costs = response.rag_details.costs
        assert costs.embedding == pytest.approx(0.0004)
        assert costs.translation == pytest.approx(0.00003)
        assert costs.reranking == pytest.approx(0.002)
        assert costs.total == pytest.approx(0.0004 + 0.00003 + 0.002)
        assert response.embedding_cost == pytest.approx(0.0004)
        assert response.embedding_tokens == 18

    @pytest.mark.asyncio
    async def test_failed_supplemental_query_is_recorded(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[_result("a", 0.5)], strategy="enhanced_hybrid", tokens=10)
        alt = SearchOutcome(results=[_result("b", 0.45)], strategy="vector", tokens=4, cost=0.0001)
        with _patched_pipeline(primary=primary, supplemental=[alt, RuntimeError("timeout")]):
            response = await RetrievalEngine().run(MagicMock(), "acme", "wanneer krijg ik geld")

        queries = response.rag_details.search.queries
        assert [q.failed for q in queries] == [False, False, True]
        assert queries[2].cost == 0.0
        assert queries[2].results_count == 0
        assert len(response.citations) == 2

    @pytest.mark.asyncio
    async def test_failed_supplemental_query_keeps_embedding_cost(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(
            results=[_result("a", 0.5)], strategy="enhanced_hybrid", tokens=10, cost=0.0002
        )
        failures = [
            SearchUnavailableError("vector RPC down", tokens=4, cost=0.0001),
            SearchUnavailableError("vector RPC down", tokens=5, cost=0.0001),
        ]
        with _patched_pipeline(primary=primary, supplemental=failures):
            response = await RetrievalEngine().run(MagicMock(), "acme", "wanneer krijg ik geld")

        queries = response.rag_details.search.queries
        assert [q.failed for q in queries] == [False, True, True]
        assert [q.tokens for q in queries] == [10, 4, 5]
        assert response.embedding_tokens == 19
        assert response.embedding_cost == pytest.approx(0.0004)
        assert response.rag_details.costs.embedding == pytest.approx(0.0004)
        assert len(response.citations) == 1


class TestPipelineBranches:
    @pytest.mark.asyncio
    async def test_enough_primary_results_skip_supplement(self):
        from hrrag.orchestration.engine import RetrievalEngine

        results = [_result(f"chunk {i}", 0.9 - i / 100) for i in range(20)]
        primary = SearchOutcome(results=results, strategy="enhanced_hybrid", tokens=10)
        with _patched_pipeline(primary=primary) as mocks:
            response = await RetrievalEngine().run(MagicMock(), "acme", "wanneer krijg ik geld")

        mocks["vector_search"].assert_not_awaited()
        assert response.rag_details.search.type == "enhanced_hybrid"
        assert response.rag_details.search.merge_stats is None
        assert len(response.citations) == 8

    @pytest.mark.asyncio
    async def test_vector_fallback_reported(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[_result("a", 0.6)] * 20, strategy="vector", tokens=3)
        with _patched_pipeline(primary=primary):
            response = await RetrievalEngine().run(MagicMock(), "acme", "hallo wereld")
        assert response.rag_details.search.type == "vector"

    @pytest.mark.asyncio
    async def test_translated_query_drives_search_and_rerank(self):
        from hrrag.orchestration.engine import RetrievalEngine

        translation = TranslationResult(
            original_query="Ich bin krank, was muss ich tun?",
            original_language="de",
            translated_query="Ik ben ziek, wat moet ik doen?",
            target_language="nl",
            was_translated=True,
            cost=0.00002,
        )
        primary = SearchOutcome(results=[_result("Ziekmelding ...", 0.6)], strategy="enhanced_hybrid")
        with _patched_pipeline(
            primary=primary, supplemental=[primary, primary], translation=translation
        ) as mocks:
            response = await RetrievalEngine().run(
                MagicMock(), "acme", "Ich bin krank, was muss ich tun?"
            )

        assert mocks["hybrid_search"].await_args.args[2].startswith("Ik ben ziek, wat moet ik doen?")
        assert mocks["rerank_results"].await_args.args[0] == "Ik ben ziek, wat moet ik doen?"
        query = response.rag_details.query
        assert query.original == "Ich bin krank, was muss ich tun?"
        assert query.search_query == "Ik ben ziek, wat moet ik doen?"
        assert query.translation.was_translated
        assert query.translation.original_language == "de"

    @pytest.mark.asyncio
    async def test_tenant_language_passed_to_translation(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[], strategy="enhanced_hybrid")
        tenant = TenantInfo(id="gmbh", name="Muster GmbH", is_active=True, document_language="de")
        with _patched_pipeline(primary=primary, tenant=tenant) as mocks:
            await RetrievalEngine().run(MagicMock(), "gmbh", "hallo wereld")
        assert mocks["translate_query_optimized"].await_args.args[1] == "de"

    @pytest.mark.asyncio
    async def test_empty_corpus(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[], strategy="enhanced_hybrid", tokens=4, cost=0.00001)
        with _patched_pipeline(primary=primary) as mocks:
            response = await RetrievalEngine().run(MagicMock(), "acme", "hallo wereld")

        mocks["rerank_results"].assert_not_awaited()
        assert response.is_empty
        assert response.context_text == ""
        assert response.rag_details.reranking.input_documents == 0

    @pytest.mark.asyncio
    async def test_tenant_validation_failure_propagates(self):
        from hrrag.errors import TenantValidationError
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[], strategy="enhanced_hybrid")
        error = TenantValidationError("ghost", "not found")
        with _patched_pipeline(primary=primary, tenant=error) as mocks:
            with pytest.raises(TenantValidationError):
                await RetrievalEngine().run(MagicMock(), "ghost", "vraag")
        mocks["hybrid_search"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skip_tenant_validation(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[], strategy="enhanced_hybrid")
        with _patched_pipeline(primary=primary) as mocks:
            await RetrievalEngine().run(
                MagicMock(), "acme", "hallo wereld", skip_tenant_validation=True
            )
        mocks["validate_tenant"].assert_not_awaited()
        assert mocks["translate_query_optimized"].await_args.args[1] == settings.default_document_language

    @pytest.mark.asyncio
    async def test_search_unavailable_propagates(self):
        from hrrag.errors import SearchUnavailableError
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[], strategy="enhanced_hybrid")
        with _patched_pipeline(primary=primary) as mocks:
            mocks["hybrid_search"].side_effect = SearchUnavailableError("both RPCs failed")
            with pytest.raises(SearchUnavailableError):
                await RetrievalEngine().run(MagicMock(), "acme", "vraag")


class TestRagDetails:
    @pytest.mark.asyncio
    async def test_reranking_positions_tracked_by_chunk(self):
        from hrrag.orchestration.engine import RetrievalEngine

        results = [_result(f"chunk {i}", 0.8 - i / 10) for i in range(20)]

        async def _reverse(query, documents, top_n=None):
            reranked = [
                d.model_copy(update={"similarity": 0.99 - i / 100})
                for i, d in enumerate(reversed(documents))
            ][:top_n]
            return RerankOutcome(results=reranked, enabled=True, cost=0.002, model="rerank-v3.5")

        primary = SearchOutcome(results=results, strategy="enhanced_hybrid")
        with _patched_pipeline(primary=primary, rerank=AsyncMock(side_effect=_reverse)):
            response = await RetrievalEngine().run(MagicMock(), "acme", "vraag")

        reranking = response.rag_details.reranking
        assert reranking.enabled
        assert reranking.model == "rerank-v3.5"
        assert reranking.input_documents == 20
        assert reranking.output_documents == 8
        first = reranking.results[0]
        assert (first.position_before, first.position_after) == (19, 0)
        assert first.before_score == pytest.approx(results[19].similarity)
        assert first.after_score == pytest.approx(0.99)

    @pytest.mark.asyncio
    async def test_details_are_frozen(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[_result("a", 0.5)] * 20, strategy="enhanced_hybrid")
        with _patched_pipeline(primary=primary):
            response = await RetrievalEngine().run(MagicMock(), "acme", "vraag")

        with pytest.raises(ValidationError):
            response.rag_details.costs = None  # type: ignore[assignment]

    @pytest.mark.asyncio
    async def test_raw_results_truncated(self):
        from hrrag.orchestration.engine import RetrievalEngine

        primary = SearchOutcome(results=[_result("x" * 500, 0.5)] * 20, strategy="enhanced_hybrid")
        with _patched_pipeline(primary=primary):
            response = await RetrievalEngine().run(MagicMock(), "acme", "vraag")
        assert all(len(r.content) == 200 for r in response.rag_details.search.raw_results)


class TestEngineLifecycle:
    @pytest.mark.asyncio
    async def test_start_requires_database_url(self):
        from hrrag.orchestration.engine import RetrievalEngine

        with _override_settings(database_url=""):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                await RetrievalEngine().start()

    @pytest.mark.asyncio
    async def test_retrieve_context_releases_connection(self):
        from hrrag.orchestration.engine import RetrievalEngine

        engine = RetrievalEngine()
        conn = MagicMock()
        engine._acquire_connection = AsyncMock(return_value=conn)  # type: ignore[method-assign]
        engine._release_connection = AsyncMock()  # type: ignore[method-assign]
        engine.run = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]

        with pytest.raises(RuntimeError):
            await engine.retrieve_context("acme", "vraag")
        engine._release_connection.assert_awaited_once_with(conn)
