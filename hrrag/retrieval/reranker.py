"""Cross-encoder reranking of merged search results.

Supports Cohere (rerank-v3.5, multilingual), Jina (HTTP API) and a
passthrough ("none") provider.  A successful rerank replaces each
kept result's ``similarity`` with the provider's relevance score.

Design notes:
  - Provider SDKs are imported lazily (inside each function) so the
    system starts without installing unused provider packages.
  - The external call is skipped when there is nothing to reorder
    (candidates <= top_n) or no credential is configured.
  - Any provider failure falls back to the top-N by original
    similarity with zero cost and a warning.
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass, field

from config import settings
from hrrag.retrieval.models import SearchResult

logger = logging.getLogger(__name__)

JINA_RERANK_URL = "https://api.jina.ai/v1/rerank"


@dataclass
class ProviderRanking:
    """Provider output: ``(input index, relevance score)`` pairs plus billing."""

    ranked: list[tuple[int, float]]
    search_units: int = 1


@dataclass
class RerankOutcome:
    results: list[SearchResult]
    enabled: bool
    cost: float = 0.0
    latency_ms: float = 0.0
    model: str | None = None
    scores: list[float] = field(default_factory=list)


def is_reranking_enabled() -> bool:
    return settings.reranker_provider.lower() != "none" and bool(settings.reranker_api_key)


def estimate_rerank_cost(num_documents: int) -> float:
    # One rerank call is billed as one search unit up to 100 documents.
    units = max(1, -(-num_documents // 100))
    return units * settings.reranker_cost_per_1k_searches / 1000


# ── Public interface ──────────────────────────────────────────────


async def rerank_results(
    query: str,
    documents: list[SearchResult],
    top_n: int | None = None,
) -> RerankOutcome:
    started = time.perf_counter()
    top_n = top_n or settings.final_top_k
    provider = settings.reranker_provider.lower()

    if not documents:
        return RerankOutcome(results=[], enabled=False)
    if not is_reranking_enabled():
        logger.info("reranking disabled (provider=%s or no API key)", provider)
        return _unchanged(documents, top_n, started)
    if len(documents) <= top_n:
        logger.info("only %d candidates for top_n=%d, skipping rerank", len(documents), top_n)
        return _unchanged(documents, top_n, started)

    dispatch = {
        "cohere": _rerank_cohere,
        "jina": _rerank_jina,
    }
    handler = dispatch.get(provider)
    if handler is None:
        warnings.warn(
            f"Unknown reranker_provider '{provider}', falling back to similarity order.",
            stacklevel=2,
        )
        return _fallback_ranking(documents, top_n, started)

    passages = [doc.content for doc in documents]
    logger.info(
        "rerank: %d passages sent to '%s' (top_n=%d, query=%r)",
        len(passages), provider, top_n, query[:80],
    )
    try:
        ranking = await handler(query, passages, top_n)
        reranked = [
            documents[index].model_copy(update={"similarity": score})
            for index, score in ranking.ranked
            if 0 <= index < len(documents)
        ]
    except Exception as exc:
        warnings.warn(
            f"Reranker '{provider}' failed ({exc!r}), falling back to similarity order.",
            stacklevel=2,
        )
        return _fallback_ranking(documents, top_n, started)

    reranked.sort(key=lambda r: r.similarity, reverse=True)
    reranked = reranked[:top_n]
    cost = ranking.search_units / 1000 * settings.reranker_cost_per_1k_searches
    latency_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "rerank: %d -> %d results in %.0fms ($%.6f)",
        len(documents), len(reranked), latency_ms, cost,
    )
    return RerankOutcome(
        results=reranked,
        enabled=True,
        cost=cost,
        latency_ms=latency_ms,
        model=settings.reranker_model,
        scores=[r.similarity for r in reranked],
    )


# ── Cohere ────────────────────────────────────────────────────────


async def _rerank_cohere(query: str, passages: list[str], top_n: int) -> ProviderRanking:
    """Cohere Rerank via ``cohere.AsyncClientV2().rerank()``."""
    import cohere

    client = cohere.AsyncClientV2(
        api_key=settings.reranker_api_key, timeout=settings.reranker_timeout
    )
    response = await client.rerank(
        model=settings.reranker_model,
        query=query,
        documents=passages,
        top_n=top_n,
    )

    meta = getattr(response, "meta", None)
    billed = getattr(meta, "billed_units", None)
    units = int(getattr(billed, "search_units", 0) or 1)
    return ProviderRanking(
        ranked=[(r.index, r.relevance_score) for r in response.results],
        search_units=units,
    )


# ── Jina ──────────────────────────────────────────────────────────


async def _rerank_jina(query: str, passages: list[str], top_n: int) -> ProviderRanking:
    """Jina Reranker via HTTP API using ``httpx.AsyncClient``."""
    import httpx

    payload = {
        "model": settings.reranker_model,
        "query": query,
        "documents": passages,
        "top_n": top_n,
        "return_documents": False,
    }
    headers = {
        "Authorization": f"Bearer {settings.reranker_api_key}",
        "Content-Type": "application/json",
    }

    async with httpx.AsyncClient(timeout=settings.reranker_timeout) as client:
        resp = await client.post(JINA_RERANK_URL, json=payload, headers=headers)
        resp.raise_for_status()
        data = resp.json()

    return ProviderRanking(
        ranked=[(r["index"], r["relevance_score"]) for r in data["results"]],
    )


# ── Fallbacks ─────────────────────────────────────────────────────


def _unchanged(documents: list[SearchResult], top_n: int, started: float) -> RerankOutcome:
    kept = documents[:top_n]
    return RerankOutcome(
        results=kept,
        enabled=False,
        latency_ms=(time.perf_counter() - started) * 1000,
        scores=[d.similarity for d in kept],
    )


def _fallback_ranking(
    documents: list[SearchResult], top_n: int, started: float
) -> RerankOutcome:
    kept = sorted(documents, key=lambda d: d.similarity, reverse=True)[:top_n]
    return RerankOutcome(
        results=kept,
        enabled=False,
        cost=0.0,
        latency_ms=(time.perf_counter() - started) * 1000,
        scores=[d.similarity for d in kept],
    )
