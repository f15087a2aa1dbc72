"""Multi-query result merging.

Results gathered by several phrasings of the same question are grouped
by a merge key and ranked by consensus: first by how many query
variants surfaced the chunk, then by the best similarity any variant
gave it.  A chunk found by two phrasings outranks one found by a single
phrasing even when that single hit scored higher.

The default key is the first 100 characters of content.  Distinct
chunks that open with identical boilerplate collapse under it; pass
``key=chunk_id_key`` to merge on the store's chunk id instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from hrrag.retrieval.models import SearchResult

logger = logging.getLogger(__name__)

CONTENT_KEY_CHARS = 100

MergeKey = Callable[[SearchResult], str]


def content_prefix_key(result: SearchResult) -> str:
    return result.content[:CONTENT_KEY_CHARS]


def chunk_id_key(result: SearchResult) -> str:
    return str(result.chunk_id)


@dataclass
class QueryResults:
    query: str
    results: list[SearchResult]


@dataclass
class _MergeEntry:
    result: SearchResult
    query_count: int
    max_similarity: float
    queries: list[str] = field(default_factory=list)


@dataclass
class MergeStats:
    total_before_merge: int
    total_after_merge: int
    duplicates_removed: int


def merge_and_rank_results(
    all_results: Sequence[QueryResults],
    max_results: int,
    *,
    key: MergeKey = content_prefix_key,
) -> list[SearchResult]:
    entries: dict[str, _MergeEntry] = {}
    for query_results in all_results:
        for result in query_results.results:
            merge_key = key(result)
            entry = entries.get(merge_key)
            if entry is None:
                entries[merge_key] = _MergeEntry(
                    result=result,
                    query_count=1,
                    max_similarity=result.similarity,
                    queries=[query_results.query],
                )
            else:
                entry.query_count += 1
                entry.max_similarity = max(entry.max_similarity, result.similarity)
                entry.queries.append(query_results.query)

    # sorted() is stable: equal (count, similarity) keep first-seen order
    ranked = sorted(
        entries.values(), key=lambda e: (e.query_count, e.max_similarity), reverse=True
    )[:max_results]

    for position, entry in enumerate(ranked, start=1):
        logger.debug(
            "merge #%d: %d queries, %.3f, %s",
            position, entry.query_count, entry.max_similarity, entry.result.filename,
        )
    return [e.result.model_copy(update={"similarity": e.max_similarity}) for e in ranked]


def merge_stats(
    all_results: Sequence[QueryResults],
    merged: list[SearchResult],
    *,
    key: MergeKey = content_prefix_key,
) -> MergeStats:
    """Counts around a merge.

    ``duplicates_removed`` counts only results that collapsed under *key*;
    results cut by the ``max_results`` limit are not duplicates.
    """
    before = sum(len(q.results) for q in all_results)
    distinct = {key(r) for q in all_results for r in q.results}
    return MergeStats(
        total_before_merge=before,
        total_after_merge=len(merged),
        duplicates_removed=before - len(distinct),
    )
