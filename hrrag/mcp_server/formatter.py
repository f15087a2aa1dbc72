"""ContextResponse → structured plain-text tool response.

Sections use bracketed headers ([SOURCES], [CONTEXT], [CITATIONS],
[STATS]) because MCP tool output is plain text, not rendered Markdown.
"""

from __future__ import annotations

from hrrag.ingestion.models import DocumentRecord
from hrrag.orchestration.models import ContextResponse
from hrrag.retrieval.models import RAGHealthCheck

PREVIEW_CHARS = 300


def format_context(response: ContextResponse) -> str:
    """Format a successful retrieval into the full MCP response text."""
    return "\n\n".join(
        [
            _build_sources(response),
            "[CONTEXT]\n" + response.context_text.rstrip(),
            _build_citations(response),
            _build_stats(response),
        ]
    )


def _build_sources(response: ContextResponse) -> str:
    lines = ["[SOURCES]"]
    seen: set[str] = set()
    for citation in response.citations:
        for reference in citation.references:
            name = reference.file.name
            if name in seen:
                continue
            seen.add(name)
            path = f" ({reference.file.path})" if reference.file.path else ""
            lines.append(f"[Source {len(seen)}] {name}{path}")
    return "\n".join(lines)


def _build_citations(response: ContextResponse) -> str:
    lines = ["[CITATIONS]"]
    for citation in response.citations:
        reference = citation.references[0]
        pages = ", ".join(str(p) for p in reference.pages) or "?"
        section = f" § {reference.section_title}" if reference.section_title else ""
        lines.append(
            f'[{citation.position}] "{citation.preview}"\n'
            f"    {reference.file.name}, page {pages}{section} "
            f"(score {citation.relevance_score or 0.0:.3f})"
        )
    return "\n".join(lines)


def _build_stats(response: ContextResponse) -> str:
    details = response.rag_details
    timing = details.timing
    lines = [
        "[STATS]",
        f"Search type: {details.search.type}",
        f"Search query: {details.query.search_query}",
        f"Reranking: {'on' if details.reranking.enabled else 'off'}",
        f"Results: {len(response.citations)}",
        f"Cost: ${details.costs.total:.6f}",
        (
            f"Total time: {timing.total_ms:.0f}ms "
            f"(translation: {timing.translation_ms:.0f}ms, "
            f"search: {timing.search_ms:.0f}ms, "
            f"reranking: {timing.reranking_ms:.0f}ms)"
        ),
    ]
    if details.query.translation and details.query.translation.was_translated:
        lines.append(
            f"Note: query translated from {details.query.translation.original_language} "
            f"to {details.query.translation.target_language}."
        )
    return "\n".join(lines)


def format_status(
    tenant_id: str, health: RAGHealthCheck, documents: list[DocumentRecord]
) -> str:
    lines = [
        "[CORPUS STATUS]",
        f"Tenant: {tenant_id}",
        f"Healthy: {'yes' if health.healthy else 'no'}",
        f"Documents indexed: {health.document_count}",
        f"Total chunks: {health.chunk_count}",
    ]
    if health.error:
        lines.append(f"Error: {health.error[:PREVIEW_CHARS]}")
    if documents:
        lines.append("")
        lines.append("Documents:")
        for doc in documents:
            created = doc.created_at.strftime("%Y-%m-%d %H:%M UTC") if doc.created_at else "unknown"
            line = (
                f"- {doc.filename} [{doc.processing_status.value}] "
                f"({doc.total_chunks or 0} chunks, {doc.total_pages or 0} pages, added {created})"
            )
            if doc.processing_error:
                line += f"\n  error: {doc.processing_error[:PREVIEW_CHARS]}"
            lines.append(line)
    return "\n".join(lines)
