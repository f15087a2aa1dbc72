from __future__ import annotations

import re

from hrrag.retrieval.models import (
    Citation,
    CitationFile,
    CitationReference,
    SearchResult,
)

_WHITESPACE_RE = re.compile(r"\s+")
PREVIEW_EDGE_WORDS = 3


def extract_snippet_preview(text: str) -> str:
    """First three and last three words, e.g. ``"De betaaldata zijn ... de maand."``."""
    cleaned = _WHITESPACE_RE.sub(" ", text or "").strip()
    if not cleaned:
        return ""
    words = cleaned.split(" ")
    if len(words) <= PREVIEW_EDGE_WORDS * 2:
        return cleaned
    head = " ".join(words[:PREVIEW_EDGE_WORDS])
    tail = " ".join(words[-PREVIEW_EDGE_WORDS:])
    return f"{head} ... {tail}"


def build_citations(results: list[SearchResult]) -> list[Citation]:
    """One citation per final result, in rank order.

    ``position`` is 1-based and matches the ``[Document N: ...]`` header of
    the same result in ``build_context_text``.
    """
    return [
        Citation(
            position=position,
            preview=extract_snippet_preview(result.content),
            references=[
                CitationReference(
                    pages=[result.page_number] if result.page_number else [],
                    file=CitationFile(name=result.filename, path=result.file_path),
                    section_title=result.section_title,
                    section_path=result.section_path or None,
                )
            ],
            relevance_score=result.similarity,
        )
        for position, result in enumerate(results, start=1)
    ]


def _context_header(position: int, result: SearchResult) -> str:
    parts = [f"[Document {position}: {result.filename}"]
    if result.page_number:
        parts.append(f"page {result.page_number}")
    if result.section_title:
        parts.append(result.section_title)
    elif result.context_header:
        parts.append(result.context_header)
    return " | ".join(parts) + "]"


def build_context_text(results: list[SearchResult]) -> str:
    """LLM-ready context: each chunk under a ``[Document N: file | page P | section]`` line."""
    return "\n".join(
        f"{_context_header(position, result)}\n{result.content}\n"
        for position, result in enumerate(results, start=1)
    )
