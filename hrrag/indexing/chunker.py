from __future__ import annotations

# ────────────────────────────────────────────────────────────────
# chunker.py: Chunking orchestrator for the indexing layer
#
# Public interface:
#   smart_chunk_document(pages, document_name, options) - structured
#       chunks with context headers, page numbers and structure paths
#   chunk_text(text, page_number, options)  - legacy paragraph chunker
#   chunk_document(pages, options)          - legacy, whole document
#
# Smart pipeline:
#   1. combine_pages() joins the trimmed, non-empty pages with "\n\n".
#   2. detect_structure() + build_hierarchy() (when enabled).
#   3. A splitter strategy turns the text into [start, end) spans:
#        SemanticSplitter       - LLM markers; degrades to its fallback
#                                 when the LLM returns nothing usable
#        SmartBoundarySplitter  - scored deterministic cuts
#        FixedSizeSplitter      - fixed windows with bounded overlap
#   4. Each span becomes a StructuredChunk: page lookup, covering
#      structure node, breadcrumb path and context header.
#   5. merge_small_chunks() folds undersized chunks into their
#      predecessor and renumbers chunk_index densely.
#
# Span invariant:
#   Semantic and smart-boundary spans tile the full text exactly
#   (no gaps, no overlap).  Only FixedSizeSplitter overlaps.
# ────────────────────────────────────────────────────────────────

import logging
import re
import time
from dataclasses import dataclass
from typing import Iterator, Protocol

from hrrag.indexing.boundaries import fixed_size_spans, smart_boundary_spans
from hrrag.indexing.models import (
    LegacyChunkingOptions,
    PageText,
    SmartChunkingOptions,
    SmartChunkingResult,
    StructuredChunk,
    StructureNode,
    StructureTree,
    TextChunk,
)
from hrrag.indexing.semantic_chunker import semantic_chunk
from hrrag.indexing.structure import (
    build_hierarchy,
    detect_structure,
    generate_context_header,
    get_structure_path,
    get_structure_summary,
)

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n"
_LOCATE_PROBE_CHARS = 100
_LOCATE_SEED_SLACK = 2_000


# ── Splitter strategies ───────────────────────────────────────


@dataclass
class SplitResult:
    spans: list[tuple[int, int]]
    strategy: str
    cost: float = 0.0
    tokens_used: int = 0


class ChunkSplitter(Protocol):
    name: str

    async def split(
        self,
        text: str,
        structures: list[StructureNode],
        options: SmartChunkingOptions,
    ) -> SplitResult: ...


class FixedSizeSplitter:
    name = "fixed_size"

    async def split(self, text, structures, options) -> SplitResult:
        return SplitResult(spans=fixed_size_spans(text, options), strategy=self.name)


class SmartBoundarySplitter:
    name = "smart_boundary"

    async def split(self, text, structures, options) -> SplitResult:
        return SplitResult(
            spans=smart_boundary_spans(text, structures, options), strategy=self.name
        )


class SemanticSplitter:
    """LLM boundaries, handing over to *fallback* when the LLM degraded
    or returned a chunk longer than ``max_chunk_size``.
    """

    name = "semantic"

    def __init__(self, fallback: ChunkSplitter | None = None) -> None:
        self.fallback = fallback

    async def split(self, text, structures, options) -> SplitResult:
        result = await semantic_chunk(text, options.semantic_model)
        oversized = any(len(chunk) > options.max_chunk_size for chunk in result.chunks)
        if (result.degraded or oversized) and self.fallback is not None:
            logger.info(
                "semantic split %s, using %s",
                "degraded" if result.degraded else "oversized",
                self.fallback.name,
            )
            fallback = await self.fallback.split(text, structures, options)
            fallback.cost += result.cost
            fallback.tokens_used += result.tokens_used
            return fallback
        return SplitResult(
            spans=locate_chunk_spans(text, result.chunks),
            strategy=self.name,
            cost=result.cost,
            tokens_used=result.tokens_used,
        )


def select_splitter(options: SmartChunkingOptions) -> ChunkSplitter:
    deterministic: ChunkSplitter = (
        SmartBoundarySplitter() if options.enable_smart_boundaries else FixedSizeSplitter()
    )
    if options.enable_semantic_chunking:
        return SemanticSplitter(fallback=deterministic)
    return deterministic


# ── Helpers ───────────────────────────────────────────────────


def _non_empty_pages(pages: list[PageText]) -> list[PageText]:
    return [page for page in pages if page.text.strip()]


def combine_pages(pages: list[PageText]) -> str:
    return PAGE_SEPARATOR.join(page.text.strip() for page in _non_empty_pages(pages))


def find_page_for_position(pages: list[PageText], position: int) -> int | None:
    """Page number containing *position* of the ``combine_pages`` text."""
    kept = _non_empty_pages(pages)
    page_end = 0
    for page in kept:
        page_end += len(page.text.strip()) + len(PAGE_SEPARATOR)
        if position < page_end:
            return page.page_number
    return kept[-1].page_number if kept else None


def word_count(text: str) -> int:
    return len(text.split())


def _locate_chunk_start(text: str, chunk: str, cursor: int, expected: int) -> int | None:
    # Try near the proportional position first, then from the cursor.
    for probe_len in (_LOCATE_PROBE_CHARS, _LOCATE_PROBE_CHARS // 4):
        probe = chunk[:probe_len]
        if not probe:
            return None
        seed = max(cursor, expected - _LOCATE_SEED_SLACK)
        found = text.find(probe, seed)
        if found == -1 and seed > cursor:
            found = text.find(probe, cursor)
        if found != -1:
            return found
    return None


def locate_chunk_spans(text: str, chunks: list[str]) -> list[tuple[int, int]]:
    """Map LLM chunk texts back onto contiguous spans of *text*.

    A chunk that cannot be found (the model paraphrased it) is absorbed
    by the preceding span, so the spans always tile the whole text.
    """
    if not text:
        return []
    total_chars = sum(len(chunk) for chunk in chunks) or 1
    starts = [0]
    consumed = 0
    for i, chunk in enumerate(chunks):
        expected = consumed * len(text) // total_chars
        consumed += len(chunk)
        if i == 0:
            continue
        start = _locate_chunk_start(text, chunk, starts[-1] + 1, expected)
        if start is not None:
            starts.append(start)
    ends = starts[1:] + [len(text)]
    return list(zip(starts, ends))


def _build_chunk(
    full_text: str,
    span: tuple[int, int],
    pages: list[PageText],
    tree: StructureTree,
    document_name: str,
    options: SmartChunkingOptions,
) -> StructuredChunk:
    start, end = span
    raw = full_text[start:end]
    content = raw.strip()
    content_start = start + (len(raw) - len(raw.lstrip()))

    structure: StructureNode | None = None
    path: list[str] = []
    index = tree.find_at(content_start) if options.enable_structure_detection else None
    if index is not None:
        structure = tree.nodes[index]
        path = get_structure_path(tree, index)

    header = generate_context_header(document_name, path) if options.enable_context_headers else ""
    return StructuredChunk(
        content=content,
        context_header=header,
        chunk_index=0,
        start_char=start,
        end_char=end,
        page_number=find_page_for_position(pages, content_start),
        structure=structure,
        structure_path=path,
    )


def merge_small_chunks(
    chunks: list[StructuredChunk], full_text: str, min_size: int
) -> list[StructuredChunk]:
    """Fold chunks shorter than *min_size* into their predecessor.

    A short first chunk has no predecessor and absorbs its successor
    instead.  ``chunk_index`` is renumbered densely afterwards.
    """

    def _absorb(target: StructuredChunk, end_char: int) -> None:
        target.end_char = end_char
        target.content = full_text[target.start_char:end_char].strip()

    merged: list[StructuredChunk] = []
    for chunk in chunks:
        if merged and len(chunk.content) < min_size:
            _absorb(merged[-1], chunk.end_char)
            continue
        merged.append(chunk)

    if len(merged) > 1 and len(merged[0].content) < min_size:
        successor = merged.pop(1)
        _absorb(merged[0], successor.end_char)

    for index, chunk in enumerate(merged):
        chunk.chunk_index = index
    return merged


# ── Smart chunking ────────────────────────────────────────────


async def smart_chunk_document(
    pages: list[PageText],
    document_name: str,
    options: SmartChunkingOptions | None = None,
) -> SmartChunkingResult:
    options = options or SmartChunkingOptions.from_settings()
    started = time.perf_counter()

    full_text = combine_pages(pages)
    if not full_text:
        return SmartChunkingResult(chunks=[])

    structures = detect_structure(full_text) if options.enable_structure_detection else []
    tree = build_hierarchy(structures, len(full_text))
    if structures:
        logger.info("%s: detected %s", document_name, get_structure_summary(structures))

    splitter = select_splitter(options)
    split = await splitter.split(full_text, structures, options)

    chunks: list[StructuredChunk] = []
    pending_start: int | None = None
    for start, end in split.spans:
        if pending_start is not None:
            start, pending_start = pending_start, None
        if not full_text[start:end].strip():
            # Whitespace-only span: widen a neighbour instead of emitting it.
            if chunks:
                chunks[-1].end_char = end
            else:
                pending_start = start
            continue
        chunks.append(_build_chunk(full_text, (start, end), pages, tree, document_name, options))

    chunks = merge_small_chunks(chunks, full_text, options.min_chunk_size)

    logger.info(
        "%s: %d chunks via %s (%d structures, %.0fms, $%.4f)",
        document_name, len(chunks), split.strategy, len(structures),
        (time.perf_counter() - started) * 1000, split.cost,
    )
    return SmartChunkingResult(
        chunks=chunks,
        cost=split.cost,
        tokens_used=split.tokens_used,
        structures_detected=len(structures),
    )


# ── Legacy chunking ───────────────────────────────────────────

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def _normalize_legacy_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\t", " ")
    return re.sub(r" +", " ", text).strip()


def _paragraph_spans(text: str) -> Iterator[tuple[int, int]]:
    """Stripped (start, end) of each paragraph; separators may be any length."""
    start = 0
    bounds = [(m.start(), m.end()) for m in _PARAGRAPH_SPLIT_RE.finditer(text)]
    bounds.append((len(text), len(text)))
    for sep_start, sep_end in bounds:
        raw = text[start:sep_start]
        if raw.strip():
            lead = len(raw) - len(raw.lstrip())
            trail = len(raw) - len(raw.rstrip())
            yield start + lead, sep_start - trail
        start = sep_end


def chunk_text(
    text: str,
    page_number: int = 1,
    options: LegacyChunkingOptions | None = None,
) -> list[TextChunk]:
    """Accumulate paragraphs into chunks of at most ``chunk_size`` characters.

    Offsets span the chunk's paragraphs in the whitespace-normalised
    text, separators included.  A paragraph longer than ``chunk_size``
    becomes its own chunk.
    """
    options = options or LegacyChunkingOptions()
    normalized = _normalize_legacy_text(text)
    if not normalized:
        return []

    chunks: list[TextChunk] = []
    current = ""
    current_start = 0
    current_end = 0

    def _emit() -> None:
        chunks.append(
            TextChunk(
                content=current,
                page_number=page_number,
                chunk_index=len(chunks),
                start_char=current_start,
                end_char=current_end,
            )
        )

    for start, end in _paragraph_spans(normalized):
        paragraph = normalized[start:end]
        fits = len(current) + len(paragraph) + 2 <= options.chunk_size
        # Undersized accumulations are carried forward, never dropped.
        if current and not fits and len(current) >= options.min_chunk_size:
            _emit()
            current = ""
        if current:
            current = f"{current}\n\n{paragraph}"
        else:
            current = paragraph
            current_start = start
        current_end = end

    if current:
        _emit()
    return chunks


def chunk_document(
    pages: list[PageText], options: LegacyChunkingOptions | None = None
) -> list[TextChunk]:
    all_chunks: list[TextChunk] = []
    for page in pages:
        for chunk in chunk_text(page.text, page.page_number, options):
            chunk.chunk_index = len(all_chunks)
            all_chunks.append(chunk)
    logger.info("chunk_document: %d pages -> %d chunks", len(pages), len(all_chunks))
    return all_chunks
