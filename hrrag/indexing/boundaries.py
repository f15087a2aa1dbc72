"""Deterministic chunk boundary selection (no LLM).

``smart_boundary_spans`` walks the text and, around every target cut
point, scores candidate positions inside a +/-300 character window:
structural starts (articles, chapters) beat section starts, which beat
paragraph breaks, list ends, sentence ends and so on.  The produced
spans are contiguous and never overlap.

``fixed_size_spans`` is the last-resort splitter used when both the
semantic chunker and smart boundaries are disabled; it is the only
splitter that introduces overlap between neighbouring chunks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType

from hrrag.indexing.models import SmartChunkingOptions, StructureNode, StructureType

BOUNDARY_SCORES = MappingProxyType(
    {
        "article_start": 100,
        "chapter_start": 100,
        "section_start": 90,
        "paragraph_end": 70,
        "list_end": 60,
        "sentence_end": 40,
        "colon_newline": 30,
        "clause_end": 10,
    }
)

BOUNDARY_WINDOW = 300

_PARAGRAPH_RE = re.compile(r"\n\n+")
_LIST_END_RE = re.compile(r"\n(?:[-•*]|\d+[.)])[^\n]*\n(?!\s*(?:[-•*]|\d+[.)]))")
_SENTENCE_END_RE = re.compile(r"[.!?]\s+(?=[A-Z])")
_COLON_NEWLINE_RE = re.compile(r":\n")
_CLAUSE_END_RE = re.compile(r"[,;]\s+")

_TEXT_BOUNDARIES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("paragraph_end", _PARAGRAPH_RE),
    ("list_end", _LIST_END_RE),
    ("sentence_end", _SENTENCE_END_RE),
    ("colon_newline", _COLON_NEWLINE_RE),
    ("clause_end", _CLAUSE_END_RE),
)


@dataclass(frozen=True)
class BoundaryCandidate:
    position: int
    score: int
    kind: str


def _structure_kind(node: StructureNode) -> str:
    if node.type in (StructureType.ARTICLE, StructureType.CHAPTER):
        return f"{node.type.value}_start"
    return "section_start"


def find_boundary_candidates(
    text: str,
    window_start: int,
    window_end: int,
    structures: list[StructureNode] | None = None,
) -> list[BoundaryCandidate]:
    """Every scored cut position strictly inside ``(window_start, window_end]``."""
    candidates: list[BoundaryCandidate] = []
    for node in structures or ():
        if window_start < node.start_index <= window_end:
            kind = _structure_kind(node)
            candidates.append(BoundaryCandidate(node.start_index, BOUNDARY_SCORES[kind], kind))

    window = text[window_start:window_end]
    for kind, pattern in _TEXT_BOUNDARIES:
        for match in pattern.finditer(window):
            position = window_start + match.end()
            if window_start < position <= window_end:
                candidates.append(BoundaryCandidate(position, BOUNDARY_SCORES[kind], kind))
    return candidates


def find_best_boundary(
    text: str,
    chunk_start: int,
    options: SmartChunkingOptions,
    structures: list[StructureNode] | None = None,
) -> int:
    """Pick the cut position for the chunk beginning at *chunk_start*.

    The cut must leave a chunk of ``min_chunk_size`` to ``max_chunk_size``
    characters.  Highest score wins; ties go to the candidate closest to
    the target size.  With no candidates the chunk is cut at the target.
    """
    target = chunk_start + options.target_chunk_size
    window_start = max(chunk_start + options.min_chunk_size, target - BOUNDARY_WINDOW)
    window_end = min(len(text), target + BOUNDARY_WINDOW, chunk_start + options.max_chunk_size)

    candidates = find_boundary_candidates(text, window_start, window_end, structures)
    if not candidates:
        return min(target, len(text))

    best = max(candidates, key=lambda c: (c.score, -abs(c.position - target)))
    return best.position


def smart_boundary_spans(
    text: str,
    structures: list[StructureNode] | None = None,
    options: SmartChunkingOptions | None = None,
) -> list[tuple[int, int]]:
    """Contiguous ``[start, end)`` spans covering the whole of *text*."""
    options = options or SmartChunkingOptions()
    spans: list[tuple[int, int]] = []
    start = 0
    while start < len(text):
        if start + options.target_chunk_size >= len(text):
            spans.append((start, len(text)))
            break
        cut = find_best_boundary(text, start, options, structures)
        if cut <= start:
            cut = min(start + options.target_chunk_size, len(text))
        spans.append((start, cut))
        start = cut
    return spans


def fixed_size_spans(
    text: str, options: SmartChunkingOptions | None = None
) -> list[tuple[int, int]]:
    """Fixed-size spans cut at the last period, overlapping by ``overlap_percentage``.

    The next span starts ``overlap`` characters before the previous end,
    snapped forward to a word start, so the overlap never exceeds
    ``overlap_percentage`` of the target size.
    """
    options = options or SmartChunkingOptions()
    size = options.target_chunk_size
    overlap = size * options.overlap_percentage // 100

    spans: list[tuple[int, int]] = []
    start = 0
    while start < len(text):
        end = min(start + size, len(text))
        if end < len(text):
            last_period = text.rfind(".", start, end)
            if last_period > start + options.min_chunk_size:
                end = last_period + 1
        spans.append((start, end))
        if end >= len(text):
            break

        next_start = max(end - overlap, start + 1)
        while next_start < end and not text[next_start - 1].isspace():
            next_start += 1
        start = next_start
    return spans
