"""LLM-assisted semantic chunk boundaries.

The model receives the document in sections of at most 15,000
characters and returns the same text with ``|||CHUNK|||`` markers
between coherent groups of 300-500 words.  Every failure (missing key,
API error, empty or marker-less garbage) degrades to the whole text as
a single chunk with ``degraded=True`` and zero cost; the chunking
orchestrator decides whether to fall back to deterministic boundaries.
"""

from __future__ import annotations

import json
import logging
import math
import re
import warnings
from dataclasses import dataclass, field

from hrrag.errors import LLMOutputError
from hrrag.llm import completion_cost, get_llm_client, usage_of

logger = logging.getLogger(__name__)

CHUNK_MARKER = "|||CHUNK|||"
MIN_SEMANTIC_LENGTH = 500
MAX_SECTION_CHARS = 15_000
SPLIT_SEARCH_WINDOW = 500
BOUNDARY_DETECTION_CHARS = 3_000

SEMANTIC_CHUNKING_PROMPT = f"""\
Je analyseert documenten voor een HR-zoeksysteem. Verdeel de tekst hieronder \
in semantisch samenhangende stukken.

REGELS:
1. Houd tekst die inhoudelijk bij elkaar hoort in hetzelfde stuk.
2. Splits nooit midden in een zin.
3. Splits nooit midden in een opsomming of tabel.
4. Hoofdstukken, artikelen en secties zijn natuurlijke grenzen.
5. Streef naar stukken van 300-500 woorden (ongeveer 1500-2500 tekens).
6. Zet de markering {CHUNK_MARKER} direct voor de tekst waar een nieuw stuk begint.
7. Het eerste stuk krijgt geen markering.
8. Geef de tekst letterlijk terug, zonder samenvatting of toelichting.

VOORBEELD INVOER:
Artikel 4.3 Vakantiegeld
De werknemer heeft recht op vakantiegeld van 8%.
Artikel 4.4 Eindejaarsuitkering
De werknemer ontvangt een eindejaarsuitkering.

VOORBEELD UITVOER:
Artikel 4.3 Vakantiegeld
De werknemer heeft recht op vakantiegeld van 8%.
{CHUNK_MARKER}
Artikel 4.4 Eindejaarsuitkering
De werknemer ontvangt een eindejaarsuitkering.

TEKST:
"""

BOUNDARY_DETECTION_PROMPT = """\
Geef de tekenposities (0-gebaseerd) waar in de onderstaande tekst een nieuw \
onderwerp begint. Antwoord uitsluitend met een JSON-array van gehele getallen, \
bijvoorbeeld [0, 812, 1630].

TEKST:
"""

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]\s+[A-Z]")
_INDEX_ARRAY_RE = re.compile(r"\[[\d,\s]+\]")


@dataclass
class SemanticChunkResult:
    chunks: list[str] = field(default_factory=list)
    cost: float = 0.0
    tokens_used: int = 0
    degraded: bool = False


def find_good_split_point(text: str, target_index: int) -> int:
    """Cut position at or before *target_index*: paragraph break, else sentence end."""
    window_start = max(0, target_index - SPLIT_SEARCH_WINDOW)
    paragraph = text.rfind("\n\n", window_start, target_index)
    if paragraph > window_start:
        return paragraph + 2

    last_sentence: re.Match[str] | None = None
    for match in _SENTENCE_SPLIT_RE.finditer(text, window_start, target_index):
        last_sentence = match
    if last_sentence is not None:
        return last_sentence.start() + 2
    return target_index


def split_into_sections(text: str, max_length: int = MAX_SECTION_CHARS) -> list[str]:
    if len(text) <= max_length:
        return [text]

    sections: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_length:
            sections.append(remaining)
            break
        split_index = find_good_split_point(remaining, max_length)
        sections.append(remaining[:split_index].strip())
        remaining = remaining[split_index:].strip()
    return [s for s in sections if s]


def parse_chunks_from_output(output: str) -> list[str]:
    return [part.strip() for part in output.split(CHUNK_MARKER) if part.strip()]


async def _chunk_section(client, section: str, model: str) -> SemanticChunkResult:
    response = await client.chat.completions.create(
        model=model,
        messages=[{"role": "user", "content": SEMANTIC_CHUNKING_PROMPT + section}],
        temperature=0.1,
        max_tokens=math.ceil(len(section) / 2) + 500,
    )
    output = response.choices[0].message.content or ""
    chunks = parse_chunks_from_output(output)
    if not chunks:
        raise LLMOutputError("Semantic chunker returned no text.")

    prompt_tokens, completion_tokens, total_tokens = usage_of(response)
    return SemanticChunkResult(
        chunks=chunks,
        cost=completion_cost(model, prompt_tokens, completion_tokens),
        tokens_used=total_tokens,
    )


async def semantic_chunk(text: str, model: str = "gpt-4o-mini") -> SemanticChunkResult:
    """Split *text* into semantically coherent chunks via the LLM."""
    stripped = text.strip()
    if not stripped:
        return SemanticChunkResult()
    if len(stripped) < MIN_SEMANTIC_LENGTH:
        return SemanticChunkResult(chunks=[stripped])

    sections = split_into_sections(text)
    result = SemanticChunkResult()
    try:
        client = get_llm_client()
        for section in sections:
            section_result = await _chunk_section(client, section, model)
            result.chunks.extend(section_result.chunks)
            result.cost += section_result.cost
            result.tokens_used += section_result.tokens_used
    except Exception as exc:
        warnings.warn(
            f"Semantic chunking failed ({exc!r}), falling back to a single chunk.",
            stacklevel=2,
        )
        return SemanticChunkResult(chunks=[stripped], degraded=True)

    logger.info(
        "semantic_chunk: %d sections -> %d chunks (%d tokens, $%.4f)",
        len(sections), len(result.chunks), result.tokens_used, result.cost,
    )
    return result


async def detect_boundaries(text: str, model: str = "gpt-4o-mini") -> list[int]:
    """Topic-change offsets in the first 3,000 characters; ``[0]`` on any failure."""
    sample = text[:BOUNDARY_DETECTION_CHARS]
    try:
        client = get_llm_client()
        response = await client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": BOUNDARY_DETECTION_PROMPT + sample}],
            temperature=0.1,
            max_tokens=500,
        )
        output = response.choices[0].message.content or ""
        match = _INDEX_ARRAY_RE.search(output)
        if match is None:
            raise LLMOutputError("No index array in boundary response.")
        positions = sorted({int(p) for p in json.loads(match.group(0)) if 0 <= int(p) < len(sample)})
    except Exception as exc:
        warnings.warn(
            f"Boundary detection failed ({exc!r}), falling back to [0].",
            stacklevel=2,
        )
        return [0]
    return positions or [0]
