"""LLM enrichment of chunks: summary, keywords, HR topics, informal synonyms.

The alternative terms are what let an informal question ("wanneer krijg
ik geld") match formal document text ("betaaldata salarisbetaling"), so
they are embedded into the chunk's metadata blob and searched by the
keyword half of hybrid search.

Enrichment is never correctness-critical: any failure yields an empty
``ChunkMetadata`` and zero cost.
"""

from __future__ import annotations

import asyncio
import logging
import warnings
from dataclasses import dataclass, field

from config import settings
from hrrag.indexing.models import ChunkMetadata
from hrrag.llm import completion_cost, get_llm_client, parse_json_object, usage_of

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 7
MAX_ALTERNATIVE_TERMS = 10


@dataclass(frozen=True)
class TopicVocabulary:
    """Closed set of topics a chunk may be tagged with."""

    topics: tuple[str, ...]

    def filter(self, candidates: object) -> list[str]:
        if not isinstance(candidates, list):
            return []
        allowed = set(self.topics)
        seen: list[str] = []
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            topic = candidate.strip().lower()
            if topic in allowed and topic not in seen:
                seen.append(topic)
        return seen


HR_TOPICS = TopicVocabulary(
    topics=(
        "salaris",
        "verlof",
        "vakantie",
        "ziekte",
        "pensioen",
        "contract",
        "bonus",
        "uitkering",
        "cao",
        "arbeidsvoorwaarden",
        "lease",
        "thuiswerken",
        "onboarding",
        "ontslag",
        "verzekering",
        "training",
        "werktijden",
        "overwerk",
        "zwangerschap",
        "ouderschapsverlof",
    )
)


def _system_prompt(vocabulary: TopicVocabulary) -> str:
    return f"""\
Je bent een specialist in HR-documentatie. Analyseer de tekst en genereer metadata.

REGELS:
1. Schrijf een korte samenvatting (1-2 zinnen) in het Nederlands.
2. Noem 3-7 belangrijke trefwoorden, letterlijk zoals ze in de tekst staan.
3. Kies passende onderwerpen uitsluitend uit deze lijst: {", ".join(vocabulary.topics)}
4. Geef 3-10 alternatieve termen die medewerkers zouden gebruiken om deze informatie te zoeken:
   - informele taal, zoals "geld krijgen" voor "salaris" of "1% regeling" voor "eenmalige bruto uitkering"
   - afkortingen en spellingsvarianten
   - vragen die medewerkers zouden stellen

Antwoord met een JSON-object:
{{"summary": "...", "keywords": ["..."], "topics": ["..."], "alternativeTerms": ["..."]}}"""


@dataclass
class MetadataGenerationResult:
    metadata: ChunkMetadata
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


@dataclass
class BatchMetadataResult:
    results: dict[int, ChunkMetadata] = field(default_factory=dict)
    total_cost: float = 0.0
    total_tokens: int = 0


def _string_list(value: object, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()][:limit]


async def generate_chunk_metadata(
    content: str,
    document_context: str | None = None,
    *,
    vocabulary: TopicVocabulary = HR_TOPICS,
    model: str | None = None,
) -> MetadataGenerationResult:
    model = model or settings.metadata_model
    user_prompt = f"TEKST OM TE ANALYSEREN:\n{content}"
    if document_context:
        user_prompt = f"DOCUMENT: {document_context}\n\n{user_prompt}"

    try:
        client = get_llm_client()
        response = await client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": _system_prompt(vocabulary)},
                {"role": "user", "content": user_prompt},
            ],
            temperature=0.3,
            response_format={"type": "json_object"},
        )
        data = parse_json_object(response.choices[0].message.content)
    except Exception as exc:
        warnings.warn(
            f"Metadata generation failed ({exc!r}), falling back to empty metadata.",
            stacklevel=2,
        )
        return MetadataGenerationResult(metadata=ChunkMetadata())

    summary = data.get("summary")
    prompt_tokens, completion_tokens, _ = usage_of(response)
    return MetadataGenerationResult(
        metadata=ChunkMetadata(
            summary=summary.strip() if isinstance(summary, str) else "",
            keywords=_string_list(data.get("keywords"), MAX_KEYWORDS),
            topics=vocabulary.filter(data.get("topics")),
            alternative_terms=_string_list(data.get("alternativeTerms"), MAX_ALTERNATIVE_TERMS),
        ),
        input_tokens=prompt_tokens,
        output_tokens=completion_tokens,
        cost=completion_cost(model, prompt_tokens, completion_tokens),
    )


async def generate_metadata_batch(
    chunks: list[tuple[int, str]],
    document_context: str | None = None,
    *,
    concurrency: int | None = None,
    vocabulary: TopicVocabulary = HR_TOPICS,
) -> BatchMetadataResult:
    """Enrich ``(chunk_index, content)`` pairs in rate-limited waves.

    At most *concurrency* requests are in flight; waves are separated by
    ``METADATA_BATCH_DELAY_MS``.
    """
    concurrency = max(1, concurrency or settings.metadata_concurrency)
    delay = settings.metadata_batch_delay_ms / 1000
    batch_result = BatchMetadataResult()

    for start in range(0, len(chunks), concurrency):
        wave = chunks[start : start + concurrency]
        generated = await asyncio.gather(
            *(
                generate_chunk_metadata(content, document_context, vocabulary=vocabulary)
                for _, content in wave
            )
        )
        for (index, _), result in zip(wave, generated):
            batch_result.results[index] = result.metadata
            batch_result.total_cost += result.cost
            batch_result.total_tokens += result.input_tokens + result.output_tokens
        if start + concurrency < len(chunks) and delay > 0:
            await asyncio.sleep(delay)

    enriched = sum(1 for metadata in batch_result.results.values() if not metadata.is_empty)
    logger.info(
        "metadata: %d/%d chunks enriched (%d tokens, $%.4f)",
        enriched, len(chunks), batch_result.total_tokens, batch_result.total_cost,
    )
    return batch_result
