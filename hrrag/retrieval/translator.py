"""Query language detection and translation into the corpus language.

Embeddings are language-bound: "krank" (de) sits far from "ziek" (nl),
so a question is translated into the tenant's ``document_language``
before it is embedded.  A keyword heuristic short-circuits the common
case where the question is already in that language; otherwise a
single LLM call detects and translates at once.  Any failure returns
the query untranslated.
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from config import settings
from hrrag.llm import completion_cost, get_llm_client, parse_json_object, usage_of
from hrrag.retrieval.models import TranslationResult

logger = logging.getLogger(__name__)

UNKNOWN_LANGUAGE = "unknown"
MIN_HEURISTIC_SCORE = 2

SUPPORTED_LANGUAGES: Mapping[str, str] = MappingProxyType(
    {
        "nl": "Dutch",
        "en": "English",
        "de": "German",
        "fr": "French",
        "es": "Spanish",
        "it": "Italian",
        "pl": "Polish",
        "tr": "Turkish",
        "pt": "Portuguese",
        "ro": "Romanian",
        "ar": "Arabic",
        "zh": "Chinese",
    }
)


@dataclass(frozen=True)
class LanguageProfiles:
    """Per-language indicator words, scored by substring containment.

    Insertion order of ``keywords`` breaks ties.
    """

    keywords: Mapping[str, tuple[str, ...]]

    def score(self, query: str) -> dict[str, int]:
        lowered = query.lower()
        return {
            language: sum(1 for word in words if word in lowered)
            for language, words in self.keywords.items()
        }


HR_LANGUAGE_PROFILES = LanguageProfiles(
    keywords=MappingProxyType(
        {
            "de": (
                "was", "wie", "wann", "warum", "können", "müssen", "haben", "sein",
                "werden", "ich", "mein", "wenn", "krankheit", "krank", "urlaub",
                "gehalt", "arbeits",
            ),
            "fr": (
                "que", "quoi", "comment", "pourquoi", "puis", "dois", "avoir", "être",
                "je", "mon", "ma", "maladie", "congé", "salaire", "travail",
            ),
            "nl": (
                "wat", "hoe", "wanneer", "waarom", "kan", "moet", "hebben", "zijn",
                "worden", "ik", "mijn", "als", "ziekte", "ziek", "verlof", "salaris",
                "werk",
            ),
            "en": (
                "what", "how", "when", "why", "can", "must", "have", "be", "my", "if",
                "sick", "leave", "salary", "work", "holiday",
            ),
        }
    )
)


def _translation_prompt(target_name: str) -> str:
    return f"""\
You are a language detection and translation assistant. Your task:
1. Detect the language of the user's query
2. If the query is NOT in {target_name}, translate it to {target_name}
3. If the query is already in {target_name}, return it unchanged

IMPORTANT:
- Keep the same intent and meaning
- Preserve any specific terms, names, or numbers
- For HR/employment questions, use formal language
- Respond ONLY with valid JSON, no other text

Response format (JSON only):
{{
  "detected_language": "language_code",
  "translated_query": "the query in {target_name}",
  "was_translated": true/false
}}"""


def detect_language_heuristic(
    query: str, profiles: LanguageProfiles = HR_LANGUAGE_PROFILES
) -> str:
    """Best-scoring language code, or ``"unknown"`` below two hits."""
    scores = profiles.score(query)
    if not scores:
        return UNKNOWN_LANGUAGE
    # max() keeps the first of equal scores, so profile order breaks ties.
    best = max(scores, key=lambda language: scores[language])
    return best if scores[best] >= MIN_HEURISTIC_SCORE else UNKNOWN_LANGUAGE


def _untranslated(
    query: str, target_language: str, started: float, original_language: str = UNKNOWN_LANGUAGE
) -> TranslationResult:
    return TranslationResult(
        original_query=query,
        original_language=original_language,
        translated_query=query,
        target_language=target_language,
        was_translated=False,
        cost=0.0,
        latency_ms=(time.perf_counter() - started) * 1000,
    )


async def translate_query_if_needed(
    query: str, target_language: str, *, model: str | None = None
) -> TranslationResult:
    started = time.perf_counter()
    model = model or settings.translation_model
    target_name = SUPPORTED_LANGUAGES.get(target_language, "Dutch")

    try:
        client = get_llm_client()
        response = await client.chat.completions.create(
            model=model,
            temperature=0.1,
            messages=[
                {"role": "system", "content": _translation_prompt(target_name)},
                {"role": "user", "content": query},
            ],
            response_format={"type": "json_object"},
        )
        data = parse_json_object(response.choices[0].message.content)
    except Exception as exc:
        warnings.warn(
            f"Query translation failed ({exc!r}), falling back to the original query.",
            stacklevel=2,
        )
        return _untranslated(query, target_language, started)

    translated = data.get("translated_query")
    if not isinstance(translated, str) or not translated.strip():
        translated = query
    detected = data.get("detected_language")
    was_translated = bool(data.get("was_translated")) and translated != query
    prompt_tokens, completion_tokens, _ = usage_of(response)
    cost = completion_cost(model, prompt_tokens, completion_tokens)
    latency_ms = (time.perf_counter() - started) * 1000

    if was_translated:
        logger.info(
            "translated query %r (%s) -> %r (%s) in %.0fms, $%.6f",
            query, detected, translated, target_language, latency_ms, cost,
        )
    return TranslationResult(
        original_query=query,
        original_language=detected if isinstance(detected, str) and detected else UNKNOWN_LANGUAGE,
        translated_query=translated if was_translated else query,
        target_language=target_language,
        was_translated=was_translated,
        cost=cost,
        latency_ms=latency_ms,
    )


async def translate_query_optimized(
    query: str,
    target_language: str,
    *,
    profiles: LanguageProfiles = HR_LANGUAGE_PROFILES,
) -> TranslationResult:
    """Skip the LLM call when the heuristic already sees the target language."""
    started = time.perf_counter()
    if detect_language_heuristic(query, profiles) == target_language:
        logger.debug("query already in %s, skipping translation", target_language)
        return _untranslated(query, target_language, started, original_language=target_language)
    return await translate_query_if_needed(query, target_language)
