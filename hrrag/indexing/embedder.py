from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from openai import OpenAI

from config import settings
from hrrag.errors import ConfigurationError

# ────────────────────────────────────────────────────────────────
# embedder.py: Embeddings + token/cost accounting
#
# Responsibilities:
#   1. embed_text()             - one text -> vector, tokens, cost
#   2. embed_texts_with_usage() - many texts in concurrent batches
#   3. estimate_tokens() / estimate_embedding_cost() - cheap upfront
#      estimates (4 chars per token) for the processing log
#   4. token_count()            - exact count via tiktoken
#
# Concurrency model (embed_texts_with_usage):
#   Texts are split into batches of EMBEDDING_BATCH_SIZE (default 100)
#   and dispatched through a ThreadPoolExecutor with at most
#   EMBEDDING_MAX_WORKERS threads.  Results are reassembled in input
#   order regardless of completion order.
#
#   Failure handling:
#     Any batch failure propagates and fails the whole call.  No
#     partial vectors are returned; a document is embedded entirely
#     or not at all.
# ────────────────────────────────────────────────────────────────

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass(frozen=True)
class EmbeddingModelConfig:
    model: str
    dimensions: int
    cost_per_1m_tokens: float


EMBEDDING_MODELS: dict[str, EmbeddingModelConfig] = {
    "text-embedding-3-small": EmbeddingModelConfig("text-embedding-3-small", 1536, 0.02),
    "text-embedding-3-large": EmbeddingModelConfig("text-embedding-3-large", 3072, 0.13),
}


@dataclass
class EmbeddingResult:
    embedding: list[float]
    tokens: int
    cost: float


@dataclass
class BatchEmbeddingResult:
    embeddings: list[list[float]]
    total_tokens: int
    total_cost: float


# two cached singletons - nothing loads at import time
_CLIENT: OpenAI | None = None
_TIKTOKEN_ENCODING: Any | None = None


def get_model_config(model_name: str | None = None) -> EmbeddingModelConfig:
    name = model_name or settings.embedding_model
    config = EMBEDDING_MODELS.get(name)
    if config is None:
        raise ConfigurationError(
            f"Unknown embedding model: {name}. Expected one of {sorted(EMBEDDING_MODELS)}."
        )
    return config


def _get_client() -> OpenAI:
    global _CLIENT
    if _CLIENT is None:
        api_key = settings.embedding_api_key or settings.openai_api_key
        if api_key is None and settings.embedding_base_url.rstrip("/") == _DEFAULT_BASE_URL:
            raise ConfigurationError("OPENAI_API_KEY (or EMBEDDING_API_KEY) is not configured.")
        _CLIENT = OpenAI(base_url=settings.embedding_base_url, api_key=api_key or "not-needed")
    return _CLIENT


def _get_tiktoken_encoding() -> Any:
    global _TIKTOKEN_ENCODING
    if _TIKTOKEN_ENCODING is None:
        import tiktoken
        _TIKTOKEN_ENCODING = tiktoken.get_encoding(settings.embedding_tokenizer_name)
    return _TIKTOKEN_ENCODING


def token_count(text: str) -> int:
    return len(_get_tiktoken_encoding().encode(text))


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def estimate_embedding_cost(texts: list[str], model_name: str | None = None) -> float:
    config = get_model_config(model_name)
    tokens = sum(estimate_tokens(text) for text in texts)
    return tokens / 1_000_000 * config.cost_per_1m_tokens


def _embed_single_batch(
    batch: list[str], config: EmbeddingModelConfig
) -> tuple[list[list[float]], int]:
    """Embed one batch.  Called from worker threads."""
    client = _get_client()
    response = client.embeddings.create(
        model=config.model, input=batch, dimensions=config.dimensions
    )
    data = sorted(response.data, key=lambda item: item.index)
    embeddings = [item.embedding for item in data]
    if len(embeddings) != len(batch):
        raise ValueError(
            "Embedding response size mismatch: "
            f"expected {len(batch)} vectors, got {len(embeddings)}"
        )
    for vector in embeddings:
        if len(vector) != config.dimensions:
            raise ValueError(
                "Embedding dimension mismatch: "
                f"expected {config.dimensions}, got {len(vector)}"
            )
    usage = getattr(response, "usage", None)
    tokens = int(getattr(usage, "total_tokens", 0) or 0)
    return embeddings, tokens


def embed_texts_with_usage(
    texts: list[str], model_name: str | None = None
) -> BatchEmbeddingResult:
    """Embed *texts* via concurrent API batches, preserving input order."""
    config = get_model_config(model_name)
    if not texts:
        return BatchEmbeddingResult(embeddings=[], total_tokens=0, total_cost=0.0)

    batch_size = settings.embedding_batch_size
    batches = [texts[i : i + batch_size] for i in range(0, len(texts), batch_size)]

    if len(batches) == 1:
        embeddings, tokens = _embed_single_batch(batches[0], config)
    else:
        logger.debug(
            "embed_texts: dispatching %d texts in %d batches (workers=%d)",
            len(texts), len(batches), settings.embedding_max_workers,
        )
        results_by_index: dict[int, tuple[list[list[float]], int]] = {}
        with ThreadPoolExecutor(max_workers=settings.embedding_max_workers) as executor:
            future_to_index = {
                executor.submit(_embed_single_batch, batch, config): idx
                for idx, batch in enumerate(batches)
            }
            for future in as_completed(future_to_index):
                # .result() re-raises any exception from the worker thread.
                results_by_index[future_to_index[future]] = future.result()
        embeddings = []
        tokens = 0
        for idx in range(len(batches)):
            batch_embeddings, batch_tokens = results_by_index[idx]
            embeddings.extend(batch_embeddings)
            tokens += batch_tokens

    return BatchEmbeddingResult(
        embeddings=embeddings,
        total_tokens=tokens,
        total_cost=tokens / 1_000_000 * config.cost_per_1m_tokens,
    )


def embed_texts(texts: list[str]) -> list[list[float]]:
    return embed_texts_with_usage(texts).embeddings


def embed_text(text: str, model_name: str | None = None) -> EmbeddingResult:
    """Embed a single string (a retrieval query or one chunk)."""
    result = embed_texts_with_usage([text], model_name)
    return EmbeddingResult(
        embedding=result.embeddings[0], tokens=result.total_tokens, cost=result.total_cost
    )
