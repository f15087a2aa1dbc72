"""Unit tests for the indexing layer.

No database and no network: LLM and embedding clients are mocked.
"""

from __future__ import annotations

import json
import warnings
from contextlib import contextmanager
from typing import Any, Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import settings
from hrrag.indexing.models import (
    LegacyChunkingOptions,
    PageText,
    SmartChunkingOptions,
    StructureType,
)


@contextmanager
def _override_settings(**overrides: Any) -> Iterator[None]:
    original: dict[str, Any] = {}
    for key, value in overrides.items():
        original[key] = getattr(settings, key)
        setattr(settings, key, value)
    try:
        yield
    finally:
        for key, value in original.items():
            setattr(settings, key, value)


def _mock_llm(content: str | None = None, *, error: Exception | None = None) -> MagicMock:
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = content
    mock_response.usage = MagicMock(prompt_tokens=100, completion_tokens=50, total_tokens=150)
    mock_client = MagicMock()
    if error is not None:
        mock_client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)
    return mock_client


FILLER = "De werkgever betaalt het loon maandelijks uit. "

CAO_TEXT = (
    "HOOFDSTUK 4 Beloning\n"
    "Intro tekst.\n"
    "Artikel 4.3 Vakantiegeld\n"
    "De werknemer ontvangt 8%.\n"
    "Artikel 4.4 Eindejaarsuitkering\n"
    "Tekst."
)


def _cao_pages() -> list[PageText]:
    return [
        PageText(1, "HOOFDSTUK 4 Beloning\n" + FILLER * 25),
        PageText(
            2,
            "Artikel 4.3 Vakantiegeld\n"
            "De werknemer heeft recht op vakantiegeld van 8% van het brutoloon.\n\n"
            + FILLER * 18,
        ),
        PageText(
            3,
            "Artikel 4.4 Eindejaarsuitkering\n"
            "De eindejaarsuitkering bedraagt 8,33%.\n\n" + FILLER * 15,
        ),
    ]


_DETERMINISTIC = SmartChunkingOptions(
    target_chunk_size=1000,
    min_chunk_size=200,
    max_chunk_size=2000,
    enable_semantic_chunking=False,
)


# ---------------------------------------------------------------------------
# Structure detection
# ---------------------------------------------------------------------------


class TestStructureDetection:
    def test_detects_chapter_and_articles(self):
        from hrrag.indexing.structure import detect_structure

        nodes = detect_structure(CAO_TEXT)
        assert [n.type for n in nodes] == [
            StructureType.CHAPTER,
            StructureType.ARTICLE,
            StructureType.ARTICLE,
        ]
        assert nodes[1].identifier == "Artikel 4.3"
        assert nodes[1].title == "Vakantiegeld"
        assert nodes[0].start_index == 0
        assert nodes[1].start_index == CAO_TEXT.index("Artikel 4.3")
        assert nodes[-1].end_index == len(CAO_TEXT)

    def test_caps_header_needs_two_words(self):
        from hrrag.indexing.structure import detect_structure

        assert detect_structure("VERZUIMBELEID\ntekst") == []
        nodes = detect_structure("ARBEIDSVOORWAARDEN REGELING\ntekst")
        assert len(nodes) == 1
        assert nodes[0].type is StructureType.HEADER

    def test_caps_denylist(self):
        from hrrag.indexing.structure import detect_structure

        assert detect_structure("DATUM VAN INGANG\n1 januari") == []

    def test_no_structure_is_empty(self):
        from hrrag.indexing.structure import detect_structure, has_structure_marker

        assert detect_structure("gewone tekst zonder koppen") == []
        assert not has_structure_marker("gewone tekst zonder koppen")
        assert has_structure_marker("intro\nArtikel 5 Verlof\ntekst")

    def test_summary(self):
        from hrrag.indexing.structure import detect_structure, get_structure_summary

        assert get_structure_summary(detect_structure(CAO_TEXT)) == "1 chapter, 2 articles"
        assert get_structure_summary([]) == "no structures"


class TestStructureHierarchy:
    def test_articles_nest_under_chapter(self):
        from hrrag.indexing.structure import build_hierarchy, detect_structure

        tree = build_hierarchy(detect_structure(CAO_TEXT), len(CAO_TEXT))
        assert tree.root.index == 0
        assert tree.root.children == (1,)
        assert tree.nodes[1].children == (2, 3)
        assert tree.parent_of(2) == tree.nodes[1]
        assert tree.depth(3) == 2

    def test_parent_span_covers_children(self):
        from hrrag.indexing.structure import build_hierarchy, detect_structure

        tree = build_hierarchy(detect_structure(CAO_TEXT), len(CAO_TEXT))
        for node in tree.nodes[1:]:
            parent = tree.nodes[node.parent]
            assert parent.start_index <= node.start_index
            assert parent.end_index >= node.end_index

    def test_path_and_header(self):
        from hrrag.indexing.structure import (
            build_hierarchy,
            detect_structure,
            generate_context_header,
            get_structure_path,
        )

        tree = build_hierarchy(detect_structure(CAO_TEXT), len(CAO_TEXT))
        index = tree.find_at(CAO_TEXT.index("De werknemer"))
        assert index == 2
        path = get_structure_path(tree, index)
        assert path == ["Hoofdstuk 4 Beloning", "Artikel 4.3 Vakantiegeld"]
        assert (
            generate_context_header("CAO 2025.pdf", path)
            == "[CAO 2025 > Hoofdstuk 4 Beloning > Artikel 4.3 Vakantiegeld]"
        )
        assert generate_context_header("Handboek.PDF", []) == "[Handboek]"

    def test_path_length_matches_depth(self):
        from hrrag.indexing.structure import build_hierarchy, detect_structure, get_structure_path

        text = (
            "HOOFDSTUK 2 Verlof\nintro\n"
            "Artikel 2.1 Vakantie\ntekst\n"
            "a) Wettelijke dagen\ntekst\n"
            "b) Bovenwettelijke dagen\ntekst\n"
            "§ 2.2 Bijzonder verlof\ntekst\n"
            "HOOFDSTUK 3 Ziekte\n"
            "Artikel 3.1 Ziekmelding\ntekst"
        )
        tree = build_hierarchy(detect_structure(text), len(text))
        assert len(tree.nodes) == 8
        assert max(tree.depth(node.index) for node in tree.nodes) == 3
        for node in tree.nodes[1:]:
            assert len(get_structure_path(tree, node.index)) == tree.depth(node.index)

    def test_empty_tree_has_only_root(self):
        from hrrag.indexing.structure import build_hierarchy

        tree = build_hierarchy([], 42)
        assert len(tree.nodes) == 1
        assert tree.root.end_index == 42
        assert tree.find_at(10) is None


# ---------------------------------------------------------------------------
# Boundary selection
# ---------------------------------------------------------------------------


class TestBoundaries:
    def test_article_start_beats_paragraph_break(self):
        from hrrag.indexing.boundaries import find_best_boundary
        from hrrag.indexing.structure import detect_structure

        text = "Zin een. " * 100 + "\n\nArtikel 2 Verlof\n" + "Zin twee. " * 100
        structures = detect_structure(text)
        cut = find_best_boundary(text, 0, _DETERMINISTIC, structures)
        assert cut == text.index("Artikel 2")

    def test_no_candidates_cuts_at_target(self):
        from hrrag.indexing.boundaries import find_best_boundary

        text = "x" * 5000
        assert find_best_boundary(text, 0, _DETERMINISTIC) == 1000

    def test_equal_scores_prefer_closest_to_target(self):
        from hrrag.indexing.boundaries import find_best_boundary

        text = "x" * 800 + "\n\n" + "y" * 150 + "\n\n" + "z" * 100 + "\n\n" + "w" * 2000
        # paragraph breaks end at 802, 954 and 1056; the target is 1000
        assert find_best_boundary(text, 0, _DETERMINISTIC) == 954

    def test_smart_spans_tile_text(self):
        from hrrag.indexing.boundaries import smart_boundary_spans
        from hrrag.indexing.structure import detect_structure

        text = ("Zin een. " * 100 + "\n\nArtikel 2 Verlof\n") * 4
        spans = smart_boundary_spans(text, detect_structure(text), _DETERMINISTIC)
        assert spans[0][0] == 0
        assert spans[-1][1] == len(text)
        for (_, end), (start, _) in zip(spans, spans[1:]):
            assert end == start

    def test_fixed_spans_bounded_overlap(self):
        from hrrag.indexing.boundaries import fixed_size_spans

        text = "woord " * 1000
        options = SmartChunkingOptions(target_chunk_size=1000, overlap_percentage=15)
        spans = fixed_size_spans(text, options)
        assert spans[-1][1] == len(text)
        for (s1, e1), (s2, _) in zip(spans, spans[1:]):
            assert s2 > s1
            assert 0 <= e1 - s2 <= 150

    def test_fixed_spans_short_text(self):
        from hrrag.indexing.boundaries import fixed_size_spans

        assert fixed_size_spans("kort") == [(0, 4)]
        assert fixed_size_spans("") == []


# ---------------------------------------------------------------------------
# Smart chunking orchestrator
# ---------------------------------------------------------------------------


class TestSmartChunking:
    @pytest.mark.asyncio
    async def test_article_chunk_has_page_and_breadcrumb(self):
        from hrrag.indexing.chunker import smart_chunk_document

        result = await smart_chunk_document(_cao_pages(), "CAO 2025.pdf", _DETERMINISTIC)
        assert result.structures_detected == 3
        assert result.cost == 0.0

        article = next(c for c in result.chunks if "vakantiegeld van 8%" in c.content)
        assert article.page_number == 2
        assert article.structure_path == ["Hoofdstuk 4 Beloning", "Artikel 4.3 Vakantiegeld"]
        assert article.context_header.startswith(
            "[CAO 2025 > Hoofdstuk 4 Beloning > Artikel 4.3"
        )
        assert article.stored_content.startswith(article.context_header + "\n\n")
        assert article.metadata_json()["section_title"] == "Artikel 4.3 Vakantiegeld"

        last = result.chunks[-1]
        assert last.page_number == 3
        assert last.structure_path[-1] == "Artikel 4.4 Eindejaarsuitkering"

    @pytest.mark.asyncio
    async def test_chunks_cover_text_in_order(self):
        from hrrag.indexing.chunker import combine_pages, smart_chunk_document

        pages = _cao_pages()
        result = await smart_chunk_document(pages, "CAO 2025.pdf", _DETERMINISTIC)
        full_text = combine_pages(pages)
        assert [c.chunk_index for c in result.chunks] == list(range(len(result.chunks)))
        assert result.chunks[0].start_char == 0
        assert result.chunks[-1].end_char == len(full_text)
        for previous, current in zip(result.chunks, result.chunks[1:]):
            assert previous.end_char == current.start_char

    @pytest.mark.asyncio
    async def test_no_chunk_below_minimum(self):
        from hrrag.indexing.chunker import smart_chunk_document

        result = await smart_chunk_document(_cao_pages(), "CAO 2025.pdf", _DETERMINISTIC)
        assert len(result.chunks) > 1
        assert all(len(c.content) >= _DETERMINISTIC.min_chunk_size for c in result.chunks)

    @pytest.mark.asyncio
    async def test_empty_input(self):
        from hrrag.indexing.chunker import smart_chunk_document

        assert (await smart_chunk_document([], "leeg.pdf", _DETERMINISTIC)).chunks == []
        blank = [PageText(1, "   "), PageText(2, "\n\n")]
        assert (await smart_chunk_document(blank, "leeg.pdf", _DETERMINISTIC)).chunks == []

    @pytest.mark.asyncio
    async def test_headers_disabled(self):
        from dataclasses import replace

        from hrrag.indexing.chunker import smart_chunk_document

        options = replace(_DETERMINISTIC, enable_context_headers=False)
        result = await smart_chunk_document(_cao_pages(), "CAO 2025.pdf", options)
        assert all(c.context_header == "" for c in result.chunks)
        assert all(c.stored_content == c.content for c in result.chunks)

    @pytest.mark.asyncio
    async def test_semantic_failure_falls_back_to_boundaries(self):
        from dataclasses import replace

        from hrrag.indexing.chunker import smart_chunk_document

        pages = _cao_pages() * 2
        options = replace(_DETERMINISTIC, enable_semantic_chunking=True)
        mock_client = _mock_llm(error=RuntimeError("API down"))
        with _override_settings(llm_api_key="test-key"), patch(
            "hrrag.llm.AsyncOpenAI", return_value=mock_client
        ), warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = await smart_chunk_document(pages, "CAO 2025.pdf", options)

        assert any("falling back" in str(w.message) for w in caught)
        assert len(result.chunks) > 1
        assert result.cost == 0.0

    @pytest.mark.asyncio
    async def test_semantic_chunks_from_markers(self):
        from dataclasses import replace

        from hrrag.indexing.chunker import combine_pages, smart_chunk_document
        from hrrag.indexing.semantic_chunker import CHUNK_MARKER

        pages = _cao_pages()
        full_text = combine_pages(pages)
        cut = full_text.index("Artikel 4.3")
        marked = full_text[:cut] + CHUNK_MARKER + full_text[cut:]
        options = replace(_DETERMINISTIC, enable_semantic_chunking=True)
        with _override_settings(llm_api_key="test-key"), patch(
            "hrrag.llm.AsyncOpenAI", return_value=_mock_llm(marked)
        ):
            result = await smart_chunk_document(pages, "CAO 2025.pdf", options)

        assert len(result.chunks) == 2
        assert result.chunks[1].content.startswith("Artikel 4.3")
        assert result.tokens_used == 150
        assert result.cost > 0

    @pytest.mark.asyncio
    async def test_undivided_semantic_output_falls_back_to_boundaries(self):
        from hrrag.indexing.chunker import combine_pages, smart_chunk_document

        pages = [PageText(1, "Artikel 1 Loon\n" + (FILLER * 10 + "\n\n") * 12)]
        full_text = combine_pages(pages)
        options = SmartChunkingOptions(
            target_chunk_size=1500,
            min_chunk_size=200,
            max_chunk_size=2500,
            enable_semantic_chunking=True,
        )
        with _override_settings(llm_api_key="test-key"), patch(
            "hrrag.llm.AsyncOpenAI", return_value=_mock_llm(full_text)
        ):
            result = await smart_chunk_document(pages, "Loon.pdf", options)

        assert len(full_text) > options.max_chunk_size
        assert len(result.chunks) > 1
        assert all(len(c.content) <= options.max_chunk_size for c in result.chunks)
        assert result.chunks[-1].end_char == len(full_text)
        assert result.tokens_used > 0


# ---------------------------------------------------------------------------
# Semantic chunker
# ---------------------------------------------------------------------------


class TestSemanticChunker:
    def test_parse_chunks_from_output(self):
        from hrrag.indexing.semantic_chunker import CHUNK_MARKER, parse_chunks_from_output

        output = f"een\n{CHUNK_MARKER}\ntwee{CHUNK_MARKER}  {CHUNK_MARKER}drie"
        assert parse_chunks_from_output(output) == ["een", "twee", "drie"]

    def test_split_into_sections_prefers_paragraphs(self):
        from hrrag.indexing.semantic_chunker import split_into_sections

        text = "a" * 900 + "\n\n" + "b" * 900
        sections = split_into_sections(text, max_length=1000)
        assert sections == ["a" * 900, "b" * 900]

    @pytest.mark.asyncio
    async def test_short_text_skips_llm(self):
        from hrrag.indexing.semantic_chunker import semantic_chunk

        with patch("hrrag.llm.AsyncOpenAI") as mock_cls:
            result = await semantic_chunk("Korte tekst.")
        mock_cls.assert_not_called()
        assert result.chunks == ["Korte tekst."]
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_missing_key_degrades(self):
        from hrrag.indexing.semantic_chunker import semantic_chunk

        text = FILLER * 20
        with _override_settings(
            llm_api_key=None, openai_api_key=None, llm_base_url="https://api.openai.com/v1"
        ), warnings.catch_warnings(record=True):
            warnings.simplefilter("always")
            result = await semantic_chunk(text)
        assert result.degraded
        assert result.chunks == [text.strip()]
        assert result.cost == 0.0

    @pytest.mark.asyncio
    async def test_detect_boundaries_garbage_returns_zero(self):
        from hrrag.indexing.semantic_chunker import detect_boundaries

        with _override_settings(llm_api_key="test-key"), patch(
            "hrrag.llm.AsyncOpenAI", return_value=_mock_llm("geen idee")
        ), warnings.catch_warnings(record=True):
            warnings.simplefilter("always")
            assert await detect_boundaries(FILLER * 10) == [0]

    @pytest.mark.asyncio
    async def test_detect_boundaries_parses_array(self):
        from hrrag.indexing.semantic_chunker import detect_boundaries

        with _override_settings(llm_api_key="test-key"), patch(
            "hrrag.llm.AsyncOpenAI", return_value=_mock_llm("Posities: [0, 120, 99999, 47]")
        ):
            assert await detect_boundaries(FILLER * 10) == [0, 47, 120]


class TestLocateChunkSpans:
    def test_maps_chunks_to_offsets(self):
        from hrrag.indexing.chunker import locate_chunk_spans

        text = "Eerste deel. Tweede deel. Derde deel."
        spans = locate_chunk_spans(text, ["Eerste deel.", "Tweede deel.", "Derde deel."])
        assert spans == [(0, 13), (13, 26), (26, len(text))]

    def test_paraphrased_chunk_is_absorbed(self):
        from hrrag.indexing.chunker import locate_chunk_spans

        text = "Eerste deel. Tweede deel. Derde deel."
        spans = locate_chunk_spans(text, ["Eerste deel.", "Iets anders.", "Derde deel."])
        assert spans == [(0, 26), (26, len(text))]


class TestPageHelpers:
    def test_combine_skips_blank_pages(self):
        from hrrag.indexing.chunker import combine_pages

        pages = [PageText(1, "  Aap  "), PageText(2, "   "), PageText(3, "Noot mies")]
        assert combine_pages(pages) == "Aap\n\nNoot mies"

    def test_find_page_for_position(self):
        from hrrag.indexing.chunker import find_page_for_position

        pages = [PageText(1, "  Aap  "), PageText(2, "   "), PageText(3, "Noot mies")]
        assert find_page_for_position(pages, 0) == 1
        assert find_page_for_position(pages, 4) == 1
        assert find_page_for_position(pages, 5) == 3
        assert find_page_for_position(pages, 500) == 3
        assert find_page_for_position([], 0) is None

    def test_word_count(self):
        from hrrag.indexing.chunker import word_count

        assert word_count("Het  vakantiegeld\nbedraagt 8%") == 4
        assert word_count("") == 0


# ---------------------------------------------------------------------------
# Legacy chunker
# ---------------------------------------------------------------------------


class TestLegacyChunker:
    def test_paragraph_accumulation(self):
        from hrrag.indexing.chunker import chunk_text

        text = "A" * 60 + "\n\n" + "B" * 60 + "\n\n" + "C" * 10
        chunks = chunk_text(text, 4, LegacyChunkingOptions(chunk_size=100, min_chunk_size=20))
        assert [c.content for c in chunks] == ["A" * 60, "B" * 60 + "\n\n" + "C" * 10]
        assert chunks[1].start_char == 62
        assert all(c.page_number == 4 for c in chunks)

    def test_offsets_survive_wide_paragraph_gaps(self):
        from hrrag.indexing.chunker import chunk_text

        text = "A" * 150 + "\n\n\n\n" + "B" * 150 + "\n \n" + "C" * 950
        chunks = chunk_text(text)

        assert [(c.start_char, c.end_char) for c in chunks] == [(0, 304), (307, 1257)]
        for chunk in chunks:
            span = text[chunk.start_char : chunk.end_char]
            assert span[:5] == chunk.content[:5]
            assert span[-5:] == chunk.content[-5:]

    def test_undersized_accumulation_carried_forward(self):
        from hrrag.indexing.chunker import chunk_text

        text = "A" * 10 + "\n\n" + "B" * 95
        chunks = chunk_text(text, 1, LegacyChunkingOptions(chunk_size=100, min_chunk_size=20))
        assert len(chunks) == 1
        assert "A" * 10 in chunks[0].content and "B" * 95 in chunks[0].content

    def test_empty_text(self):
        from hrrag.indexing.chunker import chunk_text

        assert chunk_text("  \n\n \t ") == []

    def test_document_indices_are_global(self):
        from hrrag.indexing.chunker import chunk_document

        options = LegacyChunkingOptions(chunk_size=100, min_chunk_size=20)
        pages = [
            PageText(1, "A" * 60 + "\n\n" + "B" * 60),
            PageText(2, "C" * 60 + "\n\n" + "D" * 60),
        ]
        chunks = chunk_document(pages, options)
        assert [c.chunk_index for c in chunks] == [0, 1, 2, 3]
        assert [c.page_number for c in chunks] == [1, 1, 2, 2]


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------


def _fake_embedding_client(dimensions: int = 1536) -> MagicMock:
    def _create(model: str, input: list[str], dimensions: int = dimensions) -> MagicMock:
        response = MagicMock()
        response.data = [
            MagicMock(index=i, embedding=[float(len(text))] * dimensions)
            for i, text in reversed(list(enumerate(input)))
        ]
        response.usage = MagicMock(total_tokens=10 * len(input))
        return response

    client = MagicMock()
    client.embeddings.create = MagicMock(side_effect=_create)
    return client


class TestEmbedder:
    def test_batches_preserve_order(self):
        from hrrag.indexing import embedder

        texts = ["a", "bb", "ccc", "dddd", "eeeee"]
        with _override_settings(embedding_batch_size=2, embedding_max_workers=2), patch.object(
            embedder, "_get_client", return_value=_fake_embedding_client()
        ):
            result = embedder.embed_texts_with_usage(texts)

        assert [vector[0] for vector in result.embeddings] == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert result.total_tokens == 50
        assert result.total_cost == pytest.approx(50 / 1_000_000 * 0.02)

    def test_empty_input(self):
        from hrrag.indexing.embedder import embed_texts_with_usage

        result = embed_texts_with_usage([])
        assert result.embeddings == [] and result.total_tokens == 0

    def test_embed_text_single(self):
        from hrrag.indexing import embedder

        with patch.object(embedder, "_get_client", return_value=_fake_embedding_client()):
            result = embedder.embed_text("ziekmelding")
        assert len(result.embedding) == 1536
        assert result.tokens == 10

    def test_dimension_mismatch_raises(self):
        from hrrag.indexing import embedder

        def _create(model, input, dimensions):
            response = MagicMock()
            response.data = [MagicMock(index=i, embedding=[0.0] * 8) for i in range(len(input))]
            response.usage = MagicMock(total_tokens=1)
            return response

        client = MagicMock()
        client.embeddings.create = MagicMock(side_effect=_create)
        with patch.object(embedder, "_get_client", return_value=client):
            with pytest.raises(ValueError, match="dimension mismatch"):
                embedder.embed_texts_with_usage(["x"])

    def test_unknown_model(self):
        from hrrag.errors import ConfigurationError
        from hrrag.indexing.embedder import get_model_config

        with pytest.raises(ConfigurationError):
            get_model_config("text-embedding-ada-001")

    def test_missing_key_is_configuration_error(self):
        from hrrag.errors import ConfigurationError
        from hrrag.indexing import embedder

        with _override_settings(
            embedding_api_key=None,
            openai_api_key=None,
            embedding_base_url="https://api.openai.com/v1",
        ), patch.object(embedder, "_CLIENT", None):
            with pytest.raises(ConfigurationError):
                embedder.embed_texts_with_usage(["x"])

    def test_estimates(self):
        from hrrag.indexing.embedder import estimate_embedding_cost, estimate_tokens

        assert estimate_tokens("abcde") == 2
        assert estimate_embedding_cost(["a" * 400]) == pytest.approx(100 / 1_000_000 * 0.02)


# ---------------------------------------------------------------------------
# Metadata generation
# ---------------------------------------------------------------------------


class TestMetadataGeneration:
    @pytest.mark.asyncio
    async def test_parses_and_filters(self):
        from hrrag.indexing.metadata import generate_chunk_metadata

        payload = {
            "summary": " Betaaldata voor 2025. ",
            "keywords": [f"k{i}" for i in range(10)],
            "topics": ["Salaris", "astrologie", "salaris"],
            "alternativeTerms": ["wanneer krijg ik geld", "", 42],
        }
        with _override_settings(llm_api_key="test-key"), patch(
            "hrrag.llm.AsyncOpenAI", return_value=_mock_llm(json.dumps(payload))
        ):
            result = await generate_chunk_metadata("De betaaldata zijn ...", "Betaaldata 2025.pdf")

        assert result.metadata.summary == "Betaaldata voor 2025."
        assert len(result.metadata.keywords) == 7
        assert result.metadata.topics == ["salaris"]
        assert result.metadata.alternative_terms == ["wanneer krijg ik geld"]
        assert result.input_tokens == 100 and result.output_tokens == 50
        assert result.cost > 0

    @pytest.mark.asyncio
    async def test_malformed_output_yields_empty(self):
        from hrrag.indexing.metadata import generate_chunk_metadata

        with _override_settings(llm_api_key="test-key"), patch(
            "hrrag.llm.AsyncOpenAI", return_value=_mock_llm("[1, 2, 3]")
        ), warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = await generate_chunk_metadata("tekst")

        assert result.metadata.is_empty
        assert result.cost == 0.0
        assert any("empty metadata" in str(w.message) for w in caught)

    @pytest.mark.asyncio
    async def test_batch_keys_by_chunk_index(self):
        from hrrag.indexing.metadata import generate_metadata_batch

        payload = json.dumps({"summary": "s", "keywords": ["k"], "topics": [], "alternativeTerms": []})
        mock_client = _mock_llm(payload)
        with _override_settings(llm_api_key="test-key", metadata_batch_delay_ms=0), patch(
            "hrrag.llm.AsyncOpenAI", return_value=mock_client
        ):
            result = await generate_metadata_batch(
                [(0, "een"), (1, "twee"), (5, "drie")], concurrency=2
            )

        assert sorted(result.results) == [0, 1, 5]
        assert mock_client.chat.completions.create.await_count == 3
        assert result.total_tokens == 450
