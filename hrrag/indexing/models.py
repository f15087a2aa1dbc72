# models.py defines the in-memory shapes the indexing layer passes around
# no database access or logic beyond small conveniences

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from config import settings


class StructureType(str, Enum):
    CHAPTER = "chapter"
    ARTICLE = "article"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    LIST = "list"
    TABLE = "table"
    HEADER = "header"


# one detected heading; parent/children are arena indices into StructureTree.nodes
# detect_structure() returns these flat (parent None, no children)
@dataclass(frozen=True)
class StructureNode:
    type: StructureType
    level: int
    start_index: int
    end_index: int
    identifier: str | None = None
    title: str | None = None
    index: int = -1
    parent: int | None = None
    children: tuple[int, ...] = ()

    @property
    def label(self) -> str:
        if self.identifier and self.title:
            return f"{self.identifier} {self.title}"
        return self.identifier or self.title or ""


# arena of structure nodes; nodes[0] is the synthetic document root
@dataclass(frozen=True)
class StructureTree:
    nodes: tuple[StructureNode, ...]

    @property
    def root(self) -> StructureNode:
        return self.nodes[0]

    def parent_of(self, index: int) -> StructureNode | None:
        parent = self.nodes[index].parent
        return None if parent is None else self.nodes[parent]

    def children_of(self, index: int) -> list[StructureNode]:
        return [self.nodes[i] for i in self.nodes[index].children]

    def depth(self, index: int) -> int:
        depth = 0
        node = self.nodes[index]
        while node.parent is not None:
            depth += 1
            node = self.nodes[node.parent]
        return depth

    def find_at(self, position: int) -> int | None:
        """Arena index of the deepest non-root node covering *position*."""
        found: int | None = None
        for node in self.nodes[1:]:
            if node.start_index > position:
                break
            if node.end_index >= position:
                found = node.index
        return found

    def to_dict(self) -> list[dict[str, object]]:
        return [
            {
                "index": node.index,
                "type": node.type.value,
                "identifier": node.identifier,
                "title": node.title,
                "level": node.level,
                "start_index": node.start_index,
                "end_index": node.end_index,
                "parent": node.parent,
                "children": list(node.children),
            }
            for node in self.nodes
        ]


@dataclass(frozen=True)
class PageText:
    page_number: int
    text: str


@dataclass(frozen=True)
class SmartChunkingOptions:
    target_chunk_size: int = 1500
    min_chunk_size: int = 200
    max_chunk_size: int = 2500
    overlap_percentage: int = 15
    enable_structure_detection: bool = True
    enable_semantic_chunking: bool = True
    enable_context_headers: bool = True
    enable_smart_boundaries: bool = True
    semantic_model: str = "gpt-4o-mini"
    batch_size: int = 10

    @classmethod
    def from_settings(cls) -> SmartChunkingOptions:
        return cls(
            target_chunk_size=settings.chunk_target_size,
            min_chunk_size=settings.chunk_min_size,
            max_chunk_size=settings.chunk_max_size,
            overlap_percentage=settings.chunk_overlap_percentage,
            enable_structure_detection=settings.smart_chunk_structure,
            enable_semantic_chunking=settings.smart_chunk_semantic,
            enable_context_headers=settings.smart_chunk_headers,
            enable_smart_boundaries=settings.smart_chunk_boundaries,
            semantic_model=settings.smart_chunk_model,
            batch_size=settings.semantic_batch_size,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "targetChunkSize": self.target_chunk_size,
            "minChunkSize": self.min_chunk_size,
            "maxChunkSize": self.max_chunk_size,
            "overlapPercentage": self.overlap_percentage,
            "enableStructureDetection": self.enable_structure_detection,
            "enableSemanticChunking": self.enable_semantic_chunking,
            "enableContextHeaders": self.enable_context_headers,
            "enableSmartBoundaries": self.enable_smart_boundaries,
            "semanticModel": self.semantic_model,
        }


@dataclass(frozen=True)
class LegacyChunkingOptions:
    chunk_size: int = 1000
    min_chunk_size: int = 100


# LLM enrichment for one chunk; all-empty when generation is off or failed
@dataclass
class ChunkMetadata:
    summary: str = ""
    keywords: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    alternative_terms: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.summary or self.keywords or self.topics or self.alternative_terms)


# central chunk object flowing from the chunking orchestrator to the store
@dataclass
class StructuredChunk:
    content: str
    context_header: str
    chunk_index: int
    start_char: int
    end_char: int
    page_number: int | None = None
    structure: StructureNode | None = None
    structure_path: list[str] = field(default_factory=list)
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    embedding: list[float] | None = None

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    @property
    def stored_content(self) -> str:
        """Text persisted and embedded: header breadcrumb plus body."""
        if self.context_header:
            return f"{self.context_header}\n\n{self.content}"
        return self.content

    def metadata_json(self) -> dict[str, object]:
        data: dict[str, object] = {
            "startChar": self.start_char,
            "endChar": self.end_char,
            "wordCount": self.word_count,
            "structureType": self.structure.type.value if self.structure else None,
            "structurePath": list(self.structure_path),
            "contextHeader": self.context_header,
            "section_title": self.structure_path[-1] if self.structure_path else None,
        }
        if not self.metadata.is_empty:
            data["summary"] = self.metadata.summary
            data["keywords"] = list(self.metadata.keywords)
            data["topics"] = list(self.metadata.topics)
            data["alternativeTerms"] = list(self.metadata.alternative_terms)
        return data


@dataclass
class TextChunk:
    """Legacy paragraph chunk."""

    content: str
    page_number: int
    chunk_index: int
    start_char: int
    end_char: int


@dataclass
class SmartChunkingResult:
    chunks: list[StructuredChunk]
    cost: float = 0.0
    tokens_used: int = 0
    structures_detected: int = 0
