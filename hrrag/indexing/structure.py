"""Regex-driven detection of document hierarchy.

HR documents (CAO's, handbooks, regulations) are organised as chapters,
articles and sections.  ``detect_structure`` scans the text line by line
and returns the headings it recognises as a flat, position-sorted list;
``build_hierarchy`` folds that list into an arena-backed tree that the
chunking orchestrator uses for breadcrumbs ("[Doc > Hoofdstuk 4 >
Artikel 4.3 Vakantiegeld]").

No match is a normal outcome: callers get an empty list and fall back
to position-only context headers.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, replace
from typing import Callable

from hrrag.indexing.models import StructureNode, StructureTree, StructureType

_DASHES = r"[:\-–.]?"


@dataclass(frozen=True)
class _StructurePattern:
    name: str
    regex: re.Pattern[str]
    type: StructureType
    level: int
    identifier: Callable[[re.Match[str]], str | None]
    title: Callable[[re.Match[str]], str]


def _group(n: int) -> Callable[[re.Match[str]], str]:
    return lambda m: m.group(n) or ""


# Evaluated in order; the first pattern matching a line wins.
STRUCTURE_PATTERNS: tuple[_StructurePattern, ...] = (
    _StructurePattern(
        name="chapter",
        regex=re.compile(
            rf"^(?:HOOFDSTUK|Hoofdstuk|CHAPTER|Chapter)\s+(\d+)\s*{_DASHES}\s*(.*)$",
            re.IGNORECASE,
        ),
        type=StructureType.CHAPTER,
        level=1,
        identifier=lambda m: f"Hoofdstuk {m.group(1)}",
        title=_group(2),
    ),
    _StructurePattern(
        name="article",
        regex=re.compile(
            rf"^(?:ARTIKEL|Artikel|ART\.?|Art\.?|ARTICLE|Article)\s+(\d+(?:\.\d+)*)\s*{_DASHES}\s*(.*)$",
            re.IGNORECASE,
        ),
        type=StructureType.ARTICLE,
        level=2,
        identifier=lambda m: f"Artikel {m.group(1)}",
        title=_group(2),
    ),
    _StructurePattern(
        name="section",
        regex=re.compile(
            rf"^(?:§|SECTION|Section|SECTIE|Sectie)\s*(\d+(?:\.\d+)*)\s*{_DASHES}\s*(.*)$",
            re.IGNORECASE,
        ),
        type=StructureType.SECTION,
        level=2,
        identifier=lambda m: f"§ {m.group(1)}",
        title=_group(2),
    ),
    _StructurePattern(
        name="numbered_section",
        regex=re.compile(r"^(\d+(?:\.\d+)*)\.\s+([A-Z][a-zA-Z\s]{2,50})$"),
        type=StructureType.SECTION,
        level=2,
        identifier=lambda m: m.group(1),
        title=_group(2),
    ),
    _StructurePattern(
        name="caps_header",
        regex=re.compile(r"^([A-Z][A-Z\s]{9,60})$"),
        type=StructureType.HEADER,
        level=1,
        identifier=lambda m: None,
        title=_group(1),
    ),
    _StructurePattern(
        name="letter_subsection",
        regex=re.compile(r"^(?:\(([a-z])\)|([a-z])[.)])\s+(.+)$", re.IGNORECASE),
        type=StructureType.SECTION,
        level=3,
        identifier=lambda m: m.group(1) or m.group(2),
        title=_group(3),
    ),
)

# Page markers, dates and numbering that are all caps but never headings.
_CAPS_DENYLIST = re.compile(r"^(PDF|PAGE|PAGINA|DATUM|DATE|NR|NO)\s", re.IGNORECASE)


def _is_valid_caps_header(line: str) -> bool:
    if len(line.split()) < 2:
        return False
    return not _CAPS_DENYLIST.match(line)


def _match_line(line: str) -> tuple[_StructurePattern, re.Match[str]] | None:
    for pattern in STRUCTURE_PATTERNS:
        match = pattern.regex.match(line)
        if match is None:
            continue
        if pattern.type is StructureType.HEADER and not _is_valid_caps_header(line):
            continue
        return pattern, match
    return None


def detect_structure(text: str) -> list[StructureNode]:
    """Return the headings found in *text* in document order.

    ``start_index`` is the offset of the heading's line; ``end_index`` runs
    up to the character before the next heading (or to the end of text).
    """
    found: list[tuple[_StructurePattern, re.Match[str], int]] = []
    offset = 0
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped:
            matched = _match_line(stripped)
            if matched is not None:
                found.append((matched[0], matched[1], offset))
        offset += len(line) + 1

    nodes: list[StructureNode] = []
    for i, (pattern, match, start) in enumerate(found):
        end = found[i + 1][2] - 1 if i + 1 < len(found) else len(text)
        title = pattern.title(match).strip() or None
        nodes.append(
            StructureNode(
                type=pattern.type,
                level=pattern.level,
                start_index=start,
                end_index=max(start, end),
                identifier=pattern.identifier(match),
                title=title,
                index=i,
            )
        )
    return nodes


def build_hierarchy(
    nodes: list[StructureNode], text_length: int | None = None
) -> StructureTree:
    """Fold a flat heading list into a tree with a level-aware stack.

    The returned arena has the synthetic root at index 0 and the input
    nodes at ``i + 1``.  Each node's ``end_index`` is widened to cover its
    descendants so every child lies inside its parent's span.
    """
    ordered = sorted(nodes, key=lambda n: n.start_index)
    parents: list[int | None] = [None]
    children: list[list[int]] = [[]]
    ends: list[int] = [0]
    levels: list[int] = [0]

    stack: list[int] = [0]
    for position, node in enumerate(ordered, start=1):
        while len(stack) > 1 and levels[stack[-1]] >= node.level:
            stack.pop()
        parent = stack[-1]
        parents.append(parent)
        children.append([])
        ends.append(node.end_index)
        levels.append(node.level)
        children[parent].append(position)
        stack.append(position)

    # Children always follow their parent in the arena, so a reverse pass
    # propagates subtree ends upward in one sweep.
    for index in range(len(ordered), 0, -1):
        parent = parents[index]
        if parent is not None:
            ends[parent] = max(ends[parent], ends[index])
    if text_length is not None:
        ends[0] = max(ends[0], text_length)

    root = StructureNode(
        type=StructureType.HEADER,
        level=0,
        start_index=0,
        end_index=ends[0],
        identifier="root",
        title="Document",
        index=0,
        parent=None,
        children=tuple(children[0]),
    )
    arena = [root]
    for position, node in enumerate(ordered, start=1):
        arena.append(
            replace(
                node,
                index=position,
                end_index=ends[position],
                parent=parents[position],
                children=tuple(children[position]),
            )
        )
    return StructureTree(nodes=tuple(arena))


def get_structure_path(tree: StructureTree, index: int) -> list[str]:
    """Breadcrumb labels from the top-level ancestor down to *index*."""
    path: list[str] = []
    node = tree.nodes[index]
    while node.parent is not None:
        label = node.label
        if label:
            path.append(label)
        node = tree.nodes[node.parent]
    path.reverse()
    return path


def find_structure_at_position(
    nodes: list[StructureNode], position: int
) -> StructureNode | None:
    """The heading whose section contains *position* (last one starting at or before it)."""
    found: StructureNode | None = None
    for node in nodes:
        if node.start_index > position:
            break
        found = node
    return found


_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)


def generate_context_header(document_name: str, structure_path: list[str]) -> str:
    doc_name = _PDF_SUFFIX.sub("", document_name).strip()
    if not structure_path:
        return f"[{doc_name}]"
    return f"[{doc_name} > {' > '.join(structure_path)}]"


def has_structure_marker(text: str) -> bool:
    """True when any line of *text* looks like a heading."""
    return any(
        _match_line(line.strip()) is not None for line in text.split("\n") if line.strip()
    )


def get_structure_summary(nodes: list[StructureNode]) -> str:
    counts = Counter(node.type.value for node in nodes)
    if not counts:
        return "no structures"
    return ", ".join(
        f"{count} {name}{'s' if count > 1 else ''}" for name, count in counts.items()
    )
