"""Error response templates for MCP tool calls.

Each function raises ``ToolError`` (from FastMCP) so the MCP response is
marked ``is_error=True`` and the reasoning model does not mistake the
text for evidence.  The [ERROR] block tells the model to report the
failure instead of answering HR questions from memory.
"""

from __future__ import annotations

from typing import NoReturn

from mcp.server.fastmcp.exceptions import ToolError

from hrrag.errors import (
    DocumentExtractionError,
    DocumentNotFoundError,
    SearchUnavailableError,
    TenantValidationError,
)

_CAUSES: dict[type[BaseException], str] = {
    TenantValidationError: "The tenant id is unknown or the tenant is deactivated.",
    SearchUnavailableError: "The document search service is unavailable.",
    DocumentNotFoundError: "The requested document does not exist for this tenant.",
    DocumentExtractionError: "The file could not be read as a text PDF.",
}

_DEFAULT_CAUSES = (
    "- An external API (embedding, translation, reranker) may be unavailable.\n"
    "- The database connection may have failed."
)


def full_failure(exc: BaseException) -> NoReturn:
    """Raise a ``ToolError`` describing ``exc`` for the reasoning model."""
    cause = next(
        (text for kind, text in _CAUSES.items() if isinstance(exc, kind)),
        None,
    )
    raise ToolError(
        "[ERROR]\n"
        "HR RAG encountered an error.\n"
        "\n"
        f"Error type: {type(exc).__name__}\n"
        f"Details: {exc}\n"
        "\n"
        "Possible causes:\n"
        + (f"- {cause}" if cause else _DEFAULT_CAUSES)
        + "\n\n"
        "Please inform the user of this error. "
        "Do not attempt to answer from memory; "
        "HR policy answers must come from the tenant's own documents."
    )


def timeout(seconds: int | float) -> NoReturn:
    raise ToolError(
        "[ERROR]\n"
        f"HR RAG timed out after {int(seconds)}s.\n"
        "\n"
        "The pipeline did not complete within the allowed time. "
        "Large PDFs can take several minutes to chunk and embed.\n"
        "\n"
        "Suggestion: retry, or ask the user to split the document."
    )


def empty_results(*, tenant_id: str, search_type: str, total_ms: float) -> str:
    """Response for a query that matched nothing.

    Same section layout as a successful response so the model needs no
    separate parsing path.
    """
    return (
        "[SOURCES]\n"
        "(none)\n"
        "\n"
        "[CONTEXT]\n"
        f"No relevant content was found in the documents of tenant {tenant_id}.\n"
        "\n"
        "[STATS]\n"
        f"Search type: {search_type}\n"
        "Results: 0\n"
        f"Total time: {total_ms:.0f}ms"
    )
