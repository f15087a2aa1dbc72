"""MCP tool definitions: ``search``, ``ingest``, ``status``.

  ``search``  Retrieve cited context from a tenant's HR documents.
  ``ingest``  Process a PDF from the server's filesystem into a tenant's
              corpus (chunk, enrich, embed, store).
  ``status``  Report a tenant's corpus health and document list.

Handlers access the shared ``RetrievalEngine`` via the lifespan state
dict.  Failures are raised as ``ToolError`` via ``errors.py`` so the
reasoning model always gets structured feedback it can relay.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from mcp.server.fastmcp import Context

from config import settings
from hrrag.ingestion.processor import process_document
from hrrag.ingestion.store import DocumentStore
from hrrag.mcp_server import errors
from hrrag.mcp_server.formatter import format_context, format_status
from hrrag.orchestration.engine import RetrievalEngine
from hrrag.orchestration.models import ContextResponse

logger = logging.getLogger(__name__)

PDF_SUFFIX = ".pdf"


def _get_engine(ctx: Context) -> RetrievalEngine:
    return ctx.request_context.lifespan_context["engine"]


# ── search ────────────────────────────────────────────────────


async def search(
    tenant_id: str,
    query: str,
    ctx: Context,
    top_k: int | None = None,
) -> str:
    """Search a tenant's HR documents and return cited context."""
    engine = _get_engine(ctx)
    await ctx.info(f"Searching documents of tenant {tenant_id}…")

    try:
        response: ContextResponse = await asyncio.wait_for(
            engine.retrieve_context(tenant_id, query, top_k=top_k),
            timeout=settings.mcp_tool_timeout,
        )
    except asyncio.TimeoutError:
        logger.error("search tool timed out after %ds", settings.mcp_tool_timeout)
        errors.timeout(settings.mcp_tool_timeout)
    except Exception as exc:
        logger.error("search tool failed: %r", exc, exc_info=True)
        errors.full_failure(exc)

    if response.is_empty:
        return errors.empty_results(
            tenant_id=tenant_id,
            search_type=response.rag_details.search.type,
            total_ms=response.rag_details.timing.total_ms,
        )
    return format_context(response)


# ── ingest ────────────────────────────────────────────────────


async def ingest(tenant_id: str, file_path: str, ctx: Context) -> str:
    """Process a PDF into the tenant's corpus and report the outcome."""
    path = Path(file_path).expanduser()
    if not path.is_file():
        errors.full_failure(FileNotFoundError(f"No such file: {file_path}"))
    if path.suffix.lower() != PDF_SUFFIX:
        errors.full_failure(ValueError(f"Only PDF files can be ingested, got {path.name}"))

    await ctx.info(f"Ingesting {path.name} for tenant {tenant_id}…")
    try:
        data = await asyncio.to_thread(path.read_bytes)
        result = await asyncio.wait_for(
            process_document(tenant_id, path.name, data, file_path=str(path)),
            timeout=settings.mcp_tool_timeout,
        )
    except asyncio.TimeoutError:
        logger.error("ingest tool timed out after %ds", settings.mcp_tool_timeout)
        errors.timeout(settings.mcp_tool_timeout)
    except Exception as exc:
        logger.error("ingest tool failed: %r", exc, exc_info=True)
        errors.full_failure(exc)

    if not result.success:
        errors.full_failure(RuntimeError(result.error or "processing failed"))

    return "\n".join(
        [
            "[INGESTED]",
            f"File: {path.name}",
            f"Document id: {result.document_id}",
            f"Chunks created: {result.chunks_created}",
            f"Tokens: {result.total_tokens:,}",
            (
                f"Cost: ${result.total_cost:.6f} "
                f"(chunking: ${result.chunking_cost:.6f}, "
                f"metadata: ${result.metadata_cost:.6f})"
            ),
        ]
    )


# ── status ────────────────────────────────────────────────────


async def status(tenant_id: str, ctx: Context) -> str:
    """Report document and chunk counts plus the tenant's document list."""
    engine = _get_engine(ctx)
    try:
        health = await engine.check_rag_health(tenant_id)
        conn = await engine._acquire_connection()
        try:
            documents = await DocumentStore(conn).list_documents(tenant_id)
        finally:
            await engine._release_connection(conn)
    except Exception as exc:
        logger.error("status tool failed: %r", exc, exc_info=True)
        errors.full_failure(exc)

    return format_status(tenant_id, health, documents)
