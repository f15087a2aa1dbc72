"""HR RAG MCP server: entry point.

Creates the ``FastMCP`` instance, registers the lifespan context
manager (engine start/stop) and the tools, and runs the server with
the configured transport.

Transport modes:
  - ``stdio`` (default): the MCP client launches this process as a
    subprocess and talks over stdin/stdout.
  - ``streamable-http``: HTTP transport on ``MCP_HOST:MCP_PORT``,
    optionally guarded by ``MCP_AUTH_TOKEN``.

Logging constraint:
  stdio transport uses stdout for protocol messages, so all
  application logging goes to stderr (``_configure_logging()``).

Usage::

    python -m hrrag.mcp_server                        # stdio (default)
    python -m hrrag.mcp_server --transport streamable-http
"""

from __future__ import annotations

import argparse
import logging
import secrets
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from config import settings
from hrrag.mcp_server.tools import ingest, search, status
from hrrag.orchestration.engine import RetrievalEngine

logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Own the ``RetrievalEngine`` connection pool for the server's lifetime.

    The yielded dict becomes ``ctx.request_context.lifespan_context``
    in every tool handler.
    """
    engine = RetrievalEngine()
    await engine.start()
    logger.info("RetrievalEngine started")
    try:
        yield {"engine": engine}
    finally:
        await engine.stop()
        logger.info("RetrievalEngine stopped")


# ── Server factory ────────────────────────────────────────────


def create_server() -> FastMCP:
    mcp = FastMCP(
        "HR RAG",
        instructions=(
            "HR RAG answers questions from an organisation's own HR documents "
            "(CAO, personeelshandboek, verzuimbeleid, salary calendars). "
            "Every call needs the tenant_id of the organisation. "
            "Use 'search' to retrieve cited context for a question, "
            "'ingest' to add a PDF to the tenant's corpus and "
            "'status' to see which documents are indexed."
            "\n\n"
            "RESPONSE FORMAT REQUIREMENTS:\n"
            "1. CITATIONS: every factual claim must cite its source document and "
            "page, e.g. [Source 1, p. 4]. Use the [SOURCES] and [CITATIONS] sections.\n"
            "2. Answer in the language the user asked in, even when the context "
            "is Dutch.\n"
            "3. If the tool returns no context, say so. Do not answer HR policy "
            "questions from general knowledge."
        ),
        lifespan=lifespan,
        host=settings.mcp_host,
        port=settings.mcp_port,
        log_level=settings.mcp_log_level.upper(),
    )

    mcp.add_tool(
        search,
        name="search",
        description=(
            "Search the HR documents of one tenant. The question may be in any "
            "language; it is translated to the document language, expanded with "
            "Dutch HR synonyms, searched (hybrid vector + keyword), reranked and "
            "returned as cited context.\n\n"
            "OUTPUT FORMAT:\n"
            "- [SOURCES]: numbered source files, reference these as [Source N]\n"
            "- [CONTEXT]: the retrieved passages with file, page and section headers\n"
            "- [CITATIONS]: short previews with page numbers and relevance scores\n"
            "- [STATS]: search type, timing and cost"
        ),
    )
    mcp.add_tool(
        ingest,
        name="ingest",
        description=(
            "Add a PDF from the server's filesystem to a tenant's corpus. The "
            "document is split into structure-aware chunks, enriched with "
            "metadata, embedded and stored. Slow for large documents."
        ),
    )
    mcp.add_tool(
        status,
        name="status",
        description=(
            "Report how many documents and chunks a tenant has indexed, with "
            "the processing status of each document. Use this before search to "
            "check that the tenant has content."
        ),
    )

    return mcp


# ── Entry point ───────────────────────────────────────────────


def _configure_logging() -> None:
    """Route all logging to stderr; stdout is reserved for the MCP protocol."""
    root = logging.getLogger()
    root.setLevel(settings.mcp_log_level.upper())
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(handler)


def _make_auth_middleware(token: str):
    """Starlette middleware rejecting requests without ``Authorization: Bearer <token>``."""
    from starlette.middleware import Middleware
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request
    from starlette.responses import Response

    class BearerAuthMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            auth_header = request.headers.get("authorization", "")
            if not auth_header.startswith("Bearer "):
                return Response("Unauthorized", status_code=401)
            if not secrets.compare_digest(auth_header[7:], token):
                return Response("Unauthorized", status_code=401)
            return await call_next(request)

    return Middleware(BearerAuthMiddleware)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="HR RAG MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "streamable-http"],
        default=settings.mcp_transport,
        help="MCP transport (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    _configure_logging()

    transport: str = args.transport
    mcp = create_server()

    logger.info("Starting HR RAG MCP server (transport=%s)", transport)

    if transport == "streamable-http" and settings.mcp_auth_token:
        import uvicorn
        from starlette.applications import Starlette
        from starlette.routing import Mount

        app = Starlette(
            routes=[Mount("/", app=mcp.streamable_http_app())],
            middleware=[_make_auth_middleware(settings.mcp_auth_token)],
        )
        logger.info("Auth enabled, listening on %s:%d", settings.mcp_host, settings.mcp_port)
        uvicorn.run(
            app,
            host=settings.mcp_host,
            port=settings.mcp_port,
            log_level=settings.mcp_log_level.lower(),
        )
    else:
        if transport == "streamable-http":
            logger.info(
                "Listening on %s:%d (no auth, MCP_AUTH_TOKEN not set)",
                settings.mcp_host, settings.mcp_port,
            )
        mcp.run(transport=transport)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
