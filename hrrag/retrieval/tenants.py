from __future__ import annotations

import logging

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row

from hrrag.errors import TenantValidationError
from hrrag.retrieval.models import RAGHealthCheck, TenantInfo

logger = logging.getLogger(__name__)


async def validate_tenant(conn: AsyncConnection, tenant_id: str) -> TenantInfo:
    """Return the tenant row; raise ``TenantValidationError`` if missing or inactive."""
    if not tenant_id:
        raise TenantValidationError(tenant_id, "is empty")
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            "SELECT id, name, is_active, document_language FROM tenants WHERE id = %s",
            (tenant_id,),
        )
        row = await cur.fetchone()
    if row is None:
        raise TenantValidationError(tenant_id, "not found")
    tenant = TenantInfo(**{**row, "document_language": row["document_language"] or "nl"})
    if not tenant.is_active:
        raise TenantValidationError(tenant_id, "is not active")
    logger.debug("tenant %s validated (%s)", tenant_id, tenant.name)
    return tenant


async def check_rag_health(conn: AsyncConnection, tenant_id: str) -> RAGHealthCheck:
    try:
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute("SELECT * FROM get_rag_stats(%s)", (tenant_id,))
            row = await cur.fetchone()
    except psycopg.Error as exc:
        logger.warning("health check for %s failed: %r", tenant_id, exc)
        return RAGHealthCheck(healthy=False, document_count=0, chunk_count=0, error=str(exc))
    row = row or {"total_documents": 0, "total_chunks": 0}
    return RAGHealthCheck(
        healthy=True,
        document_count=int(row["total_documents"] or 0),
        chunk_count=int(row["total_chunks"] or 0),
    )
