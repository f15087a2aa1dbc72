"""Processing-log state machine (``document_processing_logs``).

    uploading -> parsing -> chunking -> embedding -> completed
         \\___________\\___________\\___________\\----> failed

Every transition is its own autocommitted statement so a crash mid
pipeline leaves the last reached phase on record.  The log is an audit
trail, not part of ingestion correctness: a failed log write is logged
and reported as ``False``, never raised.  Only the final "completed"
write is retried, with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID, uuid4

import psycopg
from psycopg import AsyncConnection, sql
from psycopg.types.json import Jsonb

from config import settings
from hrrag.ingestion.models import ProcessingStats, ProcessingStatus

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = frozenset(
    {
        "document_id",
        "total_pages",
        "chunks_created",
        "structures_detected",
        "metadata_generated",
        "upload_duration_ms",
        "parsing_duration_ms",
        "chunking_duration_ms",
        "embedding_duration_ms",
        "metadata_duration_ms",
    }
)


class ProcessingLogger:
    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def start(
        self,
        tenant_id: str,
        filename: str,
        *,
        document_id: UUID | None = None,
        file_size: int | None = None,
        mime_type: str | None = None,
        chunking_method: str = "smart",
        chunking_options: dict[str, Any] | None = None,
    ) -> UUID | None:
        log_id = uuid4()
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO document_processing_logs (
                        id, tenant_id, document_id, filename, file_size_bytes,
                        mime_type, processing_status, chunking_method, chunking_options
                    ) VALUES (
                        %(id)s, %(tenant_id)s, %(document_id)s, %(filename)s, %(file_size)s,
                        %(mime_type)s, %(status)s, %(method)s, %(options)s
                    )
                    """,
                    {
                        "id": log_id,
                        "tenant_id": tenant_id,
                        "document_id": document_id,
                        "filename": filename,
                        "file_size": file_size,
                        "mime_type": mime_type,
                        "status": ProcessingStatus.UPLOADING.value,
                        "method": chunking_method,
                        "options": Jsonb(chunking_options) if chunking_options else None,
                    },
                )
        except psycopg.Error as exc:
            logger.warning("processing log start failed for %s: %r", filename, exc)
            return None
        return log_id

    async def update(
        self, log_id: UUID | None, status: ProcessingStatus, **fields: Any
    ) -> bool:
        if log_id is None:
            return False
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown processing log columns: {sorted(unknown)}")

        assignments = [sql.SQL("processing_status = %(status)s")]
        assignments.extend(
            sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name))
            for name in fields
        )
        query = sql.SQL("UPDATE document_processing_logs SET {} WHERE id = %(id)s").format(
            sql.SQL(", ").join(assignments)
        )
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(query, {"id": log_id, "status": status.value, **fields})
        except psycopg.Error as exc:
            logger.warning("processing log %s -> %s failed: %r", log_id, status.value, exc)
            return False
        return True

    async def complete(self, log_id: UUID | None, stats: ProcessingStats) -> bool:
        if log_id is None:
            return False
        params = {
            "id": log_id,
            "status": ProcessingStatus.COMPLETED.value,
            "total_pages": stats.total_pages,
            "chunks_created": stats.chunks_created,
            "structures_detected": stats.structures_detected,
            "avg_chunk_size": stats.avg_chunk_size,
            "min_chunk_size": stats.min_chunk_size,
            "max_chunk_size": stats.max_chunk_size,
            "metadata_generated": stats.metadata_generated,
            "keywords_count": stats.keywords_count,
            "topics_count": stats.topics_count,
            "chunking_cost": stats.chunking_cost,
            "embedding_cost": stats.embedding_cost,
            "metadata_cost": stats.metadata_cost,
            "total_cost": stats.total_cost,
            "embedding_tokens": stats.embedding_tokens,
            "chunking_tokens": stats.chunking_tokens,
            "metadata_tokens": stats.metadata_tokens,
            "parsing_duration_ms": stats.parsing_duration_ms,
            "chunking_duration_ms": stats.chunking_duration_ms,
            "metadata_duration_ms": stats.metadata_duration_ms,
            "embedding_duration_ms": stats.embedding_duration_ms,
            "total_duration_ms": stats.total_duration_ms,
        }
        retries = max(1, settings.processing_log_retries)
        base_delay = settings.processing_log_retry_base_ms / 1000
        for attempt in range(retries):
            try:
                async with self._conn.cursor() as cur:
                    await cur.execute(
                        """
                        UPDATE document_processing_logs SET
                            processing_status = %(status)s,
                            total_pages = %(total_pages)s,
                            chunks_created = %(chunks_created)s,
                            structures_detected = %(structures_detected)s,
                            avg_chunk_size = %(avg_chunk_size)s,
                            min_chunk_size = %(min_chunk_size)s,
                            max_chunk_size = %(max_chunk_size)s,
                            metadata_generated = %(metadata_generated)s,
                            keywords_count = %(keywords_count)s,
                            topics_count = %(topics_count)s,
                            chunking_cost = %(chunking_cost)s,
                            embedding_cost = %(embedding_cost)s,
                            metadata_cost = %(metadata_cost)s,
                            total_cost = %(total_cost)s,
                            embedding_tokens = %(embedding_tokens)s,
                            chunking_tokens = %(chunking_tokens)s,
                            metadata_tokens = %(metadata_tokens)s,
                            parsing_duration_ms = %(parsing_duration_ms)s,
                            chunking_duration_ms = %(chunking_duration_ms)s,
                            metadata_duration_ms = %(metadata_duration_ms)s,
                            embedding_duration_ms = %(embedding_duration_ms)s,
                            total_duration_ms = %(total_duration_ms)s,
                            completed_at = NOW()
                        WHERE id = %(id)s
                        """,
                        params,
                    )
                return True
            except psycopg.Error as exc:
                if attempt + 1 >= retries:
                    logger.error(
                        "processing log %s completion failed after %d attempts: %r",
                        log_id, retries, exc,
                    )
                    return False
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "processing log %s completion failed (%r), retrying in %.1fs",
                    log_id, exc, delay,
                )
                await asyncio.sleep(delay)
        return False

    async def fail(
        self,
        log_id: UUID | None,
        error_message: str,
        error_phase: str,
        error_details: dict[str, Any] | None = None,
    ) -> bool:
        if log_id is None:
            return False
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(
                    """
                    UPDATE document_processing_logs SET
                        processing_status = %(status)s,
                        error_message = %(message)s,
                        error_phase = %(phase)s,
                        error_details = %(details)s,
                        completed_at = NOW()
                    WHERE id = %(id)s
                    """,
                    {
                        "id": log_id,
                        "status": ProcessingStatus.FAILED.value,
                        "message": error_message,
                        "phase": error_phase,
                        "details": Jsonb(error_details) if error_details else None,
                    },
                )
        except psycopg.Error as exc:
            logger.warning("processing log %s failure record failed: %r", log_id, exc)
            return False
        return True
