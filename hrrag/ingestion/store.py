from __future__ import annotations

import logging
from uuid import UUID, uuid4

from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from config import settings
from hrrag.errors import DocumentNotFoundError
from hrrag.indexing.models import StructuredChunk
from hrrag.ingestion.models import DocumentRecord, DocumentStatus

# ────────────────────────────────────────────────────────────────
# store.py: Postgres persistence for documents and their chunks
#
# Write protocol for one document:
#   1. begin_document()  - upsert the documents row as 'processing'
#      (autocommitted so the status is visible while work runs).
#   2. replace_chunks()  - inside a single transaction: lock the
#      documents row, delete every existing chunk, insert the new
#      chunks in batches of CHUNK_INSERT_BATCH_SIZE via executemany,
#      then mark the document 'completed' with its counts.
#      A failure anywhere rolls the whole step back, so the
#      previous chunk set survives a failed reprocess.
#   3. mark_failed()     - record the error on the documents row.
#
# Every read and delete is scoped by tenant_id.
# ────────────────────────────────────────────────────────────────

logger = logging.getLogger(__name__)

_DOCUMENT_COLUMNS = """
    id, tenant_id, filename, file_path, total_pages, total_chunks,
    processing_status, processing_error, created_at
"""


def _chunk_rows(
    tenant_id: str, document_id: UUID, chunks: list[StructuredChunk]
) -> list[dict[str, object]]:
    rows = []
    for chunk in chunks:
        if chunk.embedding is None:
            raise ValueError(f"Chunk {chunk.chunk_index} has no embedding.")
        rows.append(
            {
                "id": uuid4(),
                "tenant_id": tenant_id,
                "document_id": document_id,
                "content": chunk.stored_content,
                "embedding": chunk.embedding,
                "page_number": chunk.page_number,
                "chunk_index": chunk.chunk_index,
                "metadata": Jsonb(chunk.metadata_json()),
            }
        )
    return rows


class DocumentStore:
    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def begin_document(
        self,
        tenant_id: str,
        filename: str,
        *,
        document_id: UUID | None = None,
        file_path: str | None = None,
        file_size: int | None = None,
        mime_type: str | None = None,
    ) -> UUID:
        document_id = document_id or uuid4()
        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO documents (
                    id, tenant_id, filename, file_path, file_size, mime_type, processing_status
                )
                VALUES (
                    %(id)s, %(tenant_id)s, %(filename)s, %(file_path)s, %(file_size)s,
                    %(mime_type)s, %(status)s
                )
                ON CONFLICT (id) DO UPDATE SET
                    processing_status = EXCLUDED.processing_status,
                    processing_error = NULL,
                    file_size = COALESCE(EXCLUDED.file_size, documents.file_size),
                    updated_at = NOW()
                WHERE documents.tenant_id = EXCLUDED.tenant_id
                """,
                {
                    "id": document_id,
                    "tenant_id": tenant_id,
                    "filename": filename,
                    "file_path": file_path,
                    "file_size": file_size,
                    "mime_type": mime_type,
                    "status": DocumentStatus.PROCESSING.value,
                },
            )
            if cur.rowcount == 0:
                # the id exists but belongs to another tenant
                raise DocumentNotFoundError(str(document_id))
        return document_id

    async def replace_chunks(
        self,
        tenant_id: str,
        document_id: UUID,
        chunks: list[StructuredChunk],
        *,
        total_pages: int,
    ) -> None:
        rows = _chunk_rows(tenant_id, document_id, chunks)
        batch_size = max(1, settings.chunk_insert_batch_size)

        async with self._conn.transaction():
            async with self._conn.cursor() as cur:
                await cur.execute(
                    "SELECT id FROM documents WHERE id = %s AND tenant_id = %s FOR UPDATE",
                    (document_id, tenant_id),
                )
                if await cur.fetchone() is None:
                    raise DocumentNotFoundError(str(document_id))

                await cur.execute(
                    "DELETE FROM document_chunks WHERE document_id = %s", (document_id,)
                )
                for start in range(0, len(rows), batch_size):
                    await cur.executemany(
                        """
                        INSERT INTO document_chunks (
                            id, tenant_id, document_id, content, embedding,
                            page_number, chunk_index, metadata
                        )
                        VALUES (
                            %(id)s, %(tenant_id)s, %(document_id)s, %(content)s, %(embedding)s,
                            %(page_number)s, %(chunk_index)s, %(metadata)s
                        )
                        """,
                        rows[start : start + batch_size],
                    )

                await cur.execute(
                    """
                    UPDATE documents SET
                        processing_status = %(status)s,
                        processing_error = NULL,
                        total_pages = %(total_pages)s,
                        total_chunks = %(total_chunks)s,
                        updated_at = NOW()
                    WHERE id = %(id)s
                    """,
                    {
                        "id": document_id,
                        "status": DocumentStatus.COMPLETED.value,
                        "total_pages": total_pages,
                        "total_chunks": len(rows),
                    },
                )
        logger.debug("stored %d chunks for document %s", len(rows), document_id)

    async def mark_failed(self, document_id: UUID, error: str) -> None:
        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE documents SET
                    processing_status = %s, processing_error = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (DocumentStatus.FAILED.value, error, document_id),
            )

    async def get_document(self, tenant_id: str, document_id: UUID) -> DocumentRecord:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = %s AND tenant_id = %s",
                (document_id, tenant_id),
            )
            row = await cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(str(document_id))
        return DocumentRecord(**row)

    async def list_documents(self, tenant_id: str) -> list[DocumentRecord]:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                SELECT {_DOCUMENT_COLUMNS} FROM documents
                WHERE tenant_id = %s
                ORDER BY created_at DESC
                """,
                (tenant_id,),
            )
            rows = await cur.fetchall()
        return [DocumentRecord(**row) for row in rows]

    async def delete_document(self, tenant_id: str, document_id: UUID) -> None:
        # chunks go with the row (ON DELETE CASCADE)
        async with self._conn.cursor() as cur:
            await cur.execute(
                "DELETE FROM documents WHERE id = %s AND tenant_id = %s",
                (document_id, tenant_id),
            )
            if cur.rowcount == 0:
                raise DocumentNotFoundError(str(document_id))
