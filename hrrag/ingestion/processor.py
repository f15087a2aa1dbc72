from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from uuid import UUID

from pgvector.psycopg import register_vector_async
from psycopg import AsyncConnection

from config import settings
from hrrag.errors import DocumentExtractionError
from hrrag.indexing.chunker import chunk_document, smart_chunk_document
from hrrag.indexing.embedder import embed_texts_with_usage
from hrrag.indexing.metadata import generate_metadata_batch
from hrrag.indexing.models import (
    LegacyChunkingOptions,
    PageText,
    SmartChunkingOptions,
    StructuredChunk,
)
from hrrag.ingestion.models import (
    DocumentRecord,
    ProcessingResult,
    ProcessingStats,
    ProcessingStatus,
)
from hrrag.ingestion.pdf import PdfExtraction, extract_text_from_pdf
from hrrag.ingestion.processing_log import ProcessingLogger
from hrrag.ingestion.store import DocumentStore

# ────────────────────────────────────────────────────────────────
# processor.py: Document ingestion pipeline
#
# process_document() drives one file through five phases, each
# completing before the next begins:
#
#   ── Phase 1: parsing ─── PyMuPDF text per page
#   ── Phase 2: chunking ── smart (structure-aware) or legacy
#   ── Phase 3: metadata ── LLM enrichment, smart path only
#   ── Phase 4: embedding ─ header + content, concurrent batches
#   ── Phase 5: storing ─── one transaction: delete old chunks,
#                           insert new ones, mark completed
#
# Phase transitions go to document_processing_logs.  Any exception
# is caught here, once: the document is marked failed, the log row
# records the phase that broke, and a ProcessingResult with
# success=False is returned.  Because phase 5 is a single
# transaction, a failed reprocess keeps the previous chunks
# searchable.
# ────────────────────────────────────────────────────────────────

logger = logging.getLogger(__name__)

Extractor = Callable[[bytes], PdfExtraction]


async def _connect_db() -> AsyncConnection:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required for document processing.")
    # autocommit=True so that conn.transaction() in the store issues its
    # own BEGIN/COMMIT and processing-log writes land immediately.
    conn = await AsyncConnection.connect(settings.database_url, autocommit=True)
    await register_vector_async(conn)
    return conn


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _legacy_chunks(pages: list[PageText]) -> list[StructuredChunk]:
    return [
        StructuredChunk(
            content=chunk.content,
            context_header="",
            chunk_index=chunk.chunk_index,
            start_char=chunk.start_char,
            end_char=chunk.end_char,
            page_number=chunk.page_number,
        )
        for chunk in chunk_document(pages, LegacyChunkingOptions())
    ]


class DocumentProcessor:
    """Runs the ingestion pipeline against an injected store and log."""

    def __init__(
        self,
        store: DocumentStore,
        processing_log: ProcessingLogger,
        *,
        extractor: Extractor = extract_text_from_pdf,
    ) -> None:
        self.store = store
        self.processing_log = processing_log
        self.extractor = extractor

    async def process(
        self,
        tenant_id: str,
        filename: str,
        file_bytes: bytes,
        *,
        document_id: UUID | None = None,
        file_path: str | None = None,
        mime_type: str = "application/pdf",
    ) -> ProcessingResult:
        total_started = time.perf_counter()
        use_smart = settings.enable_smart_chunking
        options = SmartChunkingOptions.from_settings() if use_smart else None
        stats = ProcessingStats()
        phase = ProcessingStatus.UPLOADING.value
        stored_id: UUID | None = None

        log_id = await self.processing_log.start(
            tenant_id,
            filename,
            document_id=document_id,
            file_size=len(file_bytes),
            mime_type=mime_type,
            chunking_method="smart" if use_smart else "legacy",
            chunking_options=options.as_dict() if options else None,
        )

        try:
            document_id = await self.store.begin_document(
                tenant_id,
                filename,
                document_id=document_id,
                file_path=file_path,
                file_size=len(file_bytes),
                mime_type=mime_type,
            )
            stored_id = document_id

            # ── Phase 1: parsing ─────────────────────────────────
            phase = ProcessingStatus.PARSING.value
            await self.processing_log.update(
                log_id, ProcessingStatus.PARSING, document_id=document_id
            )
            started = time.perf_counter()
            extraction = self.extractor(file_bytes)
            stats.total_pages = extraction.total_pages
            stats.parsing_duration_ms = _elapsed_ms(started)

            # ── Phase 2: chunking ────────────────────────────────
            phase = ProcessingStatus.CHUNKING.value
            await self.processing_log.update(
                log_id,
                ProcessingStatus.CHUNKING,
                total_pages=extraction.total_pages,
                parsing_duration_ms=stats.parsing_duration_ms,
            )
            started = time.perf_counter()
            if options is not None:
                chunking = await smart_chunk_document(extraction.pages, filename, options)
                chunks = chunking.chunks
                stats.structures_detected = chunking.structures_detected
                stats.chunking_cost = chunking.cost
                stats.chunking_tokens = chunking.tokens_used
            else:
                chunks = _legacy_chunks(extraction.pages)
            stats.chunking_duration_ms = _elapsed_ms(started)
            if not chunks:
                raise DocumentExtractionError(f"{filename} produced no chunks.")
            stats.chunks_created = len(chunks)
            stats.chunk_sizes = [len(chunk.content) for chunk in chunks]

            # ── Phase 3: metadata ────────────────────────────────
            if options is not None and settings.enable_metadata_generation:
                phase = "metadata"
                started = time.perf_counter()
                batch = await generate_metadata_batch(
                    [(chunk.chunk_index, chunk.content) for chunk in chunks],
                    document_context=filename,
                )
                for chunk in chunks:
                    metadata = batch.results.get(chunk.chunk_index)
                    if metadata is not None:
                        chunk.metadata = metadata
                stats.metadata_cost = batch.total_cost
                stats.metadata_tokens = batch.total_tokens
                stats.metadata_generated = any(not c.metadata.is_empty for c in chunks)
                stats.keywords_count = sum(len(c.metadata.keywords) for c in chunks)
                stats.topics_count = len({t for c in chunks for t in c.metadata.topics})
                stats.metadata_duration_ms = _elapsed_ms(started)

            # ── Phase 4: embedding ───────────────────────────────
            phase = ProcessingStatus.EMBEDDING.value
            await self.processing_log.update(
                log_id,
                ProcessingStatus.EMBEDDING,
                chunks_created=stats.chunks_created,
                structures_detected=stats.structures_detected,
                chunking_duration_ms=stats.chunking_duration_ms,
                metadata_generated=stats.metadata_generated,
                metadata_duration_ms=stats.metadata_duration_ms,
            )
            started = time.perf_counter()
            # the embedder is thread-pooled sync code; keep it off the event loop
            embedded = await asyncio.to_thread(
                embed_texts_with_usage, [chunk.stored_content for chunk in chunks]
            )
            if len(embedded.embeddings) != len(chunks):
                raise ValueError(
                    "Embedding count mismatch: "
                    f"expected {len(chunks)}, got {len(embedded.embeddings)}."
                )
            for chunk, vector in zip(chunks, embedded.embeddings):
                chunk.embedding = vector
            stats.embedding_tokens = embedded.total_tokens
            stats.embedding_cost = embedded.total_cost
            stats.embedding_duration_ms = _elapsed_ms(started)

            # ── Phase 5: storing ─────────────────────────────────
            phase = "storing"
            await self.store.replace_chunks(
                tenant_id, document_id, chunks, total_pages=extraction.total_pages
            )
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("ingestion of %s failed during %s: %s", filename, phase, message, exc_info=True)
            if stored_id is not None:
                await self._mark_failed(stored_id, message)
            await self.processing_log.fail(
                log_id, message, phase, {"type": exc.__class__.__name__}
            )
            return ProcessingResult(success=False, document_id=stored_id, error=message)

        stats.total_duration_ms = _elapsed_ms(total_started)
        await self.processing_log.complete(log_id, stats)
        logger.info(
            "ingested %s: %d chunks, %d pages, %d tokens, $%.4f (%dms)",
            filename, stats.chunks_created, stats.total_pages, stats.embedding_tokens,
            stats.total_cost, stats.total_duration_ms,
        )
        return ProcessingResult(
            success=True,
            document_id=document_id,
            chunks_created=stats.chunks_created,
            total_tokens=stats.embedding_tokens + stats.metadata_tokens + stats.chunking_tokens,
            total_cost=stats.total_cost,
            metadata_cost=stats.metadata_cost,
            chunking_cost=stats.chunking_cost,
        )

    async def reprocess(
        self, tenant_id: str, document_id: UUID, file_bytes: bytes
    ) -> ProcessingResult:
        record = await self.store.get_document(tenant_id, document_id)
        logger.info("reprocessing %s (%s)", record.filename, document_id)
        return await self.process(
            tenant_id,
            record.filename,
            file_bytes,
            document_id=document_id,
            file_path=record.file_path,
        )

    async def _mark_failed(self, document_id: UUID, message: str) -> None:
        try:
            await self.store.mark_failed(document_id, message)
        except Exception as exc:
            logger.error("could not mark document %s failed: %r", document_id, exc)


# ── Connection-owning entry points ────────────────────────────


async def process_document(
    tenant_id: str,
    filename: str,
    file_bytes: bytes,
    *,
    document_id: UUID | None = None,
    file_path: str | None = None,
    mime_type: str = "application/pdf",
) -> ProcessingResult:
    conn = await _connect_db()
    try:
        processor = DocumentProcessor(DocumentStore(conn), ProcessingLogger(conn))
        return await processor.process(
            tenant_id,
            filename,
            file_bytes,
            document_id=document_id,
            file_path=file_path,
            mime_type=mime_type,
        )
    finally:
        await conn.close()


async def reprocess_document(
    tenant_id: str, document_id: UUID, file_bytes: bytes
) -> ProcessingResult:
    conn = await _connect_db()
    try:
        processor = DocumentProcessor(DocumentStore(conn), ProcessingLogger(conn))
        return await processor.reprocess(tenant_id, document_id, file_bytes)
    finally:
        await conn.close()


async def delete_document(tenant_id: str, document_id: UUID) -> None:
    conn = await _connect_db()
    try:
        await DocumentStore(conn).delete_document(tenant_id, document_id)
    finally:
        await conn.close()


async def get_document(tenant_id: str, document_id: UUID) -> DocumentRecord:
    conn = await _connect_db()
    try:
        return await DocumentStore(conn).get_document(tenant_id, document_id)
    finally:
        await conn.close()


async def list_documents(tenant_id: str) -> list[DocumentRecord]:
    conn = await _connect_db()
    try:
        return await DocumentStore(conn).list_documents(tenant_id)
    finally:
        await conn.close()
