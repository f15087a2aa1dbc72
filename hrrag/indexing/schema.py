# schema.py is SQL wrapped in Python

from __future__ import annotations

from psycopg import Connection

from hrrag.indexing.embedder import get_model_config

# runs CREATE ... IF NOT EXISTS / CREATE OR REPLACE against postgres, so repeated calls are safe
#
# tenants                  - one row per customer organisation; document_language drives translation
# documents                - one row per uploaded file; processing_status is the ingestion state machine
# document_chunks          - one row per chunk; search_text is a generated tsvector over content plus
#                            the LLM keywords / alternative terms so informal words hit formal chunks
# document_processing_logs - one row per ingestion attempt with phase, cost and timing columns
#
# the vector dimension is %-formatted from the embedding model table (an int, never user input)
# search_documents_enhanced / search_documents / get_rag_stats are the RPCs retrieval calls

_HYBRID_SEARCH_FUNCTION = """
CREATE OR REPLACE FUNCTION search_documents_enhanced(
    p_tenant_id TEXT,
    p_query_embedding VECTOR(%(dims)d),
    p_query_text TEXT,
    p_top_k INTEGER DEFAULT 30,
    p_similarity_threshold DOUBLE PRECISION DEFAULT 0.40,
    p_vector_weight DOUBLE PRECISION DEFAULT 0.6,
    p_keyword_weight DOUBLE PRECISION DEFAULT 0.4
)
RETURNS TABLE (
    chunk_id UUID,
    document_id UUID,
    filename TEXT,
    file_path TEXT,
    content TEXT,
    page_number INTEGER,
    similarity DOUBLE PRECISION,
    combined_score DOUBLE PRECISION,
    matched_terms TEXT[],
    metadata JSONB
)
LANGUAGE sql STABLE
AS $$
    WITH query_terms AS (
        SELECT ARRAY(
            SELECT DISTINCT term
            FROM unnest(tsvector_to_array(to_tsvector('simple', p_query_text))) AS term
            WHERE length(term) > 2
        ) AS terms
    ),
    keyword_query AS (
        SELECT CASE
            WHEN cardinality(terms) = 0 THEN NULL
            ELSE to_tsquery('simple', array_to_string(terms, ' | '))
        END AS tsq, terms
        FROM query_terms
    ),
    scored AS (
        SELECT
            c.id AS chunk_id,
            c.document_id,
            d.filename,
            d.file_path,
            c.content,
            c.page_number,
            1 - (c.embedding <=> p_query_embedding) AS vector_score,
            COALESCE(ts_rank_cd(c.search_text, kq.tsq, 32), 0) AS keyword_score,
            ARRAY(
                SELECT t FROM unnest(kq.terms) AS t
                WHERE c.search_text @@ to_tsquery('simple', quote_literal(t))
            ) AS matched_terms,
            c.metadata
        FROM document_chunks c
        JOIN documents d ON d.id = c.document_id
        CROSS JOIN keyword_query kq
        WHERE c.tenant_id = p_tenant_id
          AND c.embedding IS NOT NULL
    )
    SELECT
        chunk_id,
        document_id,
        filename,
        file_path,
        content,
        page_number,
        vector_score AS similarity,
        p_vector_weight * vector_score + p_keyword_weight * keyword_score AS combined_score,
        matched_terms,
        metadata
    FROM scored
    WHERE vector_score >= p_similarity_threshold OR keyword_score > 0
    ORDER BY combined_score DESC
    LIMIT p_top_k;
$$;
"""

_VECTOR_SEARCH_FUNCTION = """
CREATE OR REPLACE FUNCTION search_documents(
    p_tenant_id TEXT,
    p_query_embedding VECTOR(%(dims)d),
    p_top_k INTEGER DEFAULT 15,
    p_similarity_threshold DOUBLE PRECISION DEFAULT 0.45
)
RETURNS TABLE (
    chunk_id UUID,
    document_id UUID,
    filename TEXT,
    file_path TEXT,
    content TEXT,
    page_number INTEGER,
    similarity DOUBLE PRECISION,
    metadata JSONB
)
LANGUAGE sql STABLE
AS $$
    SELECT
        c.id AS chunk_id,
        c.document_id,
        d.filename,
        d.file_path,
        c.content,
        c.page_number,
        1 - (c.embedding <=> p_query_embedding) AS similarity,
        c.metadata
    FROM document_chunks c
    JOIN documents d ON d.id = c.document_id
    WHERE c.tenant_id = p_tenant_id
      AND c.embedding IS NOT NULL
      AND 1 - (c.embedding <=> p_query_embedding) >= p_similarity_threshold
    ORDER BY c.embedding <=> p_query_embedding
    LIMIT p_top_k;
$$;
"""

_RAG_STATS_FUNCTION = """
CREATE OR REPLACE FUNCTION get_rag_stats(p_tenant_id TEXT)
RETURNS TABLE (total_documents BIGINT, total_chunks BIGINT)
LANGUAGE sql STABLE
AS $$
    SELECT
        (SELECT COUNT(*) FROM documents WHERE tenant_id = p_tenant_id),
        (SELECT COUNT(*) FROM document_chunks WHERE tenant_id = p_tenant_id);
$$;
"""


def init_schema(conn: Connection) -> None:
    dims = get_model_config().dimensions
    with conn.cursor() as cur:
        cur.execute("CREATE EXTENSION IF NOT EXISTS vector;")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tenants (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                document_language TEXT NOT NULL DEFAULT 'nl',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id UUID PRIMARY KEY,
                tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
                filename TEXT NOT NULL,
                file_path TEXT NULL,
                file_size BIGINT NULL,
                mime_type TEXT NULL,
                total_pages INTEGER NULL,
                total_chunks INTEGER NULL,
                processing_status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (processing_status IN ('pending', 'processing', 'completed', 'failed')),
                processing_error TEXT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )

        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS documents_tenant_id_idx
            ON documents (tenant_id, created_at DESC);
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS document_chunks (
                id UUID PRIMARY KEY,
                tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
                document_id UUID NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                content TEXT NOT NULL,
                embedding VECTOR(%d) NULL,
                page_number INTEGER NULL,
                chunk_index INTEGER NOT NULL,
                metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
                search_text TSVECTOR GENERATED ALWAYS AS (
                    to_tsvector(
                        'simple',
                        content
                        || ' ' || COALESCE(metadata->>'keywords', '')
                        || ' ' || COALESCE(metadata->>'alternativeTerms', '')
                    )
                ) STORED,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
            % dims
        )

        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS document_chunks_tenant_id_idx
            ON document_chunks (tenant_id);
            """
        )

        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS document_chunks_document_id_idx
            ON document_chunks (document_id, chunk_index);
            """
        )

        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS document_chunks_search_text_idx
            ON document_chunks USING gin (search_text);
            """
        )

        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS document_chunks_embedding_hnsw_idx
            ON document_chunks USING hnsw (embedding vector_cosine_ops)
            WHERE embedding IS NOT NULL;
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS document_processing_logs (
                id UUID PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                document_id UUID NULL REFERENCES documents(id) ON DELETE SET NULL,
                filename TEXT NOT NULL,
                file_size_bytes BIGINT NULL,
                mime_type TEXT NULL,
                processing_status TEXT NOT NULL DEFAULT 'uploading'
                    CHECK (processing_status IN
                        ('uploading', 'parsing', 'chunking', 'embedding', 'completed', 'failed')),
                chunking_method TEXT NULL,
                chunking_options JSONB NULL,
                total_pages INTEGER NULL,
                chunks_created INTEGER NULL,
                structures_detected INTEGER NULL,
                avg_chunk_size INTEGER NULL,
                min_chunk_size INTEGER NULL,
                max_chunk_size INTEGER NULL,
                metadata_generated BOOLEAN NOT NULL DEFAULT FALSE,
                keywords_count INTEGER NULL,
                topics_count INTEGER NULL,
                parsing_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
                chunking_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
                embedding_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
                metadata_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
                total_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
                embedding_tokens INTEGER NULL,
                chunking_tokens INTEGER NULL,
                metadata_tokens INTEGER NULL,
                upload_duration_ms INTEGER NULL,
                parsing_duration_ms INTEGER NULL,
                chunking_duration_ms INTEGER NULL,
                embedding_duration_ms INTEGER NULL,
                metadata_duration_ms INTEGER NULL,
                total_duration_ms INTEGER NULL,
                error_message TEXT NULL,
                error_phase TEXT NULL,
                error_details JSONB NULL,
                started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                completed_at TIMESTAMPTZ NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )

        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS document_processing_logs_tenant_idx
            ON document_processing_logs (tenant_id, created_at DESC);
            """
        )

        cur.execute(_HYBRID_SEARCH_FUNCTION % {"dims": dims})
        cur.execute(_VECTOR_SEARCH_FUNCTION % {"dims": dims})
        cur.execute(_RAG_STATS_FUNCTION)

    conn.commit()
