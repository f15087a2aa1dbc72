from __future__ import annotations

import asyncio
import os
import sys
from typing import Any

import pytest
import pytest_asyncio

from config import settings


# ---------------------------------------------------------------------------
# Windows event loop fix: psycopg3 AsyncConnection requires SelectorEventLoop,
# not ProactorEventLoop (the default on Windows).
# ---------------------------------------------------------------------------
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

TEST_TENANT_ID = "test-tenant"


def _schema_exists(conn: Any) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT
                to_regclass('public.tenants') IS NOT NULL,
                to_regclass('public.documents') IS NOT NULL,
                to_regclass('public.document_chunks') IS NOT NULL,
                to_regclass('public.document_processing_logs') IS NOT NULL
            """
        )
        row = cur.fetchone()
    return bool(row and all(row))


def _database_url() -> str:
    database_url = os.getenv("DATABASE_URL") or settings.database_url
    if not database_url:
        pytest.skip("Skipping DB integration tests: DATABASE_URL is not set.")
    return database_url


@pytest.fixture(scope="session")
def db_conn() -> Any:
    psycopg_module = pytest.importorskip(
        "psycopg",
        reason="Skipping DB integration tests: psycopg is not installed in this environment.",
    )
    pgvector_psycopg = pytest.importorskip(
        "pgvector.psycopg",
        reason="Skipping DB integration tests: pgvector is not installed in this environment.",
    )
    from hrrag.indexing.schema import init_schema

    conn = psycopg_module.connect(_database_url(), autocommit=True)
    with conn.cursor() as cur:
        # Prevent indefinite hangs when stale sessions hold DDL locks.
        cur.execute("SET lock_timeout = '5s';")
        cur.execute("SET statement_timeout = '120s';")
    if not _schema_exists(conn):
        init_schema(conn)
    pgvector_psycopg.register_vector(conn)
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO tenants (id, name, is_active, document_language)
            VALUES (%s, 'Test BV', TRUE, 'nl')
            ON CONFLICT (id) DO UPDATE SET is_active = TRUE
            """,
            (TEST_TENANT_ID,),
        )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def reset_tenant_tables(db_conn: Any):
    def _reset() -> None:
        with db_conn.transaction():
            with db_conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM document_processing_logs WHERE tenant_id = %s",
                    (TEST_TENANT_ID,),
                )
                cur.execute("DELETE FROM documents WHERE tenant_id = %s", (TEST_TENANT_ID,))

    return _reset


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def async_db_conn(db_conn: Any) -> Any:
    """Session-scoped AsyncConnection with pgvector types registered.

    Depends on ``db_conn`` so the schema and test tenant exist first.
    autocommit=True so ``conn.transaction()`` in the store issues its
    own BEGIN/COMMIT.
    """
    from pgvector.psycopg import register_vector_async
    from psycopg import AsyncConnection

    conn = await AsyncConnection.connect(_database_url(), autocommit=True)
    await register_vector_async(conn)
    try:
        yield conn
    finally:
        await conn.close()
