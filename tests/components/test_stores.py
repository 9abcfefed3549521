"""
Tests for the vector store components.
"""

import json

import numpy as np
import psycopg2
import pytest
from psycopg2 import sql
from unittest.mock import patch, MagicMock

from sfdocpipe.components.stores import (
    ChromaDBStore,
    InMemoryVectorStore,
    PgVectorStore,
)
from sfdocpipe.utils.data_models import Chunk, EnrichedChunk, document_id
from sfdocpipe.utils.errors import ConfigError, StorageError

URL = "https://developer.salesforce.com/docs/apexcode/"


def enriched(text, index=0, url=URL, **metadata):
    chunk = Chunk(text=text, source_url=url, sequence_index=index, start_offset=0)
    return EnrichedChunk(
        chunk=chunk,
        metadata={"source_url": url, "sequence_index": index, **metadata},
    )


@pytest.fixture
def sample_pairs():
    """Provides (chunk, vector) pairs for testing stores."""
    return [
        (enriched("Doc 1", 0, doc_type="apex"), np.array([1.0, 0.0])),
        (enriched("Doc 2", 1, doc_type="lwc"), np.array([0.0, 1.0])),
    ]


def test_memory_upsert_is_idempotent(sample_pairs):
    store = InMemoryVectorStore(dimensions=2)
    assert store.upsert(sample_pairs) == 2
    assert store.upsert(sample_pairs) == 2
    assert store.count() == 2


def test_memory_upsert_replaces_row_in_place(sample_pairs):
    store = InMemoryVectorStore(dimensions=2)
    store.upsert(sample_pairs)

    edited = enriched("Doc 1 (edited)", 0, doc_type="apex")
    store.upsert([(edited, np.array([0.6, 0.8]))])

    assert store.count() == 2
    row = store.get(document_id(URL, 0))
    assert row.content == "Doc 1 (edited)"
    np.testing.assert_allclose(row.embedding, [0.6, 0.8])


def test_memory_search_orders_by_similarity(sample_pairs):
    store = InMemoryVectorStore(dimensions=2)
    store.upsert(sample_pairs)

    results = store.search(np.array([0.9, 0.1]), k=2)

    assert [r.document.content for r in results] == ["Doc 1", "Doc 2"]
    assert results[0].score > results[1].score
    assert results[0].score == pytest.approx(0.9 / np.linalg.norm([0.9, 0.1]))


def test_memory_search_breaks_ties_by_insertion_order():
    store = InMemoryVectorStore(dimensions=2)
    store.upsert([(enriched(f"Doc {i}", i), np.array([1.0, 1.0])) for i in range(3)])
    results = store.search(np.array([1.0, 1.0]), k=3)
    assert [r.document.content for r in results] == ["Doc 0", "Doc 1", "Doc 2"]


def test_memory_search_applies_metadata_filter(sample_pairs):
    store = InMemoryVectorStore(dimensions=2)
    store.upsert(sample_pairs)
    results = store.search(np.array([1.0, 0.0]), k=5, metadata_filter={"doc_type": "lwc"})
    assert [r.document.content for r in results] == ["Doc 2"]


def test_memory_upsert_rejects_wrong_dimension_atomically(sample_pairs):
    store = InMemoryVectorStore(dimensions=2)
    bad = sample_pairs + [(enriched("Doc 3", 2), np.array([1.0, 0.0, 0.0]))]
    with pytest.raises(ConfigError):
        store.upsert(bad)
    assert store.count() == 0


@pytest.fixture
def pg_connection():
    with patch("psycopg2.connect") as mock_connect:
        conn = MagicMock()
        cursor = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor
        mock_connect.return_value = conn
        yield mock_connect, conn, cursor


@patch("sfdocpipe.components.stores.execute_values")
def test_pgvector_upsert_uses_on_conflict(mock_execute_values, pg_connection, sample_pairs):
    mock_connect, conn, cursor = pg_connection
    conn.__enter__.return_value = conn

    store = PgVectorStore(table_name="documents", dsn="postgresql://fake", dimensions=2)
    with patch("psycopg2.sql.Composed.as_string", return_value="INSERT ... ON CONFLICT (id) DO UPDATE"):
        written = store.upsert(sample_pairs)

    assert written == 2
    mock_connect.assert_called_with("postgresql://fake", connect_timeout=10)
    args, kwargs = mock_execute_values.call_args
    assert "ON CONFLICT" in args[1]
    rows = args[2]
    assert [row[0] for row in rows] == [document_id(URL, 0), document_id(URL, 1)]
    assert rows[0][3] == "[1.0,0.0]"
    assert kwargs["template"] == "(%s, %s, %s, %s::vector)"
    conn.close.assert_called_once()


def test_pgvector_connection_failure_is_storage_error(sample_pairs):
    with patch("psycopg2.connect", side_effect=psycopg2.OperationalError("no route")):
        store = PgVectorStore(dsn="postgresql://fake", dimensions=2)
        with pytest.raises(StorageError):
            store.upsert(sample_pairs)


def test_pgvector_search_maps_rows(pg_connection):
    _, conn, cursor = pg_connection
    conn.__enter__.return_value = conn
    cursor.fetchall.return_value = [
        ("id-1", "Doc 1", {"doc_type": "apex"}, "[1,0]", 0.97),
    ]
    store = PgVectorStore(dsn="postgresql://fake", dimensions=2)

    results = store.search(np.array([1.0, 0.0]), k=1, metadata_filter={"doc_type": "apex"})

    assert results[0].document.id == "id-1"
    assert results[0].score == pytest.approx(0.97)
    params = cursor.execute.call_args.args[1]
    assert json.loads(params[1]) == {"doc_type": "apex"}
    assert params[3] == 1


def test_pgvector_requires_dsn(monkeypatch):
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ConfigError):
        PgVectorStore(dsn=None)


@pytest.mark.parametrize(
    "client_type, store_params",
    [
        ("PersistentClient", {"path": "/fake/chroma"}),
        ("HttpClient", {"host": "localhost", "port": 8000}),
    ],
)
@patch("chromadb.PersistentClient")
@patch("chromadb.HttpClient")
def test_chromadb_store_upserts(
    mock_http_client,
    mock_persistent_client,
    client_type,
    store_params,
    sample_pairs,
):
    """Tests the ChromaDBStore with both PersistentClient and HttpClient."""
    mock_client = MagicMock()
    mock_collection = MagicMock()

    if client_type == "PersistentClient":
        mock_persistent_client.return_value = mock_client
    else:
        mock_http_client.return_value = mock_client

    mock_client.get_or_create_collection.return_value = mock_collection

    store = ChromaDBStore(collection_name="test_collection", dimensions=2, **store_params)
    store.upsert(sample_pairs)

    mock_client.get_or_create_collection.assert_called_with(
        name="test_collection", metadata={"hnsw:space": "cosine"}
    )
    mock_collection.upsert.assert_called_once()
    upsert_args = mock_collection.upsert.call_args[1]
    assert upsert_args["ids"] == [document_id(URL, 0), document_id(URL, 1)]
    assert upsert_args["documents"][0] == "Doc 1"


def test_chromadb_where_clause():
    assert ChromaDBStore._where(None) is None
    assert ChromaDBStore._where({"doc_type": "apex"}) == {"doc_type": "apex"}
    assert ChromaDBStore._where({"doc_type": "apex", "platform": "developer"}) == {
        "$and": [{"doc_type": "apex"}, {"platform": "developer"}]
    }


def render(query):
    """Flattens a psycopg2.sql object without a database connection."""
    if isinstance(query, sql.Composed):
        return "".join(render(part) for part in query.seq)
    if isinstance(query, sql.SQL):
        return query.string
    if isinstance(query, sql.Identifier):
        return ".".join(f'"{name}"' for name in query.strings)
    if isinstance(query, sql.Literal):
        return repr(query.wrapped)
    return str(query)


def test_pgvector_ensure_schema_creates_vector_table(pg_connection):
    _, conn, cursor = pg_connection
    store = PgVectorStore(table_name="sf_docs", dsn="postgresql://fake", dimensions=1536)

    store.ensure_schema()

    statements = [render(c.args[0]) for c in cursor.execute.call_args_list]
    assert statements[0] == "CREATE EXTENSION IF NOT EXISTS vector"
    table = statements[1]
    assert table.startswith('CREATE TABLE IF NOT EXISTS "sf_docs" (')
    assert "id text PRIMARY KEY" in table
    assert "content text NOT NULL" in table
    assert "metadata jsonb NOT NULL" in table
    assert "embedding vector(1536) NOT NULL" in table
    assert "inserted_seq bigserial" in table
    assert 'USING gin (metadata)' in statements[2]
    conn.close.assert_called_once()


def test_pgvector_ensure_schema_failure_is_storage_error(pg_connection):
    _, _, cursor = pg_connection
    cursor.execute.side_effect = psycopg2.ProgrammingError("extension \"vector\" is not available")
    store = PgVectorStore(dsn="postgresql://fake", dimensions=2)
    with pytest.raises(StorageError):
        store.ensure_schema()


def test_pgvector_search_breaks_ties_by_insertion_order(pg_connection):
    _, _, cursor = pg_connection
    cursor.fetchall.return_value = []
    PgVectorStore(dsn="postgresql://fake", dimensions=2).search(np.array([1.0, 0.0]))

    query = render(cursor.execute.call_args.args[0])
    assert "ORDER BY embedding <=> %s::vector, inserted_seq" in query
    assert "metadata @> %s::jsonb" in query


def test_pgvector_count(pg_connection):
    _, _, cursor = pg_connection
    cursor.fetchone.return_value = (7,)
    store = PgVectorStore(table_name="sf_docs", dsn="postgresql://fake", dimensions=2)

    assert store.count() == 7
    assert render(cursor.execute.call_args.args[0]) == 'SELECT count(*) FROM "sf_docs"'


def test_pgvector_test_connection_wraps_driver_errors(pg_connection):
    _, conn, cursor = pg_connection
    cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")
    store = PgVectorStore(dsn="postgresql://fake", dimensions=2)

    with pytest.raises(StorageError):
        store.test_connection()
    conn.close.assert_called_once()


@pytest.fixture
def chroma_collection():
    with patch("chromadb.PersistentClient") as mock_persistent_client:
        client = MagicMock()
        collection = MagicMock()
        client.get_or_create_collection.return_value = collection
        mock_persistent_client.return_value = client
        yield client, collection


def test_chromadb_search_maps_distance_to_similarity(chroma_collection):
    _, collection = chroma_collection
    collection.query.return_value = {
        "ids": [["id-1", "id-2"]],
        "documents": [["Doc 1", "Doc 2"]],
        "metadatas": [[{"doc_type": "apex"}, {"doc_type": "apex"}]],
        "embeddings": [[[1.0, 0.0], [0.6, 0.8]]],
        "distances": [[0.0, 0.4]],
    }
    store = ChromaDBStore(path="/fake/chroma", dimensions=2)

    results = store.search(np.array([1.0, 0.0]), k=2, metadata_filter={"doc_type": "apex"})

    assert [r.document.id for r in results] == ["id-1", "id-2"]
    assert [r.score for r in results] == pytest.approx([1.0, 0.6])
    assert results[1].document.metadata == {"doc_type": "apex"}
    kwargs = collection.query.call_args.kwargs
    assert kwargs["n_results"] == 2
    assert kwargs["where"] == {"doc_type": "apex"}


def test_chromadb_test_connection_failure_is_storage_error(chroma_collection):
    client, _ = chroma_collection
    client.heartbeat.side_effect = ConnectionError("chroma is down")
    store = ChromaDBStore(path="/fake/chroma", dimensions=2)
    with pytest.raises(StorageError):
        store.test_connection()
