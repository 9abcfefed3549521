"""
Vector store components for the sfdocpipe pipeline.

A store persists (content, metadata, embedding) rows keyed by the chunk's
stable document id, so writing the same (source_url, sequence_index) twice
replaces the row instead of adding a second one. Stores also serve
similarity search: the top-k rows by cosine similarity, optionally
restricted by an exact-match metadata filter.
"""

from abc import ABC, abstractmethod
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import chromadb
import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, execute_values

from ..utils.data_models import EnrichedChunk, SearchResult, StoredDocument
from ..utils.errors import ConfigError, StorageError

logger = logging.getLogger(__name__)

ChunkVectorPair = Tuple[EnrichedChunk, np.ndarray]


def cosine_similarity(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of every row of `matrix` with `query`."""
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ query / denom, 0.0)
    return scores


def matches_filter(metadata: Dict[str, Any], metadata_filter: Optional[Dict[str, Any]]) -> bool:
    if not metadata_filter:
        return True
    return all(metadata.get(key) == value for key, value in metadata_filter.items())


class BaseVectorStore(ABC):
    """Abstract base class for all vector store components."""

    def __init__(self, dimensions: int = 1536):
        self.dimensions = dimensions

    def _check_pairs(self, pairs: Sequence[ChunkVectorPair]):
        for chunk, vector in pairs:
            if len(vector) != self.dimensions:
                raise ConfigError(
                    f"Embedding for '{chunk.document_id}' has dimension {len(vector)}, "
                    f"table expects {self.dimensions}",
                    component=self.__class__.__name__,
                )

    @abstractmethod
    def upsert(self, pairs: Sequence[ChunkVectorPair]) -> int:
        """
        Inserts or replaces one row per (chunk, vector) pair.

        The whole call is applied atomically: either every row is written or
        none is.

        Returns:
            int: The number of rows written.

        Raises:
            StorageError: On connectivity loss or a failed write.
            ConfigError: If a vector does not match the store's dimensions.
        """
        pass

    @abstractmethod
    def search(
        self,
        query_vector: np.ndarray,
        k: int = 5,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[SearchResult]:
        """
        Returns the k most similar rows, highest cosine similarity first.

        Ties are broken by insertion order. `metadata_filter` keeps only rows
        whose metadata equals every given key/value pair.
        """
        pass

    @abstractmethod
    def count(self) -> int:
        """Returns the number of stored rows."""
        pass

    def ensure_schema(self):
        """Creates the backing table or collection if it does not exist."""
        pass

    @abstractmethod
    def test_connection(self):
        """
        Tests the connection to the store.

        Raises:
            StorageError: If the store is unreachable.
        """
        pass


class InMemoryVectorStore(BaseVectorStore):
    """
    A process-local store backed by a dict and numpy.

    Used for dry runs and tests. Upserts keep the original insertion
    position of a replaced row, so tie-breaking stays stable across
    re-ingestion.
    """

    def __init__(self, dimensions: int = 1536):
        super().__init__(dimensions=dimensions)
        self._rows: Dict[str, StoredDocument] = {}
        self._lock = threading.Lock()

    def upsert(self, pairs: Sequence[ChunkVectorPair]) -> int:
        if not pairs:
            return 0
        self._check_pairs(pairs)
        staged = [
            StoredDocument(
                id=chunk.document_id,
                content=chunk.text,
                metadata=dict(chunk.metadata),
                embedding=np.array(vector, dtype=np.float32),
            )
            for chunk, vector in pairs
        ]
        with self._lock:
            for document in staged:
                self._rows[document.id] = document
        logger.debug(f"Upserted {len(staged)} rows into the in-memory store.")
        return len(staged)

    def search(
        self,
        query_vector: np.ndarray,
        k: int = 5,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[SearchResult]:
        with self._lock:
            candidates = [
                doc
                for doc in self._rows.values()
                if matches_filter(doc.metadata, metadata_filter)
            ]
        if not candidates or k <= 0:
            return []
        matrix = np.vstack([doc.embedding for doc in candidates])
        scores = cosine_similarity(matrix, np.asarray(query_vector, dtype=np.float32))
        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:k]
        return [SearchResult(document=candidates[i], score=float(scores[i])) for i in order]

    def get(self, doc_id: str) -> Optional[StoredDocument]:
        with self._lock:
            return self._rows.get(doc_id)

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def test_connection(self):
        logger.info("In-memory store is always reachable.")


class PgVectorStore(BaseVectorStore):
    """
    A store that writes to a Postgres table with the pgvector extension,
    such as a Supabase project database.

    Table layout:
        id            text primary key      -- stable document id
        content       text
        metadata      jsonb
        embedding     vector(<dimensions>)
        inserted_seq  bigserial             -- insertion order, for tie-breaking
    """

    def __init__(
        self,
        table_name: str = "documents",
        dsn: str = None,
        dimensions: int = 1536,
        connect_timeout: int = 10,
    ):
        """
        Initializes the PgVectorStore.

        Args:
            table_name (str): Name of the vector table.
            dsn (str): Postgres connection string; falls back to the
                SUPABASE_DB_URL or DATABASE_URL environment variables.
            connect_timeout (int): Seconds to wait for a connection.
        """
        super().__init__(dimensions=dimensions)
        self.table_name = table_name
        self.dsn = dsn or os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
        if not self.dsn:
            raise ConfigError(
                "You need a Postgres connection string. Pass it as 'dsn' or set 'SUPABASE_DB_URL'.",
                component="pgvector_store",
            )
        self.connect_timeout = connect_timeout
        logger.debug(f"Initialized PgVectorStore with table='{table_name}'")

    def _connect(self):
        try:
            return psycopg2.connect(self.dsn, connect_timeout=self.connect_timeout)
        except psycopg2.Error as e:
            logger.error("Failed to connect to Postgres.", exc_info=True)
            raise StorageError(
                f"Could not connect to Postgres: {e}", component="pgvector_store"
            ) from e

    @staticmethod
    def _vector_literal(vector: np.ndarray) -> str:
        return "[" + ",".join(repr(float(x)) for x in vector) + "]"

    def ensure_schema(self):
        table = sql.Identifier(self.table_name)
        statements = [
            sql.SQL("CREATE EXTENSION IF NOT EXISTS vector"),
            sql.SQL(
                "CREATE TABLE IF NOT EXISTS {} ("
                "id text PRIMARY KEY, "
                "content text NOT NULL, "
                "metadata jsonb NOT NULL DEFAULT '{{}}'::jsonb, "
                "embedding vector({}) NOT NULL, "
                "inserted_seq bigserial)"
            ).format(table, sql.Literal(self.dimensions)),
            sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} USING gin (metadata)").format(
                sql.Identifier(f"{self.table_name}_metadata_idx"), table
            ),
        ]
        conn = self._connect()
        try:
            with conn:
                with conn.cursor() as cur:
                    for statement in statements:
                        cur.execute(statement)
            logger.info(f"Ensured vector table '{self.table_name}' exists.")
        except psycopg2.Error as e:
            raise StorageError(
                f"Could not create table '{self.table_name}': {e}",
                component="pgvector_store",
            ) from e
        finally:
            conn.close()

    def upsert(self, pairs: Sequence[ChunkVectorPair]) -> int:
        if not pairs:
            return 0
        self._check_pairs(pairs)
        rows = [
            (
                chunk.document_id,
                chunk.text,
                Json(chunk.metadata),
                self._vector_literal(vector),
            )
            for chunk, vector in pairs
        ]
        query = sql.SQL(
            "INSERT INTO {} (id, content, metadata, embedding) VALUES %s "
            "ON CONFLICT (id) DO UPDATE SET "
            "content = EXCLUDED.content, "
            "metadata = EXCLUDED.metadata, "
            "embedding = EXCLUDED.embedding"
        ).format(sql.Identifier(self.table_name))

        conn = self._connect()
        try:
            # One transaction per batch: `with conn` commits or rolls back.
            with conn:
                with conn.cursor() as cur:
                    execute_values(
                        cur,
                        query.as_string(conn),
                        rows,
                        template="(%s, %s, %s, %s::vector)",
                    )
            logger.info(f"Upserted {len(rows)} rows into '{self.table_name}'.")
            return len(rows)
        except psycopg2.Error as e:
            logger.error(f"Error upserting into '{self.table_name}': {e}", exc_info=True)
            raise StorageError(
                f"Upsert into '{self.table_name}' failed: {e}", component="pgvector_store"
            ) from e
        finally:
            conn.close()

    def search(
        self,
        query_vector: np.ndarray,
        k: int = 5,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[SearchResult]:
        literal = self._vector_literal(query_vector)
        query = sql.SQL(
            "SELECT id, content, metadata, embedding::text, "
            "1 - (embedding <=> %s::vector) AS similarity "
            "FROM {} WHERE metadata @> %s::jsonb "
            "ORDER BY embedding <=> %s::vector, inserted_seq "
            "LIMIT %s"
        ).format(sql.Identifier(self.table_name))
        params = (literal, json.dumps(metadata_filter or {}), literal, k)

        conn = self._connect()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
        except psycopg2.Error as e:
            raise StorageError(
                f"Search on '{self.table_name}' failed: {e}", component="pgvector_store"
            ) from e
        finally:
            conn.close()

        return [
            SearchResult(
                document=StoredDocument(
                    id=doc_id,
                    content=content,
                    metadata=metadata,
                    embedding=np.array(json.loads(embedding), dtype=np.float32),
                ),
                score=float(similarity),
            )
            for doc_id, content, metadata, embedding, similarity in rows
        ]

    def count(self) -> int:
        conn = self._connect()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(
                        sql.SQL("SELECT count(*) FROM {}").format(
                            sql.Identifier(self.table_name)
                        )
                    )
                    return cur.fetchone()[0]
        except psycopg2.Error as e:
            raise StorageError(
                f"Count on '{self.table_name}' failed: {e}", component="pgvector_store"
            ) from e
        finally:
            conn.close()

    def test_connection(self):
        logger.info("Testing connection to Postgres database")
        conn = self._connect()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
            logger.info("Connection to Postgres successful")
        except psycopg2.Error as e:
            logger.error("Postgres connection test failed.", exc_info=True)
            raise StorageError(
                f"Connection test on Postgres failed: {e}", component="pgvector_store"
            ) from e
        finally:
            conn.close()


class ChromaDBStore(BaseVectorStore):
    """
    A store that writes to a ChromaDB collection using cosine distance.

    ChromaDB does not expose insertion order, so equal scores come back in
    the order Chroma returns them.
    """

    def __init__(
        self,
        collection_name: str = "documents",
        host: str = None,
        port: int = 8000,
        path: str = None,
        dimensions: int = 1536,
    ):
        """
        Initializes the ChromaDBStore with either server or local details.

        Args:
            collection_name (str): The collection to write to.
            host (str): Hostname of a ChromaDB server. Takes precedence over path.
            port (int): Port of the ChromaDB server.
            path (str): Directory of a local persistent ChromaDB.
        """
        super().__init__(dimensions=dimensions)
        self.collection_name = collection_name
        self.host = host
        self.port = port
        self.path = path
        if host:
            self.client = chromadb.HttpClient(host=host, port=port)
        elif path:
            self.client = chromadb.PersistentClient(path=path)
        else:
            raise ConfigError(
                "ChromaDBStore needs either 'host' or 'path'.", component="chromadb_store"
            )
        logger.debug(
            f"Initialized ChromaDBStore with collection='{self.collection_name}'"
        )

    def _collection(self):
        try:
            return self.client.get_or_create_collection(
                name=self.collection_name, metadata={"hnsw:space": "cosine"}
            )
        except Exception as e:
            logger.error("Failed to open ChromaDB collection.", exc_info=True)
            raise StorageError(
                f"Could not open ChromaDB collection '{self.collection_name}': {e}",
                component="chromadb_store",
            ) from e

    @staticmethod
    def _where(metadata_filter: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not metadata_filter:
            return None
        clauses = [{key: value} for key, value in metadata_filter.items()]
        return clauses[0] if len(clauses) == 1 else {"$and": clauses}

    def ensure_schema(self):
        self._collection()

    def upsert(self, pairs: Sequence[ChunkVectorPair]) -> int:
        if not pairs:
            return 0
        self._check_pairs(pairs)
        collection = self._collection()
        logger.info(
            f"Upserting {len(pairs)} records into collection '{self.collection_name}'."
        )
        try:
            collection.upsert(
                ids=[chunk.document_id for chunk, _ in pairs],
                documents=[chunk.text for chunk, _ in pairs],
                metadatas=[dict(chunk.metadata) for chunk, _ in pairs],
                embeddings=[np.asarray(vector).tolist() for _, vector in pairs],
            )
        except Exception as e:
            logger.error(f"Error upserting records to ChromaDB: {e}", exc_info=True)
            raise StorageError(
                f"Upsert into '{self.collection_name}' failed: {e}",
                component="chromadb_store",
            ) from e
        return len(pairs)

    def search(
        self,
        query_vector: np.ndarray,
        k: int = 5,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[SearchResult]:
        collection = self._collection()
        try:
            results = collection.query(
                query_embeddings=[np.asarray(query_vector).tolist()],
                n_results=k,
                where=self._where(metadata_filter),
                include=["documents", "metadatas", "embeddings", "distances"],
            )
        except Exception as e:
            raise StorageError(
                f"Search on '{self.collection_name}' failed: {e}",
                component="chromadb_store",
            ) from e

        return [
            SearchResult(
                document=StoredDocument(
                    id=doc_id,
                    content=content,
                    metadata=metadata,
                    embedding=np.array(embedding, dtype=np.float32),
                ),
                score=1.0 - float(distance),
            )
            for doc_id, content, metadata, embedding, distance in zip(
                results["ids"][0],
                results["documents"][0],
                results["metadatas"][0],
                results["embeddings"][0],
                results["distances"][0],
            )
        ]

    def count(self) -> int:
        return self._collection().count()

    def test_connection(self):
        logger.info(f"Testing connection for ChromaDBStore '{self.collection_name}'")
        try:
            self.client.heartbeat()
            logger.info("Connection to ChromaDB successful.")
        except Exception as e:
            logger.error(f"Failed to connect to ChromaDB: {e}", exc_info=True)
            raise StorageError(
                f"Failed to connect to ChromaDB: {e}", component="chromadb_store"
            ) from e
