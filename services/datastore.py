"""
Datastore access: point reads and vector similarity search over PostgreSQL
with the pgvector extension.

Each dataset lives in one table:

    id TEXT PRIMARY KEY, data JSONB NOT NULL, embedding VECTOR(n)

The table, its vector index and its rows are created by the loader, not here.
"""
import asyncio
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence

import psycopg2
import psycopg2.errors
from psycopg2 import sql
from psycopg2.pool import PoolError, ThreadedConnectionPool

from models.config_models import DatabaseSettings, DatasetConfig
from models.main_models import SimilarityCandidate
from services.deadline import Deadline
from services.errors import InternalError, OperationTimeoutError, UnavailableError

logger = logging.getLogger(__name__)

DISTANCE_OPERATORS = {
    "cosine": "<=>",
    "l2": "<->",
    "inner_product": "<#>",
}


def distance_to_score(metric: str, distance: float) -> float:
    """
    Converts a pgvector distance into a score where higher means closer.
    """
    if metric == "cosine":
        return 1.0 - distance
    if metric == "l2":
        return 1.0 / (1.0 + distance)
    # <#> returns the negative inner product
    return -distance


class Datastore(Protocol):
    """
    Operations the resolver and the orchestrator need from a datastore.
    """

    async def get(
        self,
        key: str,
        project: Optional[Sequence[str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Optional[Dict[str, Any]]:
        ...

    async def vector_search(
        self,
        vector: List[float],
        limit: int,
        deadline: Optional[Deadline] = None,
    ) -> List[SimilarityCandidate]:
        ...

    async def index_exists(self, deadline: Optional[Deadline] = None) -> bool:
        ...

    async def close(self) -> None:
        ...


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """
    Maps psycopg2 errors onto the service error taxonomy.
    """
    try:
        yield
    except psycopg2.errors.QueryCanceled as e:
        raise OperationTimeoutError(f"{operation} timed out") from e
    except PoolError as e:
        raise UnavailableError(f"{operation} failed: connection pool unavailable ({e})") from e
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        raise UnavailableError(f"{operation} failed: datastore unavailable ({e})") from e
    except psycopg2.Error as e:
        raise InternalError(f"{operation} failed: {e}") from e


class PgVectorDatastore:
    """
    Datastore backed by a psycopg2 connection pool.

    The pool is created on first use and shared by all operations. Creation is
    guarded by a lock so concurrent first callers open a single pool. close()
    may run while operations are in flight: they fail with UnavailableError,
    and the next call opens a fresh pool.
    """

    def __init__(self, settings: DatabaseSettings, dataset: DatasetConfig):
        self._settings = settings
        self._dataset = dataset
        self._vector = dataset.vector_settings
        self._table = sql.Identifier(dataset.scope, dataset.collection)
        self._pool: Optional[ThreadedConnectionPool] = None
        self._lock = threading.Lock()
        # ThreadedConnectionPool raises instead of waiting when exhausted
        self._slots = threading.BoundedSemaphore(settings.pool_max)

    # =====================
    # Connection handling
    # =====================

    def _get_pool(self) -> ThreadedConnectionPool:
        pool = self._pool
        if pool is not None and not pool.closed:
            return pool
        with self._lock:
            if self._pool is None or self._pool.closed:
                logger.info(
                    "Connecting to PostgreSQL at %s:%s/%s",
                    self._settings.host, self._settings.port, self._settings.dbname,
                )
                try:
                    self._pool = ThreadedConnectionPool(
                        minconn=1,
                        maxconn=self._settings.pool_max,
                        host=self._settings.host,
                        port=self._settings.port,
                        dbname=self._settings.dbname,
                        user=self._settings.user,
                        password=self._settings.password,
                        connect_timeout=self._settings.connect_timeout,
                        application_name=self._dataset.server_name,
                    )
                except psycopg2.OperationalError as e:
                    raise UnavailableError(f"Could not connect to datastore: {e}") from e
            return self._pool

    @contextmanager
    def _cursor(self, deadline: Optional[Deadline]):
        """
        Context manager yielding a cursor inside a read-only transaction whose
        statement_timeout matches the deadline.

        Waits for a free connection until the deadline expires, or
        indefinitely without one.

        Raises:
            OperationTimeoutError: If no connection frees up in time.
        """
        timeout = deadline.remaining() if deadline is not None else None
        if not self._slots.acquire(timeout=timeout):
            label = deadline.label if deadline is not None else "Datastore operation"
            raise OperationTimeoutError(f"{label} timed out waiting for a connection")
        try:
            with self._checkout(deadline) as cur:
                yield cur
        finally:
            self._slots.release()

    @contextmanager
    def _checkout(self, deadline: Optional[Deadline]):
        pool = self._get_pool()
        conn = pool.getconn()
        broken = False
        try:
            with conn.cursor() as cur:
                cur.execute("SET TRANSACTION READ ONLY")
                if deadline is not None:
                    cur.execute("SET LOCAL statement_timeout = %s", (deadline.remaining_ms(),))
                yield cur
        finally:
            if conn.closed:
                broken = True
            else:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    logger.warning("Discarding connection after failed rollback", exc_info=True)
                    broken = True
            if not pool.closed:
                pool.putconn(conn, close=broken)

    def _close_sync(self) -> None:
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None and not pool.closed:
            pool.closeall()
            logger.info("Closed PostgreSQL connection pool")

    # =====================
    # Blocking operations
    # =====================

    def _get_sync(
        self,
        key: str,
        project: Optional[Sequence[str]],
        deadline: Optional[Deadline],
    ) -> Optional[Dict[str, Any]]:
        with translate_errors(f"Fetch of {key!r}"):
            if project:
                columns = sql.SQL(", ").join(sql.SQL("data -> %s") for _ in project)
                query = sql.SQL("SELECT {} FROM {} WHERE id = %s").format(columns, self._table)
                params = [*project, key]
            else:
                query = sql.SQL("SELECT data FROM {} WHERE id = %s").format(self._table)
                params = [key]
            with self._cursor(deadline) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        if row is None:
            return None
        if not project:
            return row[0]
        # Attributes missing from the document are left out of the projection
        return {field: value for field, value in zip(project, row) if value is not None}

    def _vector_search_sync(
        self,
        vector: List[float],
        limit: int,
        deadline: Optional[Deadline],
    ) -> List[SimilarityCandidate]:
        column = sql.Identifier(self._vector.column)
        query = sql.SQL(
            "SELECT id, {column} {op} %s::vector AS distance FROM {table} "
            "WHERE {column} IS NOT NULL ORDER BY distance LIMIT %s"
        ).format(
            column=column,
            op=sql.SQL(DISTANCE_OPERATORS[self._vector.metric]),
            table=self._table,
        )
        with translate_errors(f"Vector search on {self._vector.index_name!r}"):
            with self._cursor(deadline) as cur:
                cur.execute(query, (json.dumps(vector), limit))
                rows = cur.fetchall()
        return [
            SimilarityCandidate(id=row_id, score=distance_to_score(self._vector.metric, distance))
            for row_id, distance in rows
        ]

    def _index_exists_sync(self, deadline: Optional[Deadline]) -> bool:
        with translate_errors("Index check"):
            with self._cursor(deadline) as cur:
                cur.execute(
                    "SELECT 1 FROM pg_indexes "
                    "WHERE schemaname = %s AND tablename = %s AND indexname = %s",
                    (self._dataset.scope, self._dataset.collection, self._vector.index_name),
                )
                return cur.fetchone() is not None

    # =====================
    # Async surface
    # =====================

    async def get(
        self,
        key: str,
        project: Optional[Sequence[str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Point read by key, optionally limited to the `project` attributes.
        Returns None when the key does not exist.
        """
        return await asyncio.to_thread(self._get_sync, key, project, deadline)

    async def vector_search(
        self,
        vector: List[float],
        limit: int,
        deadline: Optional[Deadline] = None,
    ) -> List[SimilarityCandidate]:
        """
        Returns at most `limit` candidates ordered by descending score.
        """
        return await asyncio.to_thread(self._vector_search_sync, vector, limit, deadline)

    async def index_exists(self, deadline: Optional[Deadline] = None) -> bool:
        return await asyncio.to_thread(self._index_exists_sync, deadline)

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)
