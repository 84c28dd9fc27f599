"""Async adapter over the DuckDB trade-area table.

Each fetch runs in a worker thread with its own pooled connection, so the event
loop stays free to serve other requests while a batch is in flight. Every
failure mode of a fetch (query error, pool exhaustion, statement timeout) surfaces
as StoreFetchError; callers never see driver exceptions.
"""

import asyncio
import logging
from typing import Any, Protocol

import duckdb

from placemap.api.queries import TRADE_AREAS_TABLE, RangeQuery
from placemap.data_access import ConnectionPool, PoolClosedError, PoolTimeoutError

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class StoreFetchError(RuntimeError):
    """A batch could not be fetched from the store."""

    pass


class StoreProtocol(Protocol):
    """What the batch fetcher needs from a store."""

    async def fetch(self, query: RangeQuery) -> list[Row]: ...


class GeometryStore:
    """Executes range queries against the trade-area table.

    Args:
        pool: Open connection pool (shared with other requests)
        statement_timeout: Maximum seconds per query; overruns are interrupted
        table: Source table name
    """

    def __init__(
        self,
        pool: ConnectionPool,
        statement_timeout: float,
        table: str = TRADE_AREAS_TABLE,
    ) -> None:
        self._pool = pool
        self._statement_timeout = statement_timeout
        self._table = table

    async def fetch(self, query: RangeQuery) -> list[Row]:
        """Fetch one batch, ordered by (place_id, category, sequence_id).

        Raises:
            StoreFetchError: On any query, pool or timeout failure
        """
        return await self._run(query, offset=None)

    async def fetch_page(self, query: RangeQuery, offset: int) -> list[Row]:
        """Fetch one offset-paged page. Cost grows with offset; keep pages shallow."""
        return await self._run(query, offset=offset)

    async def _run(self, query: RangeQuery, offset: int | None) -> list[Row]:
        sql, params = query.to_sql(self._table, offset=offset)
        in_flight: list[duckdb.DuckDBPyConnection] = []

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._execute, sql, params, in_flight),
                timeout=self._statement_timeout,
            )
        except TimeoutError as e:
            for conn in in_flight:
                conn.interrupt()
            logger.error(f"Store fetch exceeded {self._statement_timeout:.1f}s statement timeout")
            raise StoreFetchError(
                f"Statement timeout after {self._statement_timeout:.1f}s"
            ) from e
        except (PoolTimeoutError, PoolClosedError) as e:
            logger.error(f"Store connection checkout failed: {e}")
            raise StoreFetchError(f"Connection unavailable: {e}") from e
        except duckdb.Error as e:
            logger.error(f"Store query failed: {e}")
            raise StoreFetchError(f"Query failed: {e}") from e

    def _execute(
        self,
        sql: str,
        params: list[Any],
        in_flight: list[duckdb.DuckDBPyConnection],
    ) -> list[Row]:
        with self._pool.connection() as conn:
            in_flight.append(conn)
            try:
                cursor = conn.execute(sql, params)
                columns = [d[0] for d in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            finally:
                in_flight.remove(conn)
