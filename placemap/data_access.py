"""DuckDB connection management with configuration.

The geometry store is shared by every request, streaming or buffered, through an
explicitly constructed ConnectionPool. The pool owns one root connection and a
fixed number of cursors on the same database; checkouts block up to the configured
timeout and fail with PoolTimeoutError instead of hanging.
"""

import logging
import queue
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import Any

import duckdb

from placemap.config import Config

logger = logging.getLogger(__name__)


class PoolTimeoutError(RuntimeError):
    """No pooled connection became available within the checkout timeout."""

    pass


class PoolClosedError(RuntimeError):
    """Checkout attempted on a pool that is not open."""

    pass


def create_configured_connection(
    config: Config,
    database: Path | str | None = None,
) -> duckdb.DuckDBPyConnection:
    """Create DuckDB connection with standard configuration.

    Applies memory limits and threading from the [database] section.

    Args:
        config: Configuration object
        database: Database path, overriding config.database.path (":memory:" for
            an in-memory store)

    Returns:
        Configured DuckDB connection

    Example:
        >>> from placemap.config import Config
        >>> config = Config.from_file("config.toml")
        >>> conn = create_configured_connection(config)
        >>> conn.execute("SELECT 42").fetchone()
        (42,)
    """
    target = str(database) if database is not None else config.database.path
    conn = duckdb.connect(target)

    conn.execute(f"SET memory_limit = '{config.database.memory_limit}'")
    conn.execute(f"SET threads = {config.database.threads}")

    return conn


class ConnectionPool:
    """Bounded pool of DuckDB connections sharing one database.

    Lifecycle is explicit: open() before use, close() when done (or use the pool
    as a context manager). Connections handed out by connection() are cursors of
    the root connection, so each is safe to use from its own worker thread.

    Example:
        >>> with ConnectionPool(Config()) as pool:
        ...     with pool.connection() as conn:
        ...         conn.execute("SELECT 1").fetchone()
        (1,)
    """

    def __init__(self, config: Config, database: Path | str | None = None) -> None:
        self._config = config
        self._database = database
        self._root: duckdb.DuckDBPyConnection | None = None
        self._idle: queue.Queue[duckdb.DuckDBPyConnection] = queue.Queue()
        self._members: list[duckdb.DuckDBPyConnection] = []

    @property
    def size(self) -> int:
        return self._config.pool.size

    @property
    def is_open(self) -> bool:
        return self._root is not None

    def open(self) -> None:
        """Open the root connection and fill the pool."""
        if self._root is not None:
            return

        self._root = create_configured_connection(self._config, self._database)
        for _ in range(self.size):
            member = self._root.cursor()
            self._members.append(member)
            self._idle.put(member)

        logger.info(
            f"Connection pool opened ({self.size} connections, "
            f"database={self._database or self._config.database.path})"
        )

    def close(self) -> None:
        """Close every pooled connection and the root connection."""
        if self._root is None:
            return

        for member in self._members:
            member.close()
        self._members.clear()
        self._idle = queue.Queue()

        self._root.close()
        self._root = None
        logger.info("Connection pool closed")

    def __enter__(self) -> "ConnectionPool":
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @contextmanager
    def connection(self, timeout: float | None = None) -> Iterator[duckdb.DuckDBPyConnection]:
        """Check out a connection, returning it to the pool afterwards.

        Args:
            timeout: Seconds to wait for a free connection. Defaults to
                config.pool.checkout_timeout.

        Yields:
            A pooled DuckDB connection

        Raises:
            PoolClosedError: If the pool is not open
            PoolTimeoutError: If no connection frees up in time
        """
        if self._root is None:
            raise PoolClosedError("Connection pool is not open")

        wait = self._config.pool.checkout_timeout if timeout is None else timeout
        try:
            conn = self._idle.get(timeout=wait)
        except queue.Empty as e:
            raise PoolTimeoutError(
                f"No connection available after {wait:.1f}s (pool size {self.size})"
            ) from e

        try:
            yield conn
        finally:
            # The pool may have been closed (and reopened) while this connection was
            # out; only current members go back on the idle queue.
            if any(conn is member for member in self._members):
                self._idle.put(conn)
            else:
                logger.debug("Dropping connection from a closed pool generation")

    def status(self) -> dict[str, Any]:
        """Get current pool status."""
        return {
            "open": self.is_open,
            "size": self.size,
            "idle": self._idle.qsize() if self.is_open else 0,
        }
