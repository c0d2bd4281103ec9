"""
DuckDB storage layer: the connection factory every table and stage goes through.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Union

import duckdb
import polars as pl
from opentelemetry import trace

from cleaning_core.errors import StoreUnavailable
from cleaning_core.plan import StoreConfig
from cleaning_core.query import quote_identifier

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DuckDBStorage:
    """
    DuckDB storage backend bound to one StoreConfig.

    A single database connection is held open; each unit of work acquires its
    own cursor on it through ``acquire()`` and releases it on exit.
    """

    def __init__(self, config: Optional[Union[StoreConfig, str]] = None):
        """
        Initialize DuckDB storage.

        Args:
            config: StoreConfig, or a DuckDB file path. If None, uses an in-memory database.
        """
        if config is None or isinstance(config, str):
            config = StoreConfig(path=config)
        self.config = config
        self.db_path = config.path or ":memory:"
        self.connection: Optional[duckdb.DuckDBPyConnection] = None
        self.write_lock = threading.RLock()
        self._active: List[duckdb.DuckDBPyConnection] = []
        self._active_lock = threading.Lock()

    def __enter__(self) -> "DuckDBStorage":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        """Context manager exit."""
        self.close()

    def connect(self) -> None:
        """Establish connection to DuckDB."""
        with tracer.start_as_current_span("duckdb.connect", attributes={"store": self.config.name}):
            try:
                self.connection = duckdb.connect(self.db_path)
            except duckdb.Error as ex:
                raise StoreUnavailable(f"Cannot open store {self.config.name}: {ex}") from ex

    def close(self) -> None:
        """Close DuckDB connection."""
        if self.connection:
            with tracer.start_as_current_span("duckdb.close"):
                self.connection.close()
                self.connection = None

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if not self.connection:
            raise RuntimeError("Not connected to database. Call connect() first.")
        return self.connection

    @contextmanager
    def acquire(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Scoped connection: a cursor on the shared database, closed on every exit path.

        Raises:
            StoreUnavailable: If the cursor cannot be opened
        """
        connection = self._require_connection()
        try:
            cursor = connection.cursor()
        except duckdb.Error as ex:
            raise StoreUnavailable(f"Cannot acquire connection: {ex}") from ex

        with self._active_lock:
            self._active.append(cursor)
        try:
            yield cursor
        finally:
            with self._active_lock:
                self._active.remove(cursor)
            cursor.close()

    def interrupt(self) -> None:
        """Interrupt every statement currently running on this store."""
        with self._active_lock:
            active = list(self._active)
        for cursor in active:
            cursor.interrupt()
        if active:
            logger.info("Interrupted %d in-flight statement(s) on %s", len(active), self.config.name)

    @contextmanager
    def _bounded(self, cursor: duckdb.DuckDBPyConnection) -> Iterator[None]:
        timeout = self.config.timeout_seconds
        if timeout is None:
            yield
            return

        timer = threading.Timer(timeout, cursor.interrupt)
        timer.daemon = True
        timer.start()
        try:
            yield
        finally:
            timer.cancel()

    def run(
        self, cursor: duckdb.DuckDBPyConnection, sql: str, params: Optional[Sequence[Any]] = None
    ) -> duckdb.DuckDBPyConnection:
        """
        Execute one statement on an acquired cursor within the configured time bound.

        Raises:
            StoreUnavailable: If execution fails, is interrupted or times out
        """
        logger.debug("%s", sql)
        try:
            with self._bounded(cursor):
                return cursor.execute(sql, params) if params is not None else cursor.execute(sql)
        except duckdb.Error as ex:
            raise StoreUnavailable(f"Statement failed on {self.config.name}: {ex}") from ex

    def fetch(
        self, cursor: duckdb.DuckDBPyConnection, sql: str, params: Optional[Sequence[Any]] = None
    ) -> pl.DataFrame:
        """Execute a query on an acquired cursor and return the result as a Polars DataFrame."""
        result = self.run(cursor, sql, params)
        try:
            with self._bounded(cursor):
                arrow_table = result.to_arrow_table()
        except duckdb.Error as ex:
            raise StoreUnavailable(f"Fetch failed on {self.config.name}: {ex}") from ex
        return pl.from_arrow(arrow_table)

    def save_dataframe(
        self, df: pl.DataFrame, table_name: str, if_exists: str = "replace"
    ) -> None:
        """
        Save a Polars DataFrame to DuckDB.

        Args:
            df: Polars DataFrame to save
            table_name: Name of the table
            if_exists: Action if table exists ('replace', 'append', 'fail')
        """
        self._require_connection()

        with tracer.start_as_current_span(
            "duckdb.save_dataframe", attributes={"table_name": table_name, "rows": len(df)}
        ), self.write_lock, self.acquire() as cursor:
            table = quote_identifier(table_name)
            exists = table_name in self._list_tables(cursor)

            if exists and if_exists == "fail":
                raise ValueError(f"Table {table_name} already exists")

            cursor.register("_incoming_frame", df.to_arrow())
            try:
                if exists and if_exists == "append":
                    self.run(cursor, f"INSERT INTO {table} SELECT * FROM _incoming_frame")
                else:
                    self.run(cursor, f"DROP TABLE IF EXISTS {table}")
                    self.run(cursor, f"CREATE TABLE {table} AS SELECT * FROM _incoming_frame")
            finally:
                cursor.unregister("_incoming_frame")

    def load_dataframe(self, table_name: str, limit: Optional[int] = None) -> pl.DataFrame:
        """
        Load a table as a Polars DataFrame.

        Args:
            table_name: Name of the table to load
            limit: Optional row limit

        Returns:
            Polars DataFrame
        """
        query = f"SELECT * FROM {quote_identifier(table_name)}"
        if limit:
            query += f" LIMIT {int(limit)}"
        return self.query(query)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> pl.DataFrame:
        """
        Execute a SQL query and return results as Polars DataFrame.

        Args:
            sql: SQL query to execute
            params: Optional positional parameters

        Returns:
            Query results as Polars DataFrame
        """
        self._require_connection()

        with tracer.start_as_current_span("duckdb.query"), self.acquire() as cursor:
            return self.fetch(cursor, sql, params)

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        """
        Execute a SQL statement without returning results.

        Args:
            sql: SQL statement to execute
            params: Optional positional parameters
        """
        self._require_connection()

        with tracer.start_as_current_span("duckdb.execute"), self.write_lock, self.acquire() as cursor:
            self.run(cursor, sql, params)

    def _list_tables(self, cursor: duckdb.DuckDBPyConnection) -> List[str]:
        result = self.run(
            cursor,
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'",
        ).fetchall()
        return [row[0] for row in result]

    def list_tables(self) -> List[str]:
        """
        List all tables in the database.

        Returns:
            List of table names
        """
        self._require_connection()

        with self.acquire() as cursor:
            return self._list_tables(cursor)
