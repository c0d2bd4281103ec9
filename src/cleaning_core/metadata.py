"""
Utilities for reading and preparing table metadata in the store.
"""

import logging
import re
from pathlib import Path
from typing import Union

import polars as pl
from opentelemetry import trace

from cleaning_core.datamodel import TID_COLUMN, Schema
from cleaning_core.query import quote_identifier, quote_literal
from cleaning_core.relational import RelationalTable
from cleaning_core.storage import DuckDBStorage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def table_exists(storage: DuckDBStorage, table_name: str) -> bool:
    """Whether ``table_name`` exists in the store (tables and views)."""
    frame = storage.query(
        "SELECT COUNT(*) AS n FROM information_schema.tables WHERE lower(table_name) = lower(?)",
        [table_name],
    )
    return frame["n"][0] > 0


def has_tid(storage: DuckDBStorage, table_name: str) -> bool:
    frame = storage.query(
        "SELECT COUNT(*) AS n FROM information_schema.columns "
        "WHERE lower(table_name) = lower(?) AND lower(column_name) = ?",
        [table_name, TID_COLUMN],
    )
    return frame["n"][0] > 0


def get_schema(storage: DuckDBStorage, table_name: str) -> Schema:
    """
    Schema of a store table.

    Raises:
        ValueError: If the table does not exist
    """
    if not table_exists(storage, table_name):
        raise ValueError(f"Unknown table name {table_name}")
    return RelationalTable(table_name, storage).get_schema()


def ensure_tid(storage: DuckDBStorage, table_name: str) -> bool:
    """
    Give ``table_name`` a generated ``tid INTEGER PRIMARY KEY`` column if it lacks one.

    Existing rows are numbered from 1 in scan order and later inserts that omit
    ``tid`` draw the next value from the table's sequence.

    Returns:
        True if the column was added
    """
    if has_tid(storage, table_name):
        return False

    columns = storage.query(
        "SELECT column_name, data_type FROM information_schema.columns "
        "WHERE lower(table_name) = lower(?) ORDER BY ordinal_position",
        [table_name],
    )
    definitions = ", ".join(
        f"{quote_identifier(name)} {data_type}" for name, data_type in columns.iter_rows()
    )
    names = ", ".join(quote_identifier(name) for name in columns["column_name"])

    table = quote_identifier(table_name)
    staging = quote_identifier(f"{table_name}__tid")
    sequence = re.sub(r"\W", "_", f"{table_name}_tid_seq").lower()
    with tracer.start_as_current_span("metadata.ensure_tid", attributes={"table_name": table_name}):
        with storage.write_lock, storage.acquire() as cursor:
            storage.run(cursor, "BEGIN TRANSACTION")
            try:
                storage.run(cursor, f"DROP TABLE IF EXISTS {staging}")
                storage.run(cursor, f"CREATE TABLE {staging} AS SELECT * FROM {table}")
                storage.run(cursor, f"DROP TABLE {table}")
                storage.run(cursor, f"DROP SEQUENCE IF EXISTS {quote_identifier(sequence)}")
                storage.run(cursor, f"CREATE SEQUENCE {quote_identifier(sequence)} START 1")
                storage.run(
                    cursor,
                    f"CREATE TABLE {table} ({TID_COLUMN} INTEGER PRIMARY KEY "
                    f"DEFAULT nextval({quote_literal(sequence)}), {definitions})",
                )
                storage.run(cursor, f"INSERT INTO {table} ({names}) SELECT {names} FROM {staging}")
                storage.run(cursor, f"DROP TABLE {staging}")
            except BaseException:
                cursor.rollback()
                raise
            storage.run(cursor, "COMMIT")
    logger.info("Added generated %s column to %s", TID_COLUMN, table_name)
    return True


def copy_table(storage: DuckDBStorage, source_table: str, target_table: str) -> None:
    """
    Copy a table within the store, replacing the target.

    The copy always ends up with a ``tid`` column.
    """
    with tracer.start_as_current_span(
        "metadata.copy_table", attributes={"source": source_table, "target": target_table}
    ):
        with storage.write_lock, storage.acquire() as cursor:
            storage.run(cursor, f"DROP TABLE IF EXISTS {quote_identifier(target_table)}")
            storage.run(
                cursor,
                f"CREATE TABLE {quote_identifier(target_table)} AS "
                f"SELECT * FROM {quote_identifier(source_table)}",
            )
        ensure_tid(storage, target_table)


def import_csv(
    storage: DuckDBStorage, path: Union[str, Path], table_name: str
) -> str:
    """
    Load a CSV file into ``table_name``, replacing it, and add a ``tid`` column.

    Returns:
        The table name
    """
    with tracer.start_as_current_span("metadata.import_csv", attributes={"path": str(path)}):
        df = pl.read_csv(Path(path))
        storage.save_dataframe(df, table_name, if_exists="replace")
        ensure_tid(storage, table_name)
    logger.info("Imported %s into %s (%d rows)", path, table_name, len(df))
    return table_name
