"""
Table backed by the relational store.

A RelationalTable accumulates a query description and only talks to the store
when one of its accessors needs content that is not yet synchronized.
"""

import logging
import re
import threading
import time
from typing import Iterable, List, Optional, Sequence, Union

from opentelemetry import trace

from cleaning_core.datamodel import ColumnRef, Row, Schema
from cleaning_core.errors import RecycledTableError, StoreUnavailable
from cleaning_core.observability import Diagnostics, DurationKind, NullDiagnostics
from cleaning_core.query import Predicate, QuerySpec, quote_identifier
from cleaning_core.storage import DuckDBStorage
from cleaning_core.table import (
    GroupOutcome,
    GroupStatus,
    PredicateRef,
    SyncResult,
    SyncState,
    Table,
    as_predicate,
    column_name,
    partition_rows,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RelationalTable(Table):
    """
    A Table over a relation in a DuckDB store.

    Shaping calls (``project``, ``filter``, ``order_by``) replace the immutable
    QuerySpec and mark cached content dirty. Materialization runs under a
    per-instance lock, so concurrent accessors of one table share a single
    synchronization.
    """

    def __init__(
        self,
        table_name: str,
        storage: DuckDBStorage,
        spec: Optional[QuerySpec] = None,
        diagnostics: Optional[Diagnostics] = None,
    ):
        super().__init__(table_name)
        if storage is None:
            raise ValueError("Storage cannot be None.")

        self.storage = storage
        self.diagnostics = diagnostics or NullDiagnostics()
        self.last_sync: Optional[SyncResult] = None
        self._spec = spec or QuerySpec(source=table_name)
        self._schema: Optional[Schema] = None
        self._rows: List[Row] = []
        self._state = SyncState.UNSYNCED
        self._schema_fresh = False
        self._lock = threading.RLock()

    @property
    def spec(self) -> QuerySpec:
        return self._spec

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def needs_sync(self) -> bool:
        return self._state != SyncState.SYNCED

    def _check(self) -> None:
        if self._state == SyncState.RECYCLED:
            raise RecycledTableError(f"Table {self.table_name} has been recycled.")

    # Table interface

    def size(self) -> int:
        self._sync_data_if_needed()
        return len(self._rows)

    def get_schema(self) -> Schema:
        self._sync_schema_if_needed()
        return self._schema if self._schema is not None else Schema(self.table_name, [])

    def get(self, index: int) -> Row:
        self._sync_data_if_needed()
        return self._rows[index]

    def rows(self) -> List[Row]:
        self._sync_data_if_needed()
        return list(self._rows)

    def project(self, columns: Iterable[ColumnRef]) -> "RelationalTable":
        return self._reshape(self._spec.select(column_name(c) for c in columns))

    def filter(self, predicates: Iterable[PredicateRef]) -> "RelationalTable":
        return self._reshape(self._spec.where(as_predicate(p) for p in predicates))

    def order_by(self, columns: Iterable[ColumnRef]) -> "RelationalTable":
        return self._reshape(self._spec.order_by(column_name(c) for c in columns))

    def refresh(self) -> "RelationalTable":
        """Force the next accessor to re-materialize."""
        return self._reshape(self._spec)

    def _reshape(self, spec: QuerySpec) -> "RelationalTable":
        with self._lock:
            self._check()
            self._spec = spec
            self._schema_fresh = False
            if self._state == SyncState.SYNCED:
                self._state = SyncState.DIRTY
        return self

    # Grouping

    def group_on(self, column: Union[ColumnRef, Sequence[ColumnRef]]) -> List[Table]:
        if isinstance(column, (list, tuple)):
            return super().group_on(column)
        return self.try_group_on(column).tables

    def try_group_on(self, column: ColumnRef) -> GroupOutcome:
        """
        Partition the table on one column using the store.

        Each distinct value becomes a derived RelationalTable whose query adds an
        equality predicate on that value. If the store fails, the partition is
        computed from the rows already materialized in memory instead.

        Args:
            column: Column or column name to group on

        Returns:
            GroupOutcome with the partitions and the path that produced them
        """
        self._check()
        name = column_name(column)

        with tracer.start_as_current_span(
            "table.group_on", attributes={"table_name": self.table_name, "column": name}
        ) as span:
            self._create_index(name)
            try:
                with self.storage.acquire() as cursor:
                    frame = self.storage.fetch(cursor, self._spec.distinct(name))
            except StoreUnavailable as ex:
                logger.error("Grouping %s on %s failed, using memory: %s", self.table_name, name, ex)
                span.set_attribute("fallback", True)
                with self._lock:
                    schema = self._schema if self._schema is not None else Schema(self.table_name, [])
                    rows = list(self._rows)
                return GroupOutcome(
                    GroupStatus.FALLBACK, partition_rows(self.table_name, schema, rows, name), ex
                )

            tables: List[Table] = [
                RelationalTable(
                    self.table_name,
                    self.storage,
                    self._spec.where([Predicate.equal(name, value)]),
                    self.diagnostics,
                )
                for value in frame.to_series(0).to_list()
            ]
            span.set_attribute("partitions", len(tables))
            return GroupOutcome(GroupStatus.STORE, tables)

    def _create_index(self, name: str) -> None:
        index_name = re.sub(r"\W", "_", f"idx_{self._spec.source}_{name}")
        sql = (
            f"CREATE INDEX IF NOT EXISTS {quote_identifier(index_name)} "
            f"ON {quote_identifier(self._spec.source)} ({quote_identifier(name)})"
        )
        try:
            with self.storage.write_lock, self.storage.acquire() as cursor:
                self.storage.run(cursor, sql)
        except StoreUnavailable as ex:
            logger.debug("Index on %s(%s) not created: %s", self._spec.source, name, ex)

    # Synchronization

    def _sync_schema_if_needed(self) -> None:
        with self._lock:
            self._check()
            if self._state != SyncState.SYNCED and not self._schema_fresh:
                self._sync_schema()
                self._schema_fresh = True

    def _sync_data_if_needed(self) -> None:
        with self._lock:
            self._check()
            if self._state != SyncState.SYNCED:
                self._sync_data()
                self._state = SyncState.SYNCED
                self._schema_fresh = True

    def _sync_schema(self) -> None:
        sql = self._spec.with_limit(1).build()
        try:
            with self.storage.acquire() as cursor:
                frame = self.storage.fetch(cursor, sql)
        except StoreUnavailable as ex:
            logger.error("Cannot get valid schema of %s: %s", self.table_name, ex)
            return
        self._schema = Schema(self.table_name, frame.columns)

    def _sync_data(self) -> None:
        started = time.perf_counter()
        sql = self._spec.build()

        with tracer.start_as_current_span(
            "table.sync", attributes={"table_name": self.table_name, "sql": sql}
        ) as span:
            try:
                with self.storage.acquire() as cursor:
                    frame = self.storage.fetch(cursor, sql)
            except StoreUnavailable as ex:
                self.last_sync = (
                    SyncResult.FAILURE if self._state == SyncState.UNSYNCED else SyncResult.FALLBACK
                )
                logger.error("Synchronization of %s failed (%s): %s", self.table_name, self.last_sync.value, ex)
                span.set_attribute("sync_result", self.last_sync.value)
                return

            schema = Schema(self.table_name, frame.columns)
            tid_index = schema.tid_index
            rows = []
            for values in frame.iter_rows():
                row_id = values[tid_index] if tid_index is not None else None
                rows.append(Row(row_id, schema, values))

            self._schema, self._rows = schema, rows
            self.last_sync = SyncResult.SUCCESS
            span.set_attribute("rows", len(rows))

        self.diagnostics.record_duration(
            DurationKind.STORE_LOAD, (time.perf_counter() - started) * 1000
        )

    def recycle(self) -> None:
        with self._lock:
            self._rows = []
            self._schema = None
            self._state = SyncState.RECYCLED

    # Equality

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True

        if not isinstance(other, RelationalTable):
            return False

        if self.storage.config == other.storage.config and self.table_name == other.table_name:
            return True

        if self._state != SyncState.SYNCED or other._state != SyncState.SYNCED:
            return False
        return [(r.row_id, r.values) for r in self._rows] == [
            (r.row_id, r.values) for r in other._rows
        ]

    def __hash__(self) -> int:
        return hash((self.storage.config, self.table_name))

    def __repr__(self) -> str:
        return f"RelationalTable({self.table_name!r}, {self._state.value}, {self._spec.build()!r})"
