"""
Abstract table capability set and the in-memory implementation.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Union

from cleaning_core.datamodel import Column, ColumnRef, Row, Schema
from cleaning_core.errors import RecycledTableError
from cleaning_core.query import Predicate

PredicateRef = Union[Predicate, str]


class SyncState(str, Enum):
    """Synchronization state of a table's cached content."""

    UNSYNCED = "unsynced"
    SYNCED = "synced"
    DIRTY = "dirty"
    RECYCLED = "recycled"


class SyncResult(str, Enum):
    """Outcome of the last materialization attempt."""

    SUCCESS = "success"
    FALLBACK = "fallback"
    FAILURE = "failure"


class GroupStatus(str, Enum):
    """How a grouping was computed."""

    STORE = "store"
    FALLBACK = "fallback"


class GroupOutcome:
    """Partitions produced by a grouping, with the path that produced them."""

    def __init__(
        self,
        status: GroupStatus,
        tables: List["Table"],
        error: Optional[BaseException] = None,
    ):
        self.status = status
        self.tables = tables
        self.error = error

    @property
    def is_fallback(self) -> bool:
        return self.status == GroupStatus.FALLBACK

    def __repr__(self) -> str:
        return f"GroupOutcome({self.status.value}, {len(self.tables)} partition(s))"


def column_name(column: ColumnRef) -> str:
    return column.name if isinstance(column, Column) else column


def as_predicate(predicate: PredicateRef) -> Predicate:
    return predicate if isinstance(predicate, Predicate) else Predicate.parse(predicate)


class Table(ABC):
    """A queryable, ordered collection of rows over one named relation."""

    def __init__(self, table_name: str):
        if not table_name:
            raise ValueError("Table name cannot be empty.")
        self.table_name = table_name

    @abstractmethod
    def size(self) -> int:
        """Number of rows."""

    @abstractmethod
    def get_schema(self) -> Schema:
        """Schema of the rows."""

    @abstractmethod
    def get(self, index: int) -> Row:
        """Row at ``index``."""

    @abstractmethod
    def project(self, columns: Iterable[ColumnRef]) -> "Table":
        """Restrict the rows to ``columns``."""

    @abstractmethod
    def filter(self, predicates: Iterable[PredicateRef]) -> "Table":
        """Keep the rows matching every predicate."""

    @abstractmethod
    def order_by(self, columns: Iterable[ColumnRef]) -> "Table":
        """Order the rows by ``columns``."""

    @abstractmethod
    def rows(self) -> List[Row]:
        """Materialized rows, in order."""

    def recycle(self) -> None:
        """Release cached content; the table must not be used afterwards."""

    def __len__(self) -> int:
        return self.size()

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows())

    def group_on(self, column: Union[ColumnRef, Sequence[ColumnRef]]) -> List["Table"]:
        """
        Partition the table by the value of one column, or successively by several.

        Args:
            column: Column, column name, or a sequence of them

        Returns:
            One table per distinct value (per distinct value combination for a sequence)
        """
        if isinstance(column, (list, tuple)):
            partitions: List[Table] = [self]
            for each in column:
                partitions = [part for table in partitions for part in table.group_on(each)]
            return partitions
        return self._group_in_memory(column_name(column))

    def _group_in_memory(self, name: str) -> List["Table"]:
        return partition_rows(self.table_name, self.get_schema(), self.rows(), name)


def _group_key(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


def _sort_key(value: Any) -> tuple:
    return (value is None, value)


class MemoryTable(Table):
    """A table whose rows are already held in memory."""

    def __init__(self, table_name: str, schema: Schema, rows: Iterable[Row] = ()):
        super().__init__(table_name)
        self._schema = schema
        self._rows = list(rows)
        self._recycled = False

    def _check(self) -> None:
        if self._recycled:
            raise RecycledTableError(f"Table {self.table_name} has been recycled.")

    def size(self) -> int:
        self._check()
        return len(self._rows)

    def get_schema(self) -> Schema:
        self._check()
        return self._schema

    def get(self, index: int) -> Row:
        self._check()
        return self._rows[index]

    def rows(self) -> List[Row]:
        self._check()
        return list(self._rows)

    def project(self, columns: Iterable[ColumnRef]) -> "MemoryTable":
        self._check()
        schema = Schema(self.table_name, [column_name(c) for c in columns])
        projected = []
        for row in self._rows:
            copy = row.copy()
            copy.select(schema)
            projected.append(copy)
        self._schema, self._rows = schema, projected
        return self

    def filter(self, predicates: Iterable[PredicateRef]) -> "MemoryTable":
        self._check()
        parsed = [as_predicate(p) for p in predicates]
        self._rows = [row for row in self._rows if all(p.evaluate(row) for p in parsed)]
        return self

    def order_by(self, columns: Iterable[ColumnRef]) -> "MemoryTable":
        self._check()
        names = [column_name(c) for c in columns]
        self._rows.sort(key=lambda row: tuple(_sort_key(row.get(n)) for n in names))
        return self

    def recycle(self) -> None:
        self._rows = []
        self._recycled = True

    def __repr__(self) -> str:
        return f"MemoryTable({self.table_name!r}, {len(self._rows)} row(s))"


def materialize_all(tables: Sequence[Table], max_workers: int = 4) -> List[Table]:
    """
    Materialize independent tables concurrently.

    Args:
        tables: Tables to materialize
        max_workers: Upper bound on concurrent materializations

    Returns:
        The same tables, in order
    """
    if len(tables) <= 1 or max_workers <= 1:
        for table in tables:
            table.size()
        return list(tables)

    with ThreadPoolExecutor(max_workers=min(max_workers, len(tables))) as executor:
        list(executor.map(lambda t: t.size(), tables))
    return list(tables)


def partition_rows(
    table_name: str, schema: Schema, rows: Iterable[Row], column: str
) -> List[Table]:
    """Split rows into one MemoryTable per distinct value of ``column``, in first-seen order."""
    groups = {}
    for row in rows:
        groups.setdefault(_group_key(row.get(column)), []).append(row)
    return [MemoryTable(table_name, schema, members) for members in groups.values()]
