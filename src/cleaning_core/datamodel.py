"""
Addressing types for tabular data: columns, schemas, cells and rows.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Union

from cleaning_core.errors import ColumnNotFoundError, IntegrityError

TID_COLUMN = "tid"
IMPORT_PREFIX = "csv_"

ColumnRef = Union["Column", str]


@dataclass(frozen=True)
class Column:
    """A (table name, column name) identity pair."""

    table_name: str
    name: str

    def is_tid(self) -> bool:
        return self.name.lower() == TID_COLUMN

    def __str__(self) -> str:
        return f"{self.table_name}.{self.name}"


@dataclass(frozen=True)
class Cell:
    """A single addressable value, the unit a repair targets."""

    column: Column
    row_id: Optional[int]
    value: Any


class Schema:
    """
    Ordered, duplicate-free sequence of columns belonging to one table.
    """

    def __init__(self, table_name: str, columns: Iterable[ColumnRef]):
        if table_name is None or columns is None:
            raise IntegrityError("Schema table name and columns cannot be None.")

        self.table_name = table_name
        self._columns: List[Column] = [self._coerce(table_name, c) for c in columns]
        self._positions = {}
        self._tid_index: Optional[int] = None

        for position, column in enumerate(self._columns):
            if column in self._positions:
                raise IntegrityError(f"Duplicate column {column} in schema of {table_name}.")
            self._positions[column] = position
            if self._tid_index is None and column.is_tid():
                self._tid_index = position

    @staticmethod
    def _coerce(table_name: str, column: ColumnRef) -> Column:
        if isinstance(column, Column):
            return column
        return Column(table_name, column)

    def column(self, ref: ColumnRef) -> Column:
        """Resolve a column name against this schema's table."""
        return self._coerce(self.table_name, ref)

    @property
    def columns(self) -> List[Column]:
        return list(self._columns)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self._columns]

    @property
    def tid_index(self) -> Optional[int]:
        """Position of the reserved row-identifier column, if the schema has one."""
        return self._tid_index

    def index_of(self, ref: ColumnRef) -> int:
        column = self.column(ref)
        try:
            return self._positions[column]
        except KeyError:
            raise ColumnNotFoundError(
                f"Column {column} does not exist in schema {self.names}."
            ) from None

    def has_column(self, ref: ColumnRef) -> bool:
        return self.column(ref) in self._positions

    def size(self) -> int:
        return len(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __iter__(self):
        return iter(self._columns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Schema):
            return NotImplemented
        return self.table_name == other.table_name and self._columns == other._columns

    def __hash__(self) -> int:
        return hash((self.table_name, tuple(self._columns)))

    def __repr__(self) -> str:
        return f"Schema({self.table_name!r}, {self.names!r})"


class Row:
    """
    An ordered, schema-bound value vector with a stable row id.

    The row id is None only for rows materialized from a relation that has no
    row-identifier column.
    """

    def __init__(self, row_id: Optional[int], schema: Schema, values: Sequence[Any]):
        if schema is None or values is None:
            raise IntegrityError("Row schema and values cannot be None.")

        if schema.size() != len(values):
            raise IntegrityError(
                f"Row values do not match the schema. Schema has size of {schema.size()} "
                f"but values has size of {len(values)}."
            )

        if row_id is not None and row_id < 1:
            raise IntegrityError("Row id cannot be less than 1.")

        self.row_id = row_id
        self.schema = schema
        self.values = list(values)

    @property
    def table_name(self) -> str:
        return self.schema.table_name

    def get(self, column: ColumnRef) -> Any:
        return self.values[self.schema.index_of(column)]

    def get_string(self, column: ColumnRef) -> Optional[str]:
        value = self.get(column)
        if value is not None and not isinstance(value, str):
            raise TypeError(
                f"Value of {self.schema.column(column)} is {type(value).__name__}, not text."
            )
        return value

    def get_cell(self, column: ColumnRef) -> Cell:
        return Cell(self.schema.column(column), self.row_id, self.get(column))

    def get_cells(self) -> frozenset:
        """All cells of the row except the row-identifier column."""
        return frozenset(
            Cell(column, self.row_id, value)
            for column, value in zip(self.schema.columns, self.values)
            if not column.is_tid()
        )

    def has_same_value(self, other: Optional["Row"]) -> bool:
        """
        Compare values with another row of the same schema.

        Rows that carry the same row-identifier value are treated as equal
        without looking at the remaining values.
        """
        if other is None:
            return False

        if self is other or self.values is other.values:
            return True

        if len(self.values) != len(other.values):
            return False

        tid_index = self.schema.tid_index
        if tid_index is not None and self.values[tid_index] == other.values[tid_index]:
            return True

        for i, (left, right) in enumerate(zip(self.values, other.values)):
            if i == tid_index:
                continue
            if left is right:
                continue
            if left != right:
                return False
        return True

    def select(self, new_schema: Schema) -> None:
        """Narrow or reorder the values to ``new_schema``, replacing the schema."""
        if new_schema is None:
            raise IntegrityError("Target schema cannot be None.")

        values = [self.values[self.schema.index_of(column)] for column in new_schema]
        self.schema, self.values = new_schema, values

    def is_from_table(self, table_name: str) -> bool:
        own = self.table_name.lower()
        if own == table_name.lower():
            return True

        if own.startswith(IMPORT_PREFIX):
            return own[len(IMPORT_PREFIX):] == table_name.lower()
        return False

    def copy(self) -> "Row":
        return Row(self.row_id, self.schema, list(self.values))

    def __repr__(self) -> str:
        return f"Row({self.row_id!r}, {dict(zip(self.schema.names, self.values))!r})"
