"""Tests for columns, schemas, cells and rows."""

import pytest

from cleaning_core.datamodel import Cell, Column, Row, Schema
from cleaning_core.errors import ColumnNotFoundError, IntegrityError


@pytest.fixture
def schema() -> Schema:
    return Schema("orders", ["tid", "region", "quantity"])


def test_column_identity() -> None:
    """Test columns compare by table and name."""
    assert Column("orders", "region") == Column("orders", "region")
    assert Column("orders", "region") != Column("items", "region")
    assert len({Column("orders", "a"), Column("orders", "a")}) == 1


def test_schema_lookup(schema: Schema) -> None:
    """Test Schema column lookup and tid index."""
    assert schema.size() == 3
    assert schema.index_of("quantity") == 2
    assert schema.index_of(Column("orders", "region")) == 1
    assert schema.tid_index == 0
    assert schema.has_column("region")
    assert not schema.has_column("price")


def test_schema_without_tid() -> None:
    """Test a schema without tid has no tid index."""
    assert Schema("orders", ["region"]).tid_index is None


def test_schema_rejects_duplicates() -> None:
    """Test duplicate column names are rejected."""
    with pytest.raises(IntegrityError):
        Schema("orders", ["region", "region"])


def test_schema_missing_column(schema: Schema) -> None:
    """Test an unknown column raises ColumnNotFoundError."""
    with pytest.raises(ColumnNotFoundError):
        schema.index_of("price")

    with pytest.raises(KeyError):
        schema.index_of("price")


def test_row_value_count_mismatch(schema: Schema) -> None:
    """Test a row must carry one value per column."""
    with pytest.raises(IntegrityError):
        Row(1, schema, ["EU", 5])


def test_row_id_must_be_positive(schema: Schema) -> None:
    """Test row ids below 1 are rejected."""
    with pytest.raises(IntegrityError):
        Row(0, schema, [0, "EU", 5])

    with pytest.raises(IntegrityError):
        Row(-3, schema, [-3, "EU", 5])


def test_row_rejects_none_schema_or_values(schema: Schema) -> None:
    """Test a row needs a schema and values."""
    with pytest.raises(IntegrityError):
        Row(1, None, [1])  # type: ignore[arg-type]

    with pytest.raises(IntegrityError):
        Row(1, schema, None)  # type: ignore[arg-type]


def test_row_without_id_is_allowed() -> None:
    """Test a row may have no row id."""
    row = Row(None, Schema("orders", ["region"]), ["EU"])
    assert row.row_id is None


def test_row_get(schema: Schema) -> None:
    """Test reading values by name and by Column."""
    row = Row(7, schema, [7, "EU", 5])
    assert row.get("region") == "EU"
    assert row.get(Column("orders", "quantity")) == 5
    assert row.get_string("region") == "EU"


def test_row_get_string_type_error(schema: Schema) -> None:
    """Test get_string rejects non-text values."""
    row = Row(7, schema, [7, "EU", 5])
    with pytest.raises(TypeError):
        row.get_string("quantity")


def test_row_get_unknown_column(schema: Schema) -> None:
    """Test reading an unknown column."""
    row = Row(7, schema, [7, "EU", 5])
    with pytest.raises(ColumnNotFoundError):
        row.get("price")


def test_get_cell(schema: Schema) -> None:
    """Test get_cell returns the column, row id and value."""
    row = Row(7, schema, [7, "EU", 5])
    assert row.get_cell("region") == Cell(Column("orders", "region"), 7, "EU")


def test_get_cells_skips_tid(schema: Schema) -> None:
    """Test get_cells leaves out the tid column."""
    row = Row(7, schema, [7, "EU", 5])
    cells = row.get_cells()

    assert cells == {
        Cell(Column("orders", "region"), 7, "EU"),
        Cell(Column("orders", "quantity"), 7, 5),
    }


def test_select_preserves_values(schema: Schema) -> None:
    """Test select reorders values to the new schema."""
    row = Row(7, schema, [7, "EU", 5])
    before = {c: row.get(c) for c in schema}
    target = Schema("orders", ["quantity", "region"])

    row.select(target)

    assert row.schema is target
    assert row.row_id == 7
    for position, column in enumerate(target):
        assert row.values[position] == before[column]


def test_select_missing_column(schema: Schema) -> None:
    """Test select leaves the row untouched on failure."""
    row = Row(7, schema, [7, "EU", 5])
    with pytest.raises(ColumnNotFoundError):
        row.select(Schema("orders", ["price"]))

    assert row.schema is schema


def test_has_same_value_reflexive(schema: Schema) -> None:
    """Test a row has the same value as itself."""
    row = Row(1, schema, [1, "EU", 5])
    assert row.has_same_value(row)


def test_has_same_value_row_id_shortcut(schema: Schema) -> None:
    """Test rows with equal tids count as the same."""
    left = Row(1, schema, [1, "EU", 5])
    right = Row(1, schema, [1, "US", 99])

    # Equal row identifiers are treated as the same row even though other values differ.
    assert left.has_same_value(right)


def test_has_same_value_compares_values(schema: Schema) -> None:
    """Test rows with different tids compare by value."""
    left = Row(1, schema, [1, "EU", 5])
    assert left.has_same_value(Row(2, schema, [2, "EU", 5]))
    assert not left.has_same_value(Row(2, schema, [2, "US", 5]))
    assert not left.has_same_value(None)


def test_has_same_value_without_tid() -> None:
    """Test rows without tid compare by value."""
    schema = Schema("orders", ["region", "quantity"])
    assert Row(None, schema, ["EU", 5]).has_same_value(Row(None, schema, ["EU", 5]))
    assert not Row(None, schema, ["EU", 5]).has_same_value(Row(None, schema, ["EU", 6]))


def test_is_from_table() -> None:
    """Test table name matching is case-insensitive."""
    row = Row(1, Schema("Orders", ["tid"]), [1])
    assert row.is_from_table("orders")
    assert not row.is_from_table("items")


def test_is_from_imported_table() -> None:
    """Test imported table names match their logical name."""
    row = Row(1, Schema("csv_orders", ["tid"]), [1])
    assert row.is_from_table("ORDERS")
    assert row.is_from_table("csv_orders")
    assert not row.is_from_table("items")
