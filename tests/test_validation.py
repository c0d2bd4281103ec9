"""Tests for the violation frame contract."""

import polars as pl
import pytest
from pandera.errors import SchemaError

from cleaning_core.validation import VIOLATION_COLUMNS, validate_violations, violation_frame


def test_violation_frame_columns() -> None:
    """Test violation_frame builds the exported columns."""
    df = violation_frame([(1, "not_null", "orders", 2, "item", None)])

    assert df.columns == VIOLATION_COLUMNS
    assert df["tupleid"].dtype == pl.Int64
    assert df["value"][0] is None


def test_valid_frame_passes() -> None:
    """Test a well-formed frame validates."""
    df = violation_frame(
        [
            (1, "positive", "orders", 2, "quantity", "0"),
            (2, "positive", "orders", 4, "quantity", "-1"),
        ]
    )

    assert validate_violations(df).height == 2


def test_vid_must_be_positive() -> None:
    """Test vids below 1 are rejected."""
    df = violation_frame([(0, "positive", "orders", 2, "quantity", "0")])

    with pytest.raises(SchemaError):
        validate_violations(df)


def test_rule_name_must_not_be_empty() -> None:
    """Test an empty rule name is rejected."""
    df = violation_frame([(1, "", "orders", 2, "quantity", "0")])

    with pytest.raises(SchemaError):
        validate_violations(df)


def test_extra_columns_rejected() -> None:
    """Test unexpected columns are rejected."""
    df = violation_frame([(1, "positive", "orders", 2, "quantity", "0")]).with_columns(
        pl.lit("x").alias("note")
    )

    with pytest.raises(SchemaError):
        validate_violations(df)
