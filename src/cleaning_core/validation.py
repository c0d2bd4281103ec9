"""
Pandera contract for exported violations.
"""

import pandera.polars as pa
import polars as pl
from opentelemetry import trace

tracer = trace.get_tracer(__name__)

VIOLATION_COLUMNS = ["vid", "rid", "tablename", "tupleid", "attribute", "value"]

VIOLATION_SCHEMA = pa.DataFrameSchema(
    columns={
        "vid": pa.Column(pl.Int64, nullable=False, checks=[pa.Check.greater_than_or_equal_to(1)]),
        "rid": pa.Column(pl.Utf8, nullable=False, checks=[pa.Check.str_length(min_value=1)]),
        "tablename": pa.Column(pl.Utf8, nullable=False),
        "tupleid": pa.Column(pl.Int64, nullable=True),
        "attribute": pa.Column(pl.Utf8, nullable=False),
        "value": pa.Column(pl.Utf8, nullable=True),
    },
    strict=True,
)


def violation_frame(records: list) -> pl.DataFrame:
    """Build a violation frame from ``(vid, rid, tablename, tupleid, attribute, value)`` tuples."""
    return pl.DataFrame(
        records,
        schema={
            "vid": pl.Int64,
            "rid": pl.Utf8,
            "tablename": pl.Utf8,
            "tupleid": pl.Int64,
            "attribute": pl.Utf8,
            "value": pl.Utf8,
        },
        orient="row",
    )


def validate_violations(df: pl.DataFrame) -> pl.DataFrame:
    """
    Validate a violation frame before it is written to the store.

    Raises:
        pa.errors.SchemaError: If validation fails
    """
    with tracer.start_as_current_span("schema.validate", attributes={"rows": len(df)}):
        return VIOLATION_SCHEMA.validate(df)
