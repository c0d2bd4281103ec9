"""Tests for DuckDB storage functionality."""

import tempfile
from pathlib import Path

import polars as pl
import pytest

from cleaning_core.errors import StoreUnavailable
from cleaning_core.plan import StoreConfig
from cleaning_core.storage import DuckDBStorage


@pytest.fixture
def sample_df() -> pl.DataFrame:
    """Create a sample DataFrame for testing."""
    return pl.DataFrame(
        {
            "id": [1, 2, 3, 4, 5],
            "name": ["Alice", "Bob", "Charlie", "David", "Eve"],
            "value": [10.5, 20.3, 15.7, 30.2, 25.1],
        }
    )


def test_in_memory_storage() -> None:
    """Test in-memory DuckDB storage."""
    storage = DuckDBStorage()
    storage.connect()

    assert storage.connection is not None
    assert storage.db_path == ":memory:"
    assert storage.config == StoreConfig()

    storage.close()
    assert storage.connection is None


def test_file_based_storage() -> None:
    """Test file-based DuckDB storage."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.duckdb"
        storage = DuckDBStorage(StoreConfig(name="files", path=str(db_path)))
        storage.connect()

        assert storage.connection is not None
        assert Path(storage.db_path).exists()

        storage.close()


def test_context_manager() -> None:
    """Test DuckDBStorage as context manager."""
    with DuckDBStorage() as storage:
        assert storage.connection is not None

    assert storage.connection is None


def test_acquire_releases_cursor(storage: DuckDBStorage) -> None:
    """Test that a scoped connection is released even when the work fails."""
    with pytest.raises(StoreUnavailable):
        with storage.acquire() as cursor:
            storage.run(cursor, "SELECT * FROM missing_table")

    assert storage._active == []


def test_save_and_load_dataframe(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test saving and loading DataFrames."""
    storage.save_dataframe(sample_df, "test_table")

    loaded_df = storage.load_dataframe("test_table")

    assert loaded_df.shape == sample_df.shape
    assert loaded_df.columns == sample_df.columns
    assert loaded_df["id"].to_list() == sample_df["id"].to_list()


def test_save_replace_mode(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test replace mode when saving DataFrame."""
    storage.save_dataframe(sample_df, "test_table")

    new_df = pl.DataFrame({"id": [10], "name": ["New"]})
    storage.save_dataframe(new_df, "test_table", if_exists="replace")

    loaded_df = storage.load_dataframe("test_table")
    assert len(loaded_df) == 1
    assert loaded_df["id"][0] == 10


def test_save_append_mode(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test append mode creates the table once and then appends."""
    storage.save_dataframe(sample_df, "test_table", if_exists="append")
    assert len(storage.load_dataframe("test_table")) == 5

    storage.save_dataframe(sample_df, "test_table", if_exists="append")
    assert len(storage.load_dataframe("test_table")) == 10


def test_save_fail_mode(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test fail mode when saving DataFrame."""
    storage.save_dataframe(sample_df, "test_table")

    with pytest.raises(ValueError):
        storage.save_dataframe(sample_df, "test_table", if_exists="fail")


def test_query(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test SQL query execution."""
    storage.save_dataframe(sample_df, "test_table")

    result = storage.query("SELECT * FROM test_table WHERE value > ?", [20])

    assert len(result) == 3  # 20.3, 30.2, 25.1


def test_query_emits_no_deprecation(
    storage: DuckDBStorage, sample_df: pl.DataFrame, recwarn: pytest.WarningsRecorder
) -> None:
    """Test result sets are fetched without deprecated DuckDB calls."""
    storage.save_dataframe(sample_df, "test_table")

    result = storage.query("SELECT id FROM test_table ORDER BY id")

    assert result["id"].to_list() == [1, 2, 3, 4, 5]
    deprecations = [w for w in recwarn if issubclass(w.category, DeprecationWarning)]
    assert not [w for w in deprecations if "arrow" in str(w.message)]


def test_query_failure_is_store_unavailable(storage: DuckDBStorage) -> None:
    """Test that store errors surface as StoreUnavailable."""
    with pytest.raises(StoreUnavailable):
        storage.query("SELECT * FROM missing_table")


def test_execute(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test SQL statement execution."""
    storage.save_dataframe(sample_df, "test_table")

    storage.execute("UPDATE test_table SET value = 100 WHERE id = 1")

    result = storage.load_dataframe("test_table")
    assert result.filter(pl.col("id") == 1)["value"][0] == 100


def test_list_tables(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test listing tables."""
    assert len(storage.list_tables()) == 0

    storage.save_dataframe(sample_df, "table1")
    storage.save_dataframe(sample_df, "table2")

    tables = storage.list_tables()
    assert len(tables) == 2
    assert "table1" in tables
    assert "table2" in tables


def test_load_with_limit(storage: DuckDBStorage, sample_df: pl.DataFrame) -> None:
    """Test loading DataFrame with row limit."""
    storage.save_dataframe(sample_df, "test_table")

    limited_df = storage.load_dataframe("test_table", limit=3)

    assert len(limited_df) == 3


def test_statement_timeout() -> None:
    """Test that a statement exceeding the configured bound is interrupted."""
    with DuckDBStorage(StoreConfig(timeout_seconds=0.2)) as storage:
        with pytest.raises(StoreUnavailable):
            storage.query("SELECT SUM(i * i) AS s FROM range(10000000000) t(i)")


def test_not_connected_error() -> None:
    """Test error when operating without connection."""
    storage = DuckDBStorage()

    with pytest.raises(RuntimeError):
        storage.save_dataframe(pl.DataFrame({"a": [1]}), "test")

    with pytest.raises(RuntimeError):
        storage.load_dataframe("test")

    with pytest.raises(RuntimeError):
        storage.query("SELECT 1")

    with pytest.raises(RuntimeError):
        storage.execute("SELECT 1")

    with pytest.raises(RuntimeError):
        storage.list_tables()

    with pytest.raises(RuntimeError):
        with storage.acquire():
            pass
