"""Shared store fixtures."""

from contextlib import contextmanager

import polars as pl
import pytest

from cleaning_core.errors import StoreUnavailable
from cleaning_core.storage import DuckDBStorage


@pytest.fixture
def storage():
    """Connected in-memory DuckDB storage."""
    with DuckDBStorage() as storage:
        yield storage


@pytest.fixture
def orders(storage: DuckDBStorage) -> str:
    """An ``orders`` table with a tid column."""
    storage.save_dataframe(
        pl.DataFrame(
            {
                "tid": [1, 2, 3, 4],
                "region": ["EU", "EU", "US", "APAC"],
                "quantity": [5, 0, 3, -1],
                "item": ["pen", "ink", "pad", "pen"],
            }
        ),
        "orders",
    )
    return "orders"


@pytest.fixture
def sales(storage: DuckDBStorage) -> str:
    """The three-row ``sales`` table used for grouping scenarios."""
    storage.save_dataframe(
        pl.DataFrame({"tid": [1, 2, 3], "region": ["EU", "EU", "US"], "x": [1, 2, 3]}),
        "sales",
    )
    return "sales"


@pytest.fixture
def broken_store(storage: DuckDBStorage, monkeypatch: pytest.MonkeyPatch) -> DuckDBStorage:
    """Storage whose ``break_store()`` makes every connection fail; ``restore_store()`` undoes it."""
    working = storage.acquire

    @contextmanager
    def unavailable():
        raise StoreUnavailable("store is down")
        yield  # pragma: no cover

    def break_store() -> None:
        monkeypatch.setattr(storage, "acquire", unavailable)

    def restore_store() -> None:
        monkeypatch.setattr(storage, "acquire", working)

    storage.break_store = break_store  # type: ignore[attr-defined]
    storage.restore_store = restore_store  # type: ignore[attr-defined]
    return storage
