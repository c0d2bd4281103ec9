"""
Explicit execution context threaded through orchestration and flow assembly.
"""

import threading
from pathlib import Path
from typing import Dict, Optional

from cleaning_core.cache import RuleCache
from cleaning_core.datamodel import IMPORT_PREFIX
from cleaning_core.metadata import import_csv
from cleaning_core.observability import Diagnostics, resolve_diagnostics
from cleaning_core.plan import CleanPlan, ExecutionSettings
from cleaning_core.storage import DuckDBStorage


class ExecutionContext:
    """
    Everything a run needs: the plan, the store, the rule cache and diagnostics.

    Args:
        storage: Connected source store
        plan: Optional clean plan supplying rules, CSV sources and settings
        cache: Rule cache; defaults to the process-wide one
        diagnostics: Diagnostics sink; defaults to a logging-backed one
        max_workers: Overrides the plan's concurrent flow count
    """

    def __init__(
        self,
        storage: DuckDBStorage,
        plan: Optional[CleanPlan] = None,
        cache: Optional[RuleCache] = None,
        diagnostics: Optional[Diagnostics] = None,
        max_workers: Optional[int] = None,
    ):
        if storage is None:
            raise ValueError("Storage cannot be None.")

        settings = plan.execution if plan else ExecutionSettings()
        self.storage = storage
        self.plan = plan
        self.cache = cache or RuleCache.get_instance()
        self.diagnostics = resolve_diagnostics(diagnostics)
        self.max_workers = max_workers or settings.max_workers
        self.violation_table = settings.violation_table
        self._sources: Optional[Dict[str, str]] = None
        self._sources_lock = threading.Lock()

    @classmethod
    def from_plan(
        cls, plan: CleanPlan, diagnostics: Optional[Diagnostics] = None
    ) -> "ExecutionContext":
        """Open the plan's source store and build a context around it."""
        storage = DuckDBStorage(plan.source)
        storage.connect()
        return cls(storage, plan=plan, diagnostics=diagnostics)

    def __enter__(self) -> "ExecutionContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.storage.close()

    def ensure_sources(self) -> Dict[str, str]:
        """
        Import the plan's CSV sources once.

        Returns:
            Mapping of lower-cased logical table name to store table name
        """
        with self._sources_lock:
            if self._sources is None:
                sources: Dict[str, str] = {}
                for path in self.plan.csv_sources if self.plan else []:
                    stem = Path(path).stem
                    sources[stem.lower()] = import_csv(self.storage, path, f"{IMPORT_PREFIX}{stem}")
                self._sources = sources
            return self._sources

    def resolve_table(self, table_name: str) -> str:
        """Store table holding ``table_name``, following CSV imports."""
        return self.ensure_sources().get(table_name.lower(), table_name)
