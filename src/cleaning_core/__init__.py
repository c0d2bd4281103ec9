"""
Cleaning Core

The execution core of a rule-based data cleaning engine:
- Lazily synchronized tables over a DuckDB store, with Polars result sets
- Per-rule pipelines (deserialize, query, detect/repair, export)
- YAML + Pydantic clean plans
- Pandera contract for exported violations
- OpenTelemetry tracing and standard logging
"""

__version__ = "0.1.0"

from cleaning_core.context import ExecutionContext
from cleaning_core.datamodel import Cell, Column, Row, Schema
from cleaning_core.engine import BatchStatus, CleanExecutor, ExecutionReport
from cleaning_core.plan import CleanPlan, RuleSpec, StoreConfig, load_plan, save_plan
from cleaning_core.relational import RelationalTable
from cleaning_core.rules import Fix, Rule, Violation, register_rule
from cleaning_core.storage import DuckDBStorage
from cleaning_core.table import MemoryTable, Table

__all__ = [
    "BatchStatus",
    "Cell",
    "CleanExecutor",
    "CleanPlan",
    "Column",
    "DuckDBStorage",
    "ExecutionContext",
    "ExecutionReport",
    "Fix",
    "MemoryTable",
    "RelationalTable",
    "Row",
    "Rule",
    "RuleSpec",
    "Schema",
    "StoreConfig",
    "Table",
    "Violation",
    "load_plan",
    "register_rule",
    "save_plan",
]
