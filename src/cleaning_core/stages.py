"""
Concrete pipeline stages for detection and repair flows.
"""

import logging
import time
from typing import Dict, List

from cleaning_core.context import ExecutionContext
from cleaning_core.datamodel import Cell, Column
from cleaning_core.errors import IntegrityError
from cleaning_core.metadata import table_exists
from cleaning_core.observability import DurationKind
from cleaning_core.pipeline import (
    DetectorShape,
    ExportSummary,
    FlowContext,
    RepairSummary,
    RuleInput,
    Stage,
    TableSet,
    ViolationBatch,
)
from cleaning_core.query import quote_identifier
from cleaning_core.relational import RelationalTable
from cleaning_core.rules import Fix, Rule, Violation
from cleaning_core.table import Table, materialize_all
from cleaning_core.validation import VIOLATION_COLUMNS, validate_violations, violation_frame

logger = logging.getLogger(__name__)


class SourceDeserializer(Stage[str, RuleInput]):
    """Resolve a cache key to its rule and the store tables the rule reads."""

    name = "deserializer"
    input_type = str
    output_type = RuleInput

    def __init__(self, context: ExecutionContext):
        self.context = context

    def execute(self, payload: str, context: FlowContext) -> RuleInput:
        rule = context.cache.get(payload)
        table_names = [self.context.resolve_table(name) for name in rule.tables]
        for name in table_names:
            if not table_exists(self.context.storage, name):
                raise ValueError(f"Unknown table name {name} for rule {rule.name}")
        return RuleInput(rule, table_names)


class QueryEngine(Stage[RuleInput, TableSet]):
    """
    Build the rule's input tables.

    One RelationalTable is created per input table and shaped by the rule's
    ``query`` hook. Single-input rules with ``block_on`` columns are split into
    one block per value combination.
    """

    name = "query"
    input_type = RuleInput
    output_type = TableSet

    def __init__(self, context: ExecutionContext, rule: Rule):
        self.context = context
        self.rule = rule

    def execute(self, payload: RuleInput, context: FlowContext) -> TableSet:
        tables: List[Table] = []
        for name in payload.table_names:
            table = context.register(
                RelationalTable(name, self.context.storage, diagnostics=self.context.diagnostics)
            )
            shaped = self.rule.query(table)
            if shaped is not table:
                context.register(shaped)
            tables.append(shaped)

        shape = DetectorShape.PAIR if self.rule.supports_two_inputs() else DetectorShape.SINGLE
        if shape == DetectorShape.SINGLE and self.rule.block_on:
            tables = [context.register(block) for block in tables[0].group_on(list(self.rule.block_on))]
            logger.debug("Rule %s split into %d block(s)", self.rule.name, len(tables))

        context.check_cancelled()
        materialize_all(tables, self.context.max_workers)
        return TableSet(self.rule, shape, tables)


class SingleViolationDetector(Stage[TableSet, ViolationBatch]):
    """Run a single-input rule over every block."""

    name = "detector"
    shape = DetectorShape.SINGLE
    input_type = TableSet
    output_type = ViolationBatch

    def __init__(self, context: ExecutionContext, rule: Rule):
        self.context = context
        self.rule = rule

    def execute(self, payload: TableSet, context: FlowContext) -> ViolationBatch:
        if payload.shape != self.shape:
            raise ValueError(f"{type(self).__name__} cannot run on {payload.shape.value} input.")

        started = time.perf_counter()
        violations: List[Violation] = []
        for table in payload.tables:
            context.check_cancelled()
            violations.extend(self.rule.detect(table))

        self.context.diagnostics.record_duration(
            DurationKind.DETECT, (time.perf_counter() - started) * 1000
        )
        logger.info("Rule %s found %d violation(s)", self.rule.name, len(violations))
        return ViolationBatch(self.rule, violations)


class PairViolationDetector(SingleViolationDetector):
    """Run a two-input rule over its left and right tables."""

    shape = DetectorShape.PAIR

    def execute(self, payload: TableSet, context: FlowContext) -> ViolationBatch:
        if payload.shape != self.shape or len(payload.tables) != 2:
            raise ValueError(f"{type(self).__name__} needs exactly two input tables.")

        started = time.perf_counter()
        left, right = payload.tables
        violations = list(self.rule.detect_pair(left, right))

        self.context.diagnostics.record_duration(
            DurationKind.DETECT, (time.perf_counter() - started) * 1000
        )
        logger.info("Rule %s found %d violation(s)", self.rule.name, len(violations))
        return ViolationBatch(self.rule, violations)


def create_detector(context: ExecutionContext, rule: Rule) -> SingleViolationDetector:
    """Pick the detector variant for the rule's declared input count."""
    if rule.supports_two_inputs():
        return PairViolationDetector(context, rule)
    return SingleViolationDetector(context, rule)


class ViolationExport(Stage[ViolationBatch, ExportSummary]):
    """Append violations to the violation table, one row per cell."""

    name = "export"
    input_type = ViolationBatch
    output_type = ExportSummary

    def __init__(self, context: ExecutionContext):
        self.context = context

    def execute(self, payload: ViolationBatch, context: FlowContext) -> ExportSummary:
        table_name = self.context.violation_table
        storage = self.context.storage
        if not payload.violations:
            return ExportSummary(payload.rule.name, table_name, 0, 0)

        started = time.perf_counter()
        with storage.write_lock:
            next_vid = 1
            if table_exists(storage, table_name):
                frame = storage.query(
                    f"SELECT COALESCE(MAX(vid), 0) AS vid FROM {quote_identifier(table_name)}"
                )
                next_vid = int(frame["vid"][0]) + 1

            records = []
            for offset, violation in enumerate(payload.violations):
                violation.vid = next_vid + offset
                for cell in sorted(violation.cells, key=lambda c: (c.column.name, c.row_id or 0)):
                    records.append(
                        (
                            violation.vid,
                            payload.rule.name,
                            cell.column.table_name,
                            cell.row_id,
                            cell.column.name,
                            None if cell.value is None else str(cell.value),
                        )
                    )

            frame = validate_violations(violation_frame(records))
            storage.save_dataframe(frame, table_name, if_exists="append")

        self.context.diagnostics.record_duration(
            DurationKind.EXPORT, (time.perf_counter() - started) * 1000
        )
        return ExportSummary(payload.rule.name, table_name, len(payload.violations), len(records))


class ViolationDeserializer(Stage[str, ViolationBatch]):
    """Load a rule's exported violations back from the violation table."""

    name = "deserializer"
    input_type = str
    output_type = ViolationBatch

    def __init__(self, context: ExecutionContext):
        self.context = context

    def execute(self, payload: str, context: FlowContext) -> ViolationBatch:
        rule = context.cache.get(payload)
        table_name = self.context.violation_table
        storage = self.context.storage
        if not table_exists(storage, table_name):
            return ViolationBatch(rule, [])

        frame = storage.query(
            f"SELECT {', '.join(VIOLATION_COLUMNS)} FROM {quote_identifier(table_name)} "
            "WHERE rid = ? ORDER BY vid",
            [rule.name],
        )
        cells: Dict[int, List[Cell]] = {}
        for vid, _, tablename, tupleid, attribute, value in frame.iter_rows():
            cells.setdefault(vid, []).append(Cell(Column(tablename, attribute), tupleid, value))

        return ViolationBatch(
            rule, [Violation(rule.name, members, vid) for vid, members in cells.items()]
        )


class ViolationRepair(Stage[ViolationBatch, RepairSummary]):
    """Ask the rule for fixes and apply them to the store in one transaction."""

    name = "repair"
    input_type = ViolationBatch
    output_type = RepairSummary

    def __init__(self, context: ExecutionContext, rule: Rule):
        self.context = context
        self.rule = rule

    def execute(self, payload: ViolationBatch, context: FlowContext) -> RepairSummary:
        started = time.perf_counter()
        fixes: List[Fix] = []
        for violation in payload.violations:
            fixes.extend(self.rule.repair(violation))

        for fix in fixes:
            if fix.cell.row_id is None:
                raise IntegrityError(f"Cannot apply {fix}: the cell has no row id.")

        if fixes:
            self._apply(fixes, context)

        self.context.diagnostics.record_duration(
            DurationKind.REPAIR, (time.perf_counter() - started) * 1000
        )
        logger.info("Rule %s applied %d fix(es)", self.rule.name, len(fixes))
        return RepairSummary(self.rule.name, len(payload.violations), len(fixes))

    def _apply(self, fixes: List[Fix], context: FlowContext) -> None:
        storage = self.context.storage
        with storage.write_lock, storage.acquire() as cursor:
            storage.run(cursor, "BEGIN TRANSACTION")
            try:
                for fix in fixes:
                    context.check_cancelled()
                    column = fix.cell.column
                    storage.run(
                        cursor,
                        f"UPDATE {quote_identifier(column.table_name)} "
                        f"SET {quote_identifier(column.name)} = ? WHERE tid = ?",
                        [fix.new_value, fix.cell.row_id],
                    )
            except BaseException:
                cursor.rollback()
                raise
            storage.run(cursor, "COMMIT")
