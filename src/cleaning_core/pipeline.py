"""
Typed pipeline stages and the Flow that runs them in order.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Generic, List, Optional, Sequence, Type, TypeVar

from opentelemetry import trace

from cleaning_core.cache import RuleCache
from cleaning_core.errors import AssemblyError, FlowCancelled
from cleaning_core.observability import Diagnostics, DurationKind, NullDiagnostics
from cleaning_core.rules import Rule, Violation
from cleaning_core.table import Table

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class DetectorShape(str, Enum):
    """Number of input relations a detection works on."""

    SINGLE = "single"
    PAIR = "pair"


class RuleInput:
    """A rule together with the store tables it reads."""

    def __init__(self, rule: Rule, table_names: Sequence[str]):
        self.rule = rule
        self.table_names = list(table_names)


class TableSet:
    """
    Tables prepared for detection.

    For SINGLE rules, each table is an independent block; for PAIR rules,
    ``tables`` holds exactly the left and right table.
    """

    def __init__(self, rule: Rule, shape: DetectorShape, tables: Sequence[Table]):
        self.rule = rule
        self.shape = shape
        self.tables = list(tables)


class ViolationBatch:
    """Violations of one rule."""

    def __init__(self, rule: Rule, violations: Sequence[Violation]):
        self.rule = rule
        self.violations = list(violations)


class ExportSummary:
    def __init__(self, rule_name: str, table_name: str, violations: int, cells: int):
        self.rule_name = rule_name
        self.table_name = table_name
        self.violations = violations
        self.cells = cells

    def __repr__(self) -> str:
        return f"ExportSummary({self.rule_name!r}, violations={self.violations}, cells={self.cells})"


class RepairSummary:
    def __init__(self, rule_name: str, violations: int, fixes: int):
        self.rule_name = rule_name
        self.violations = violations
        self.fixes = fixes

    def __repr__(self) -> str:
        return f"RepairSummary({self.rule_name!r}, violations={self.violations}, fixes={self.fixes})"


class FlowContext:
    """Per-run state shared by the stages of one flow."""

    def __init__(self, cache: RuleCache, cancel_event: threading.Event):
        self.cache = cache
        self.cancel_event = cancel_event
        self._tables: List[Table] = []

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise FlowCancelled("Flow was cancelled.")

    def register(self, table: Table) -> Table:
        """Hand ownership of ``table`` to the flow, which recycles it when it ends."""
        self._tables.append(table)
        return table

    def release(self) -> None:
        tables, self._tables = self._tables, []
        for table in tables:
            table.recycle()


class Stage(ABC, Generic[InputT, OutputT]):
    """A named transformation from ``input_type`` to ``output_type``."""

    name: str = "stage"
    input_type: Type[Any] = object
    output_type: Type[Any] = object

    @abstractmethod
    def execute(self, payload: InputT, context: FlowContext) -> OutputT:
        """Run the stage on the previous stage's output."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class FlowStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FlowResult:
    """Outcome of running one flow."""

    def __init__(
        self,
        name: str,
        status: FlowStatus,
        output: Any = None,
        error: Optional[BaseException] = None,
        elapsed_ms: float = 0.0,
        stages_run: int = 0,
    ):
        self.name = name
        self.status = status
        self.output = output
        self.error = error
        self.elapsed_ms = elapsed_ms
        self.stages_run = stages_run

    @property
    def succeeded(self) -> bool:
        return self.status == FlowStatus.SUCCEEDED

    def __repr__(self) -> str:
        return f"FlowResult({self.name!r}, {self.status.value}, {self.elapsed_ms:.1f} ms)"


class Flow:
    """
    Ordered stages executed to completion, starting from a cache key.

    The key is the first stage's input; each later stage consumes the previous
    stage's output.
    """

    def __init__(
        self,
        name: str,
        cache: RuleCache,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.name = name
        self.cache = cache
        self.diagnostics = diagnostics or NullDiagnostics()
        self.stages: List[Stage] = []
        self.input_key: Optional[str] = None
        self.cancel_event = threading.Event()

    def set_input_key(self, key: str) -> "Flow":
        self.input_key = key
        return self

    def add_stage(self, stage: Stage) -> "Flow":
        """
        Append a stage.

        Raises:
            AssemblyError: If the stage cannot consume the previous stage's output
        """
        produced = self.stages[-1].output_type if self.stages else str
        if not issubclass(produced, stage.input_type):
            raise AssemblyError(
                f"Stage {stage.name} expects {stage.input_type.__name__} "
                f"but receives {produced.__name__} in flow {self.name}."
            )
        self.stages.append(stage)
        return self

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(self) -> FlowResult:
        """
        Run every stage in order.

        Failures are contained: the result carries the error instead of raising.
        """
        if self.input_key is None or not self.stages:
            raise AssemblyError(f"Flow {self.name} is not assembled.")

        started = time.perf_counter()
        context = FlowContext(self.cache, self.cancel_event)
        payload: Any = self.input_key
        stages_run = 0
        status, error = FlowStatus.SUCCEEDED, None

        with tracer.start_as_current_span("flow.run", attributes={"flow": self.name}) as span:
            try:
                for stage in self.stages:
                    context.check_cancelled()
                    with tracer.start_as_current_span(f"stage.{stage.name}"):
                        payload = stage.execute(payload, context)
                    stages_run += 1
            except FlowCancelled as ex:
                logger.warning("Flow %s cancelled after %d stage(s)", self.name, stages_run)
                status, error, payload = FlowStatus.CANCELLED, ex, None
            except Exception as ex:
                logger.exception("Flow %s failed in stage %s", self.name, self.stages[stages_run].name)
                status, error, payload = FlowStatus.FAILED, ex, None
            finally:
                context.release()
                self.cache.remove(self.input_key)

            span.set_attribute("status", status.value)

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.diagnostics.record_duration(DurationKind.FLOW, elapsed_ms)
        return FlowResult(self.name, status, payload, error, elapsed_ms, stages_run)

    def __repr__(self) -> str:
        return f"Flow({self.name!r}, {[s.name for s in self.stages]})"
