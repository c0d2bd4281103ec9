"""
Orchestrator: assembles one flow per rule and runs the flows concurrently.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional, Sequence

from opentelemetry import trace

from cleaning_core.context import ExecutionContext
from cleaning_core.errors import AssemblyError
from cleaning_core.observability import DurationKind, configure_logging, setup_observability
from cleaning_core.pipeline import Flow, FlowResult, FlowStatus
from cleaning_core.plan import CleanPlan
from cleaning_core.rules import Rule
from cleaning_core.stages import (
    QueryEngine,
    SourceDeserializer,
    ViolationDeserializer,
    ViolationExport,
    ViolationRepair,
    create_detector,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    ASSEMBLY_FAILED = "assembly_failed"
    CANCELLED = "cancelled"


class ExecutionReport:
    """Outcome of one detect or repair batch."""

    def __init__(
        self,
        mode: str,
        status: BatchStatus,
        results: Optional[List[FlowResult]] = None,
        elapsed_ms: float = 0.0,
        error: Optional[BaseException] = None,
    ):
        self.mode = mode
        self.status = status
        self.results = results or []
        self.elapsed_ms = elapsed_ms
        self.error = error

    @property
    def failed(self) -> List[FlowResult]:
        return [r for r in self.results if r.status == FlowStatus.FAILED]

    def result(self, rule_name: str) -> FlowResult:
        for result in self.results:
            if result.name == rule_name:
                return result
        raise KeyError(f"No flow result for rule {rule_name}")

    def __repr__(self) -> str:
        return (
            f"ExecutionReport({self.mode!r}, {self.status.value}, "
            f"{len(self.results)} flow(s), {self.elapsed_ms:.1f} ms)"
        )


class CleanExecutor:
    """
    Runs violation detection and repair for a list of rules.

    Flow assembly is all-or-nothing: if any rule's flow cannot be built, no
    flow of the batch runs. Assembled flows run concurrently, each in its own
    failure domain, and are joined before the report is returned.
    """

    def __init__(self, context: ExecutionContext, enable_observability: bool = False):
        """
        Initialize the executor.

        Args:
            context: Execution context holding the store, plan and cache
            enable_observability: Whether to set up tracing and logging from the plan
        """
        if context is None:
            raise ValueError("Execution context cannot be None.")
        self.context = context
        self._running: List[Flow] = []
        self._running_lock = threading.Lock()

        if enable_observability and context.plan:
            settings = context.plan.observability
            if settings.get("enabled", True):
                setup_observability(
                    service_name=settings.get("service_name", "cleaning-core"),
                    console_export=settings.get("console_export", True),
                )
            configure_logging(settings.get("log_level", "INFO"))

    @classmethod
    def from_plan(cls, plan: CleanPlan, enable_observability: bool = True) -> "CleanExecutor":
        return cls(ExecutionContext.from_plan(plan), enable_observability=enable_observability)

    def _rules(self, rules: Optional[Sequence[Rule]]) -> List[Rule]:
        if rules is not None:
            return list(rules)
        if not self.context.plan:
            raise ValueError("No rules given and no plan loaded.")
        return self.context.plan.build_rules()

    @staticmethod
    def _validate(rule: Rule) -> None:
        if not 1 <= len(rule.tables) <= 2:
            raise AssemblyError(f"Rule {rule.name} must read one or two tables, not {len(rule.tables)}.")
        if rule.supports_two_inputs() != (len(rule.tables) == 2):
            raise AssemblyError(
                f"Rule {rule.name} declares {'two inputs' if rule.supports_two_inputs() else 'one input'} "
                f"but reads {len(rule.tables)} table(s)."
            )
        if rule.supports_two_inputs() and not rule.implements("detect_pair"):
            raise AssemblyError(f"Rule {rule.name} reads two tables but does not implement detect_pair.")
        if not rule.supports_two_inputs() and not rule.implements("detect"):
            raise AssemblyError(f"Rule {rule.name} does not implement detect.")

    def _assemble(self, rules: Sequence[Rule], build: Callable[[Rule, Flow], None]) -> List[Flow]:
        flows: List[Flow] = []
        try:
            for rule in rules:
                flow = Flow(rule.name, self.context.cache, self.context.diagnostics)
                flow.set_input_key(self.context.cache.put(rule))
                flows.append(flow)
                build(rule, flow)
        except Exception as ex:
            for flow in flows:
                self.context.cache.remove(flow.input_key)
            if isinstance(ex, AssemblyError):
                raise
            raise AssemblyError(f"Exception happened while assembling the pipeline: {ex}") from ex
        return flows

    def assemble_detect(self, rules: Optional[Sequence[Rule]] = None) -> List[Flow]:
        """
        Build one detection flow per rule.

        Raises:
            AssemblyError: If any rule's flow cannot be built
        """

        def build(rule: Rule, flow: Flow) -> None:
            self._validate(rule)
            flow.add_stage(SourceDeserializer(self.context))
            flow.add_stage(QueryEngine(self.context, rule))
            flow.add_stage(create_detector(self.context, rule))
            flow.add_stage(ViolationExport(self.context))

        return self._assemble(self._rules(rules), build)

    def assemble_repair(self, rules: Optional[Sequence[Rule]] = None) -> List[Flow]:
        """
        Build one repair flow per rule.

        Raises:
            AssemblyError: If any rule's flow cannot be built
        """

        def build(rule: Rule, flow: Flow) -> None:
            if not 1 <= len(rule.tables) <= 2:
                raise AssemblyError(f"Rule {rule.name} must read one or two tables.")
            flow.add_stage(ViolationDeserializer(self.context))
            flow.add_stage(ViolationRepair(self.context, rule))

        return self._assemble(self._rules(rules), build)

    def detect(self, rules: Optional[Sequence[Rule]] = None) -> ExecutionReport:
        """Run violation detection for ``rules`` (the plan's rules by default)."""
        return self._execute("detect", self.assemble_detect, rules)

    def repair(self, rules: Optional[Sequence[Rule]] = None) -> ExecutionReport:
        """Run violation repair for ``rules`` (the plan's rules by default)."""
        return self._execute("repair", self.assemble_repair, rules)

    def cancel(self) -> None:
        """Cancel every running flow and interrupt in-flight store statements."""
        with self._running_lock:
            flows = list(self._running)
        for flow in flows:
            flow.cancel()
        self.context.storage.interrupt()

    def _execute(
        self,
        mode: str,
        assemble: Callable[[Optional[Sequence[Rule]]], List[Flow]],
        rules: Optional[Sequence[Rule]],
    ) -> ExecutionReport:
        with tracer.start_as_current_span(f"engine.{mode}") as span:
            try:
                flows = assemble(rules)
            except AssemblyError as ex:
                logger.error("Exception happened while assembling the pipeline: %s", ex)
                span.set_attribute("status", BatchStatus.ASSEMBLY_FAILED.value)
                return ExecutionReport(mode, BatchStatus.ASSEMBLY_FAILED, error=ex)

            span.set_attribute("flows", len(flows))
            started = time.perf_counter()
            results = self._run_flows(flows)
            elapsed_ms = (time.perf_counter() - started) * 1000

            self.context.diagnostics.record_duration(DurationKind.BATCH, elapsed_ms)
            logger.info("Cleaning finished in %.0f ms.", elapsed_ms)

            statuses = {r.status for r in results}
            if FlowStatus.CANCELLED in statuses:
                status = BatchStatus.CANCELLED
            elif FlowStatus.FAILED in statuses:
                status = BatchStatus.PARTIAL
            else:
                status = BatchStatus.COMPLETED
            span.set_attribute("status", status.value)
            return ExecutionReport(mode, status, results, elapsed_ms)

    def _run_flows(self, flows: List[Flow]) -> List[FlowResult]:
        if not flows:
            return []

        with self._running_lock:
            self._running.extend(flows)
        try:
            with ThreadPoolExecutor(
                max_workers=min(self.context.max_workers, len(flows)),
                thread_name_prefix="flow",
            ) as executor:
                futures = [executor.submit(flow.run) for flow in flows]
                results = []
                for flow, future in zip(flows, futures):
                    try:
                        results.append(future.result())
                    except Exception as ex:
                        logger.error("Flow %s could not run: %s", flow.name, ex)
                        results.append(FlowResult(flow.name, FlowStatus.FAILED, error=ex))
                return results
        finally:
            with self._running_lock:
                for flow in flows:
                    self._running.remove(flow)
