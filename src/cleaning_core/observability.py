"""
OpenTelemetry instrumentation, logging setup and the diagnostics sink.
"""

import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Dict, Optional, Union

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter


def setup_observability(service_name: str = "cleaning-core", console_export: bool = True) -> None:
    """
    Configure OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        console_export: Whether to export traces to console (useful for dev/testing)
    """
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    if console_export:
        # Export to console for development/debugging
        console_exporter = ConsoleSpanExporter()
        provider.add_span_processor(BatchSpanProcessor(console_exporter))

    # Set as global default
    trace.set_tracer_provider(provider)


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Set the log level of the ``cleaning_core`` logger hierarchy.

    Args:
        level: Logging level name or number
    """
    package_logger = logging.getLogger("cleaning_core")
    package_logger.setLevel(level.upper() if isinstance(level, str) else level)
    if not package_logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)


class DurationKind(str, Enum):
    """Kinds of measured durations."""

    STORE_LOAD = "store_load"
    DETECT = "detect"
    REPAIR = "repair"
    EXPORT = "export"
    FLOW = "flow"
    BATCH = "batch"


class Diagnostics:
    """
    Sink for leveled messages and duration measurements.

    Messages go to ``logging``; durations are attached to the current span and
    summed per kind.
    """

    def __init__(self, name: str = "cleaning_core.diagnostics"):
        self._logger = logging.getLogger(name)
        self._lock = threading.Lock()
        self._totals: Dict[DurationKind, float] = defaultdict(float)
        self._counts: Dict[DurationKind, int] = defaultdict(int)

    def log(self, level: int, message: str) -> None:
        self._logger.log(level, message)

    def record_duration(self, kind: DurationKind, millis: float) -> None:
        with self._lock:
            self._totals[kind] += millis
            self._counts[kind] += 1
        trace.get_current_span().add_event(
            "duration", attributes={"kind": kind.value, "millis": float(millis)}
        )

    def stats(self) -> Dict[str, Dict[str, float]]:
        """Total milliseconds and sample count per duration kind."""
        with self._lock:
            return {
                kind.value: {"total_ms": self._totals[kind], "count": self._counts[kind]}
                for kind in self._totals
            }


class NullDiagnostics(Diagnostics):
    """Diagnostics sink that discards everything."""

    def log(self, level: int, message: str) -> None:
        pass

    def record_duration(self, kind: DurationKind, millis: float) -> None:
        pass


def resolve_diagnostics(diagnostics: Optional[Diagnostics]) -> Diagnostics:
    return diagnostics if diagnostics is not None else Diagnostics()
