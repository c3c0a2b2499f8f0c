"""Telemetry context and reporters.

Disabled by default: ``TelemetryContext()`` returns a shared no-op object whose
methods do nothing. Set ``ENRICH_TELEMETRY=1`` (or ``DEBUG=1``) and pass at
least one reporter to collect scoped timings and counters.

Scope names used by the engine:

- ``enrich.job``, ``enrich.wave``, ``enrich.chunk``, ``enrich.single_item``,
  ``enrich.merge`` (timings)
- ``enrich.retry``, ``enrich.rate_limited``, ``enrich.salvage.<stage>``,
  ``enrich.fallback`` (counters)
"""

from collections import defaultdict, deque
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os
import time
from types import TracebackType
from typing import Any, Protocol, Self, runtime_checkable

log = logging.getLogger(__name__)

_scope_stack_var: ContextVar[tuple[str, ...]] = ContextVar(
    "enrich_scope_stack", default=()
)


def telemetry_enabled() -> bool:
    return os.getenv("ENRICH_TELEMETRY") == "1" or os.getenv("DEBUG") == "1"


@runtime_checkable
class TelemetryReporter(Protocol):
    """Duck-typed protocol for telemetry reporters."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


@dataclass(frozen=True, slots=True)
class _NoOpTelemetryContext:
    """Stateless no-op context."""

    def __call__(self, name: str, **metadata: Any) -> Self:  # noqa: ARG002
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return None

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass

    def gauge(self, name: str, value: float, **metadata: Any) -> None:
        pass


class _EnabledTelemetryContext:
    __slots__ = ("reporters",)

    def __init__(self, *reporters: TelemetryReporter):
        self.reporters = reporters

    def __call__(
        self, name: str, **metadata: Any
    ) -> AbstractContextManager["_EnabledTelemetryContext"]:
        return self._scope(name, **metadata)

    @contextmanager
    def _scope(self, name: str, **metadata: Any) -> Iterator["_EnabledTelemetryContext"]:
        if not name:
            raise ValueError("Scope name must be a non-empty string")
        parent = _scope_stack_var.get()
        token = _scope_stack_var.set((*parent, name))
        start = time.perf_counter()
        try:
            yield self
        finally:
            duration = time.perf_counter() - start
            _scope_stack_var.reset(token)
            self._emit(
                "record_timing",
                ".".join((*parent, name)),
                duration,
                depth=len(parent),
                **metadata,
            )

    def _emit(self, method: str, scope: str, value: Any, **metadata: Any) -> None:
        for reporter in self.reporters:
            try:
                getattr(reporter, method)(scope, value, **metadata)
            except Exception as e:
                # A broken reporter must never fail a job.
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )

    def _metric(self, name: str, value: Any, **metadata: Any) -> None:
        parent = _scope_stack_var.get()
        self._emit(
            "record_metric",
            ".".join((*parent, name)),
            value,
            parent_scope=".".join(parent) or None,
            **metadata,
        )

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        self._metric(name, increment, metric_type="counter", **metadata)

    def gauge(self, name: str, value: float, **metadata: Any) -> None:
        self._metric(name, value, metric_type="gauge", **metadata)


_NO_OP_SINGLETON = _NoOpTelemetryContext()

type TelemetryContextProtocol = _EnabledTelemetryContext | _NoOpTelemetryContext


def TelemetryContext(*reporters: TelemetryReporter) -> TelemetryContextProtocol:  # noqa: N802
    """Return an enabled context, or the shared no-op when disabled."""
    if reporters and telemetry_enabled():
        return _EnabledTelemetryContext(*reporters)
    return _NO_OP_SINGLETON


class InMemoryReporter:
    """Collects timings and metrics in memory, for development and tests."""

    def __init__(self, max_entries_per_scope: int = 1000):
        self.timings: defaultdict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=max_entries_per_scope)
        )
        self.metrics: defaultdict[str, deque[Any]] = defaultdict(
            lambda: deque(maxlen=max_entries_per_scope)
        )

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:  # noqa: ARG002
        self.timings[scope].append(duration)

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:  # noqa: ARG002
        self.metrics[scope].append(value)

    def total(self, scope: str) -> float:
        """Sum of numeric values recorded for a metric scope."""
        return sum(v for v in self.metrics.get(scope, ()) if isinstance(v, int | float))

    def get_report(self) -> str:
        lines = ["=== Telemetry Report ==="]
        for scope, durations in sorted(self.timings.items()):
            lines.append(
                f"{scope:<40} | Calls: {len(durations):<4} | "
                f"Total: {sum(durations):.4f}s"
            )
        for scope in sorted(self.metrics):
            lines.append(f"{scope:<40} | Total: {self.total(scope):,.0f}")
        return "\n".join(lines)
