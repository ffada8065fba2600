"""
Prometheus metrics for directory operations.

Every backend records through a ``MetricsRecorder``. The default recorder
registers on the global prometheus_client registry; tests pass their own
``CollectorRegistry``.
"""

import asyncio
import contextlib
import logging
import time
from typing import Iterator, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

_LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class MetricsRecorder:
    """Counters and histograms for queries, errors, connections and logins."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY

        self.queries_total = Counter(
            "directory_queries_total",
            "Directory operations executed",
            ["backend", "operation", "outcome"],
            registry=self.registry,
        )
        self.query_duration = Histogram(
            "directory_query_duration_seconds",
            "Directory operation latency",
            ["backend", "operation"],
            buckets=_LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.errors_total = Counter(
            "directory_errors_total",
            "Directory operation errors by type",
            ["backend", "operation", "error_type"],
            registry=self.registry,
        )
        self.connections_total = Counter(
            "directory_connections_total",
            "Connection establishment attempts",
            ["backend", "outcome"],
            registry=self.registry,
        )
        self.authentications_total = Counter(
            "directory_authentications_total",
            "Authentication attempts",
            ["backend", "mode", "outcome"],
            registry=self.registry,
        )

    def record_query(self, backend: str, operation: str, outcome: str, duration_s: float) -> None:
        self.queries_total.labels(backend, operation, outcome).inc()
        self.query_duration.labels(backend, operation).observe(max(0.0, duration_s))

    def record_error(self, backend: str, operation: str, error: BaseException) -> None:
        # Wrapped errors are counted under the vendor fault that caused them.
        fault = error.__cause__ or error
        self.errors_total.labels(backend, operation, type(fault).__name__).inc()

    def record_connection(self, backend: str, success: bool) -> None:
        self.connections_total.labels(backend, "established" if success else "failed").inc()

    def record_authentication(self, backend: str, mode: str, success: bool) -> None:
        self.authentications_total.labels(backend, mode, "success" if success else "failure").inc()

    @contextlib.contextmanager
    def track(self, backend: str, operation: str) -> Iterator[None]:
        """Time a block and record its outcome. Exceptions are re-raised."""
        started = time.perf_counter()
        try:
            yield
        except asyncio.CancelledError:
            self.record_query(backend, operation, "cancelled", time.perf_counter() - started)
            raise
        except Exception as e:
            self.record_error(backend, operation, e)
            self.record_query(backend, operation, "error", time.perf_counter() - started)
            raise
        self.record_query(backend, operation, "success", time.perf_counter() - started)


_default_recorder: Optional[MetricsRecorder] = None


def get_default_recorder() -> MetricsRecorder:
    """Recorder bound to the global registry, created once per process."""
    global _default_recorder
    if _default_recorder is None:
        _default_recorder = MetricsRecorder()
        logger.debug("Directory metrics registered on the default Prometheus registry")
    return _default_recorder
