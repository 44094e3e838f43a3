"""
Performance counters for Ansybl components.

Each validator/parser/builder owns one PerformanceMetrics value. A snapshot
dictionary is kept under a lock for programmatic access and the same events
are mirrored into an instance-owned Prometheus registry for export.
"""

import logging
import threading
from collections import Counter as FrequencyCounter
from typing import Any, Dict, Iterable, List, Optional

from prometheus_client import (  # type: ignore
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from .dates import utc_now_iso

logger = logging.getLogger(__name__)

LATENCY_BUCKETS = [0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0]
SIZE_BUCKETS = [256, 1024, 4096, 16384, 65536, 262144, 1048576, 4194304]


class PerformanceMetrics:
    """Lock-guarded operation counters for one component instance."""

    def __init__(self, component: str):
        """
        Args:
            component: Label value identifying the owner (validator, parser, builder)
        """
        self.component = component
        self._lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._state: Dict[str, Any] = {}
        self._init_collectors()
        self._reset_state()

    # -- Prometheus mirror ------------------------------------------------

    def _init_collectors(self):
        """Create a fresh registry and its collectors."""
        self.registry = CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        self.operations_total = self._get_or_create_counter(
            name="ansybl_operations_total",
            description="Operations by component, operation and outcome",
            labels=["component", "operation", "outcome"]
        )
        self.diagnostics_total = self._get_or_create_counter(
            name="ansybl_diagnostics_total",
            description="Diagnostics reported by code",
            labels=["component", "code"]
        )
        self.signature_checks_total = self._get_or_create_counter(
            name="ansybl_signature_verifications_total",
            description="Signature verifications by result",
            labels=["component", "result"]
        )
        self.operation_latency = self._get_or_create_histogram(
            name="ansybl_operation_latency_seconds",
            description="Time spent per operation",
            labels=["component", "operation"],
            buckets=LATENCY_BUCKETS
        )
        self.document_size = self._get_or_create_histogram(
            name="ansybl_document_size_bytes",
            description="Serialized size of processed documents",
            labels=["component"],
            buckets=SIZE_BUCKETS
        )

    def _get_or_create_counter(self, name: str, description: str,
                               labels: Optional[List[str]] = None) -> Counter:
        with self._registry_lock:
            if name not in self._metrics:
                self._metrics[name] = Counter(name, description, labels or [], registry=self.registry)
            return self._metrics[name]

    def _get_or_create_histogram(self, name: str, description: str,
                                 labels: Optional[List[str]] = None,
                                 buckets: Optional[List[float]] = None) -> Histogram:
        with self._registry_lock:
            if name not in self._metrics:
                self._metrics[name] = Histogram(
                    name,
                    description,
                    labels or [],
                    registry=self.registry,
                    buckets=buckets if buckets is not None else Histogram.DEFAULT_BUCKETS,
                )
            return self._metrics[name]

    # -- Snapshot state ---------------------------------------------------

    def _reset_state(self):
        self._state = {
            "count": 0,
            "successes": 0,
            "failures": 0,
            "total_time_ms": 0.0,
            "min_time_ms": None,
            "max_time_ms": 0.0,
            "size_stats": {"min": None, "max": 0, "total": 0, "samples": 0, "average": 0.0},
            "error_frequency": FrequencyCounter(),
            "operation_frequency": FrequencyCounter(),
            "signatures": {"verified": 0, "failed": 0},
            "last_reset": utc_now_iso(),
        }

    def record(
        self,
        operation: str,
        success: bool,
        duration_ms: float,
        size: Optional[int] = None,
        error_codes: Iterable[str] = ()
    ) -> None:
        """Record one completed operation."""
        codes = [str(code) for code in error_codes]

        with self._lock:
            state = self._state
            state["count"] += 1
            state["successes" if success else "failures"] += 1
            state["total_time_ms"] += duration_ms
            state["min_time_ms"] = duration_ms if state["min_time_ms"] is None else min(state["min_time_ms"], duration_ms)
            state["max_time_ms"] = max(state["max_time_ms"], duration_ms)
            state["operation_frequency"][operation] += 1
            state["error_frequency"].update(codes)

            if size is not None:
                sizes = state["size_stats"]
                sizes["min"] = size if sizes["min"] is None else min(sizes["min"], size)
                sizes["max"] = max(sizes["max"], size)
                sizes["total"] += size
                sizes["samples"] += 1
                sizes["average"] = sizes["total"] / sizes["samples"]

            outcome = "success" if success else "failure"
            self.operations_total.labels(component=self.component, operation=operation, outcome=outcome).inc()
            self.operation_latency.labels(component=self.component, operation=operation).observe(duration_ms / 1000.0)
            if size is not None:
                self.document_size.labels(component=self.component).observe(size)
            for code in codes:
                self.diagnostics_total.labels(component=self.component, code=code).inc()

    def record_signatures(self, verified: int = 0, failed: int = 0) -> None:
        """Record signature verification outcomes."""
        with self._lock:
            self._state["signatures"]["verified"] += verified
            self._state["signatures"]["failed"] += failed
            if verified:
                self.signature_checks_total.labels(component=self.component, result="valid").inc(verified)
            if failed:
                self.signature_checks_total.labels(component=self.component, result="invalid").inc(failed)

    def snapshot(self) -> Dict[str, Any]:
        """Get a copy of the counters with derived averages and rates."""
        with self._lock:
            state = self._state
            count = state["count"]
            return {
                "component": self.component,
                "count": count,
                "successes": state["successes"],
                "failures": state["failures"],
                "total_time_ms": state["total_time_ms"],
                "min_time_ms": state["min_time_ms"] or 0.0,
                "max_time_ms": state["max_time_ms"],
                "average_time_ms": state["total_time_ms"] / count if count else 0.0,
                "success_rate": (state["successes"] / count) * 100 if count else 0.0,
                "size_stats": {
                    **state["size_stats"],
                    "min": state["size_stats"]["min"] or 0,
                },
                "error_frequency": dict(state["error_frequency"]),
                "operation_frequency": dict(state["operation_frequency"]),
                "signatures": dict(state["signatures"]),
                "last_reset": state["last_reset"],
            }

    def reset(self) -> None:
        """Clear all counters, including the Prometheus mirror."""
        with self._lock:
            self._reset_state()
            self._init_collectors()
        logger.debug(f"Performance metrics reset for {self.component}")

    def export(self) -> bytes:
        """Prometheus text exposition of this instance's registry."""
        with self._lock:
            registry = self.registry
        return generate_latest(registry)


__all__ = ["PerformanceMetrics"]
