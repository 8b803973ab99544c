"""
Shared metrics configuration for the access enforcer.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager


class MetricsCollector:
    """Centralized Prometheus metrics for an enforcer instance.

    Metrics are only exported when a ``registry`` is given; without one they
    are still recorded and can be read back from the metric objects.
    """

    def __init__(self, component_name: str = "enforcer", registry: Optional[CollectorRegistry] = None):
        self.component_name = component_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up enforcement metrics."""

        self._metrics["component_info"] = Info(
            "enforcer_component",
            "Enforcer component information",
            registry=self.registry
        )
        self._metrics["component_info"].info({
            "component": self.component_name,
            "version": "1.0.0"
        })

        # Decisions
        self._metrics["enforce_total"] = Counter(
            "enforce_total",
            "Total enforcement decisions",
            ["decision"],
            registry=self.registry
        )

        self._metrics["enforce_duration_seconds"] = Histogram(
            "enforce_duration_seconds",
            "Enforcement duration in seconds",
            registry=self.registry
        )

        # Decision cache
        self._metrics["decision_cache_total"] = Counter(
            "decision_cache_total",
            "Decision cache lookups",
            ["result"],
            registry=self.registry
        )

        # Errors
        self._metrics["rule_eval_errors_total"] = Counter(
            "rule_eval_errors_total",
            "Rule evaluations that failed and were treated as non-matching",
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors surfaced to callers",
            ["error_type"],
            registry=self.registry
        )

        # Mutations
        self._metrics["policy_mutations_total"] = Counter(
            "policy_mutations_total",
            "Committed policy and role mutations",
            ["operation"],
            registry=self.registry
        )

        self._metrics["policy_rows"] = Gauge(
            "policy_rows",
            "Number of stored policy rows",
            ["ptype"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_decision(self, allowed: bool, duration: float):
        """Record an enforcement decision."""
        self._metrics["enforce_total"].labels(decision="allow" if allowed else "deny").inc()
        self._metrics["enforce_duration_seconds"].observe(duration)

    def record_cache_lookup(self, hit: bool):
        """Record a decision cache lookup."""
        self._metrics["decision_cache_total"].labels(result="hit" if hit else "miss").inc()

    def record_rule_error(self):
        """Record a rule evaluation error."""
        self.increment_counter("rule_eval_errors_total")

    def record_error(self, error_type: str):
        """Record error metrics."""
        self._metrics["errors_total"].labels(error_type=error_type).inc()

    def record_mutation(self, operation: str):
        """Record a committed mutation."""
        self.increment_counter("policy_mutations_total", operation=operation)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            self.observe_histogram(operation_name, duration, **labels)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)


def get_metrics_collector(component_name: str = "enforcer", registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for an enforcer."""
    return MetricsCollector(component_name, registry)
