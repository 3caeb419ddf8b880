"""
Metrics collection for locate and AI operations.

Collectors are owned by an engine instance; there is no process-wide registry.
"""

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional

from .models.healing_models import ResolutionStrategy


@dataclass
class MetricPoint:
    """A single metric data point."""
    timestamp: datetime
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    """Thread-safe counter and histogram store."""

    def __init__(self, window_size: int = 1000):
        self._lock = threading.RLock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._histograms: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

    def increment_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        """Increment a counter metric."""
        with self._lock:
            self._counters[self._make_key(name, labels)] += value

    def record_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Record a value in a histogram."""
        with self._lock:
            self._histograms[self._make_key(name, labels)].append(MetricPoint(
                timestamp=datetime.now(),
                value=value,
                labels=labels or {}
            ))

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        with self._lock:
            return self._counters.get(self._make_key(name, labels), 0)

    def get_average(self, name: str, labels: Dict[str, str] = None) -> float:
        with self._lock:
            points = self._histograms.get(self._make_key(name, labels))
            if not points:
                return 0.0
            return sum(p.value for p in points) / len(points)

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._histograms.clear()

    def _make_key(self, name: str, labels: Optional[Dict[str, str]]) -> str:
        """Create a unique key from metric name and labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}:{v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


class LocatorMetrics(MetricsCollector):
    """Outcome and latency metrics for locate calls."""

    def record_success(self, strategy: ResolutionStrategy, duration: float):
        with self._lock:
            self.increment_counter("locate_requests_total")
            self.increment_counter("locate_success_total")
            self.increment_counter("locate_success_by_strategy", labels={"strategy": strategy.value})
            self.record_histogram("locate_duration", duration)

    def record_failure(self, error_code: str, duration: float):
        with self._lock:
            self.increment_counter("locate_requests_total")
            self.increment_counter("locate_failure_total")
            self.increment_counter("locate_failure_by_error", labels={"error": error_code})
            if error_code == "TIMEOUT":
                self.increment_counter("locate_timeout_total")
            self.record_histogram("locate_duration", duration)

    @property
    def success_rate(self) -> float:
        """Fraction of successful locate calls, 1.0 before any call."""
        with self._lock:
            total = self._counters.get("locate_requests_total", 0)
            if total == 0:
                return 1.0
            return self._counters.get("locate_success_total", 0) / total

    def strategy_counts(self) -> Dict[str, int]:
        return {
            strategy.value: self.get_counter("locate_success_by_strategy", {"strategy": strategy.value})
            for strategy in ResolutionStrategy
        }

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_requests": self._counters.get("locate_requests_total", 0),
                "successful": self._counters.get("locate_success_total", 0),
                "failed": self._counters.get("locate_failure_total", 0),
                "timeouts": self._counters.get("locate_timeout_total", 0),
                "success_rate": self.success_rate,
                "average_time": self.get_average("locate_duration"),
                "by_strategy": self.strategy_counts()
            }


class AIServiceMetrics(MetricsCollector):
    """Call metrics for the AI service, per operation."""

    OPERATIONS = ("analyze_dom", "analyze_visual", "select_best_matching_element")

    def record_request(self, operation: str, success: bool, duration: float):
        with self._lock:
            self.increment_counter("ai_requests_total")
            self.increment_counter(f"ai_{'success' if success else 'failure'}_total")
            self.increment_counter(
                f"ai_{'success' if success else 'failure'}", labels={"operation": operation}
            )
            self.record_histogram("ai_response_time", duration, {"operation": operation})

    def record_rejection(self, operation: str):
        """Record a call refused because the circuit breaker was open."""
        with self._lock:
            self.increment_counter("ai_circuit_open_rejections")
            self.increment_counter("ai_rejected", labels={"operation": operation})

    @property
    def total_requests(self) -> int:
        return self.get_counter("ai_requests_total")

    @property
    def success_rate(self) -> float:
        with self._lock:
            total = self._counters.get("ai_requests_total", 0)
            if total == 0:
                return 1.0
            return self._counters.get("ai_success_total", 0) / total

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            per_operation = {}
            for operation in self.OPERATIONS:
                labels = {"operation": operation}
                per_operation[operation] = {
                    "success": self.get_counter("ai_success", labels),
                    "failure": self.get_counter("ai_failure", labels),
                    "rejected": self.get_counter("ai_rejected", labels),
                    "average_time": self.get_average("ai_response_time", labels)
                }
            return {
                "total_requests": self._counters.get("ai_requests_total", 0),
                "success_rate": self.success_rate,
                "circuit_open_rejections": self._counters.get("ai_circuit_open_rejections", 0),
                "operations": per_operation
            }
