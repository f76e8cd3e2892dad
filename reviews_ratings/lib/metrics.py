"""
Prometheus-compatible metrics for the review service.

Counters:
- reviews_created_total: Reviews stored (labels: source)
- reviews_deleted_total: Bulk delete outcomes per id (labels: outcome)
- reviews_moderated_total: Moderation outcomes per id (labels: approved, outcome)
- review_checks_total: Dedup / purchase verification results (labels: check, result)

Usage:
    from reviews_ratings.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_created(source="shopper")
    prometheus_output = metrics.export_prometheus()
"""

from threading import Lock
from typing import Dict, Tuple


LabelKey = Tuple[Tuple[str, str], ...]


class MetricsCollector:
    """
    Prometheus-style counter registry.

    Thread-safe: review store work runs on a thread pool and increments
    counters from worker threads.
    """

    HELP_TEXTS = {
        "reviews_created_total": "Total number of reviews stored",
        "reviews_deleted_total": "Total number of review delete attempts by outcome",
        "reviews_moderated_total": "Total number of review moderation attempts by outcome",
        "review_checks_total": "Total number of dedup and purchase checks by result",
    }

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[Tuple[str, LabelKey], int] = {}

    @staticmethod
    def _key(metric_name: str, labels: Dict[str, str]) -> Tuple[str, LabelKey]:
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        key = self._key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def increment_created(self, source: str = "service", amount: int = 1):
        """Count stored reviews. ``source`` is shopper, import or service."""
        self._increment("reviews_created_total", {"source": source.lower()}, amount)

    def increment_deleted(self, outcome: str, amount: int = 1):
        """Count delete attempts (outcome: deleted or failed)."""
        self._increment("reviews_deleted_total", {"outcome": outcome.lower()}, amount)

    def increment_moderated(self, approved: bool, outcome: str, amount: int = 1):
        """Count moderation attempts."""
        labels = {"approved": str(approved).lower(), "outcome": outcome.lower()}
        self._increment("reviews_moderated_total", labels, amount)

    def increment_check(self, check: str, result: str, amount: int = 1):
        """
        Count dedup and purchase verification results.

        Args:
            check: shopper_reviewed or purchase
            result: confirmed, not_confirmed or unavailable
        """
        labels = {"check": check.lower(), "result": result.lower()}
        self._increment("review_checks_total", labels, amount)

    def export_prometheus(self) -> str:
        """Export all counters in Prometheus text format."""
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name):
            help_text = self.HELP_TEXTS.get(metric_name, "Counter metric")
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                labels_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels_dict.items()))
                output_lines.append(f"{metric_name}{{{labels_str}}} {value}")

            output_lines.append("")

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of a specific counter (0 if never incremented)."""
        key = self._key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
