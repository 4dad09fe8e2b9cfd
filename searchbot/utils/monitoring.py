"""
Crawl and query metrics, mirrored to Prometheus when enabled.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from prometheus_client import Counter, Gauge, CollectorRegistry, start_http_server


@dataclass(frozen=True)
class MetricSpec:
    """Declaration of one metric."""
    kind: str  # counter, gauge
    help: str
    labels: Tuple[str, ...] = ()


METRICS: Dict[str, MetricSpec] = {
    'pages_crawled_total': MetricSpec('counter', 'Crawl tasks that fetched a page'),
    'pages_indexed_total': MetricSpec('counter', 'Pages that produced index entries'),
    'crawl_failures_total': MetricSpec('counter', 'Failed crawl tasks', ('reason',)),
    'searches_total': MetricSpec('counter', 'Search requests', ('outcome',)),
    'active_workers': MetricSpec('gauge', 'Crawl workers still running'),
    'frontier_size': MetricSpec('gauge', 'Distinct URLs known to the frontier'),
    'next_position': MetricSpec('gauge', 'Next frontier position to dispatch'),
    'compensation_quota': MetricSpec('gauge', 'Extra positions granted for failed or empty attempts'),
    'index_ready': MetricSpec('gauge', 'Whether search queries are being served'),
}

PROMETHEUS_PREFIX = 'searchbot_'

PROMETHEUS_TYPES = {'counter': Counter, 'gauge': Gauge}


class MetricsCollector:
    """Keeps the current value of every metric in METRICS."""

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port

        self.values: Dict[str, float] = {name: 0 for name in METRICS}
        self.labelled: Dict[str, Dict[Tuple[str, ...], float]] = {}

        self.prometheus_registry: Optional[CollectorRegistry] = None
        self.prometheus_metrics: Dict[str, Any] = {}

        if self.enable_prometheus:
            self._setup_prometheus()

    def _setup_prometheus(self):
        """Register one Prometheus collector per declared metric."""
        self.prometheus_registry = CollectorRegistry()
        for name, spec in METRICS.items():
            self.prometheus_metrics[name] = PROMETHEUS_TYPES[spec.kind](
                PROMETHEUS_PREFIX + name,
                spec.help,
                list(spec.labels),
                registry=self.prometheus_registry
            )
        self.logger.info(f"Prometheus metrics initialized ({len(METRICS)} series)")

    def start_prometheus_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.prometheus_registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def _spec(self, name: str, kind: str) -> MetricSpec:
        spec = METRICS.get(name)
        if spec is None or spec.kind != kind:
            raise KeyError(f"Unknown {kind} metric: {name}")
        return spec

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None):
        """Increment a counter, tracking each label combination separately."""
        spec = self._spec(name, 'counter')
        labels = labels or {}
        self.values[name] += 1

        if spec.labels:
            key = tuple(labels[label] for label in spec.labels)
            by_label = self.labelled.setdefault(name, {})
            by_label[key] = by_label.get(key, 0) + 1

        prom_metric = self.prometheus_metrics.get(name)
        if prom_metric is not None:
            (prom_metric.labels(**labels) if spec.labels else prom_metric).inc()

    def set_gauge(self, name: str, value: float):
        self._spec(name, 'gauge')
        self.values[name] = value

        prom_metric = self.prometheus_metrics.get(name)
        if prom_metric is not None:
            prom_metric.set(value)

    def get_current_values(self) -> Dict[str, float]:
        return dict(self.values)

    def get_breakdown(self, name: str) -> Dict[str, float]:
        """Counts of a labelled counter keyed by label value (joined with '/')."""
        return {'/'.join(key): value for key, value in self.labelled.get(name, {}).items()}


class CrawlerMonitor:
    """High-level monitoring interface for the crawler and the query server."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.start_time = time.time()

    def record_page_crawled(self):
        self.metrics.increment_counter('pages_crawled_total')

    def record_page_indexed(self):
        self.metrics.increment_counter('pages_indexed_total')

    def record_crawl_failure(self, reason: str):
        self.metrics.increment_counter('crawl_failures_total', {'reason': reason})

    def record_search(self, outcome: str):
        self.metrics.increment_counter('searches_total', {'outcome': outcome})

    def update_active_workers(self, count: int):
        self.metrics.set_gauge('active_workers', count)

    def update_frontier_size(self, size: int):
        self.metrics.set_gauge('frontier_size', size)

    def update_dispatch_state(self, next_position: int, compensation_quota: int):
        self.metrics.set_gauge('next_position', next_position)
        self.metrics.set_gauge('compensation_quota', compensation_quota)

    def update_index_ready(self, ready: bool):
        self.metrics.set_gauge('index_ready', 1 if ready else 0)

    def get_summary(self) -> Dict[str, Any]:
        """Current values, per-label breakdowns and crawl rates."""
        values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time
        crawled = values['pages_crawled_total']

        return {
            'runtime_seconds': runtime,
            'metrics': values,
            'failures_by_reason': self.metrics.get_breakdown('crawl_failures_total'),
            'searches_by_outcome': self.metrics.get_breakdown('searches_total'),
            'rates': {
                'pages_per_minute': crawled / (runtime / 60) if runtime > 0 else 0,
                'index_yield': values['pages_indexed_total'] / crawled if crawled else 0,
            }
        }


def initialize_monitoring(enable_prometheus: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Build the monitor shared by the coordinator, workers and query server."""
    return CrawlerMonitor(MetricsCollector(enable_prometheus, prometheus_port))
