"""
Monitoring and metrics collection for the crawl-and-index service.
"""

import time
import logging
from typing import Dict, Optional, Any
from collections import defaultdict

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST


class MetricsCollector:
    """Owns the Prometheus registry and keeps plain running totals alongside it."""

    def __init__(self, enabled: bool = True):
        self.logger = logging.getLogger(__name__)
        self.enabled = enabled
        self.totals: Dict[str, float] = defaultdict(float)

        self.registry = CollectorRegistry()
        self.prometheus_metrics = {
            'pages_crawled_total': Counter(
                'crawlindex_pages_crawled_total',
                'Total number of fetch attempts that produced a response',
                ['outcome'],
                registry=self.registry
            ),
            'pages_indexed_total': Counter(
                'crawlindex_pages_indexed_total',
                'Total number of documents written to the index',
                registry=self.registry
            ),
            'policy_skipped_total': Counter(
                'crawlindex_policy_skipped_total',
                'Total number of URLs skipped by exclusion policy',
                registry=self.registry
            ),
            'soft_failures_total': Counter(
                'crawlindex_soft_failures_total',
                'Total number of per-page soft failures',
                ['reason'],
                registry=self.registry
            ),
            'fetch_seconds': Histogram(
                'crawlindex_fetch_seconds',
                'Latency of single HTTP fetches',
                registry=self.registry
            ),
            'active_workers': Gauge(
                'crawlindex_active_workers',
                'Number of crawl workers currently processing a task',
                registry=self.registry
            ),
            'crawl_runs_total': Counter(
                'crawlindex_crawl_runs_total',
                'Total number of crawl runs',
                ['status'],
                registry=self.registry
            ),
            'searches_total': Counter(
                'crawlindex_searches_total',
                'Total number of search requests',
                ['status'],
                registry=self.registry
            ),
        }

        self.logger.info("Prometheus metrics initialized")

    def increment(self, name: str, labels: Optional[Dict[str, str]] = None, amount: float = 1):
        """Increment a counter metric."""
        key = name if not labels else f"{name}{{{','.join(f'{k}={v}' for k, v in sorted(labels.items()))}}}"
        self.totals[key] += amount
        if not self.enabled:
            return
        metric = self.prometheus_metrics[name]
        if labels:
            metric.labels(**labels).inc(amount)
        else:
            metric.inc(amount)

    def observe(self, name: str, value: float):
        """Record a histogram observation."""
        self.totals[f"{name}_count"] += 1
        if self.enabled:
            self.prometheus_metrics[name].observe(value)

    def add_to_gauge(self, name: str, delta: float):
        """Move a gauge up or down."""
        self.totals[name] += delta
        if self.enabled:
            self.prometheus_metrics[name].inc(delta)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return dict(self.totals)

    def export(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


class CrawlerMonitor:
    """High-level monitoring interface for crawl runs and searches."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.logger = logging.getLogger(__name__)
        self.start_time = time.time()

    def record_fetch(self, outcome: str, response_time: float):
        """Record a finished fetch attempt."""
        self.metrics.increment('pages_crawled_total', {'outcome': outcome})
        self.metrics.observe('fetch_seconds', response_time)

    def record_page_indexed(self, url: str):
        self.metrics.increment('pages_indexed_total')

    def record_policy_skip(self, url: str):
        self.metrics.increment('policy_skipped_total')

    def record_soft_failure(self, reason: str):
        """Record a per-page failure that did not abort the run."""
        self.metrics.increment('soft_failures_total', {'reason': reason})

    def worker_started(self):
        self.metrics.add_to_gauge('active_workers', 1)

    def worker_finished(self):
        self.metrics.add_to_gauge('active_workers', -1)

    def record_crawl_run(self, status: str):
        self.metrics.increment('crawl_runs_total', {'status': status})

    def record_search(self, status: str):
        self.metrics.increment('searches_total', {'status': status})

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
        }


def initialize_monitoring(enabled: bool = True) -> CrawlerMonitor:
    """Create a monitor backed by a fresh registry."""
    return CrawlerMonitor(MetricsCollector(enabled))
