"""
Monitoring and metrics collection for the crawl workers.
"""

import logging
import time
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class CrawlerMonitor:
    """Prometheus counters shared by every worker of one supervisor."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()
        self.start_time = time.time()

        self.urls_fetched = Counter(
            'searchengine_urls_fetched_total',
            'URLs popped from the frontier and fetched',
            ['crawler_id'],
            registry=self.registry
        )
        self.pages_indexed = Counter(
            'searchengine_pages_indexed_total',
            'Webpages added to the index',
            ['crawler_id'],
            registry=self.registry
        )
        self.urls_dropped = Counter(
            'searchengine_urls_dropped_total',
            'URLs dropped without being indexed',
            ['reason'],
            registry=self.registry
        )
        self.urls_discovered = Counter(
            'searchengine_urls_discovered_total',
            'New URLs added to the frontier',
            registry=self.registry
        )
        self.associations_written = Counter(
            'searchengine_associations_written_total',
            'Keyword-webpage score increments written',
            registry=self.registry
        )
        self.fetch_seconds = Histogram(
            'searchengine_fetch_seconds',
            'Time spent fetching a URL',
            registry=self.registry
        )
        self.linking_in_flight = Gauge(
            'searchengine_linking_in_flight',
            'Keyword linking tasks currently running',
            registry=self.registry
        )

    def record_fetch(self, crawler_id: int, fetch_time: float):
        self.urls_fetched.labels(crawler_id=str(crawler_id)).inc()
        self.fetch_seconds.observe(fetch_time)

    def record_page_indexed(self, crawler_id: int):
        self.pages_indexed.labels(crawler_id=str(crawler_id)).inc()

    def record_dropped(self, reason: str):
        self.urls_dropped.labels(reason=reason).inc()

    def record_discovered(self, count: int):
        if count:
            self.urls_discovered.inc(count)

    def record_associations(self, count: int):
        if count:
            self.associations_written.inc(count)

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0 when it was never touched."""
        value = self.registry.get_sample_value(name, labels or {})
        return value or 0.0

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the crawl counters."""
        runtime = time.time() - self.start_time
        pages = sum(
            sample.value
            for metric in self.pages_indexed.collect()
            for sample in metric.samples
            if sample.name.endswith('_total')
        )
        return {
            'runtime_seconds': runtime,
            'pages_indexed': pages,
            'pages_per_minute': pages / (runtime / 60) if runtime > 0 else 0,
            'associations_written': self.get_value('searchengine_associations_written_total'),
        }

    def start_server(self, port: int):
        """Expose the registry over HTTP for Prometheus to scrape."""
        try:
            start_http_server(port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")
