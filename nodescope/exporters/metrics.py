# nodescope/exporters/metrics.py - Run metrics
"""
Prometheus metrics describing one agent run. The rendered exposition text is
uploaded with the run's other outputs.
"""

from typing import Dict

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from nodescope.collector.base import DataProducer


METRICS_ITEM = 'nodescope-metrics'


class AgentMetrics(DataProducer):
    """
    Per-run metrics, kept in a private registry so runs never share series.
    """

    def __init__(self):
        self.registry = CollectorRegistry()

        self.collector_runs = Counter(
            'nodescope_collector_runs_total',
            'Collector outcomes per run',
            ['collector', 'outcome'],
            registry=self.registry,
        )

        self.collect_duration = Histogram(
            'nodescope_collect_duration_seconds',
            'Duration of collect() per collector',
            ['collector'],
            buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300],
            registry=self.registry,
        )

        self.collector_items = Gauge(
            'nodescope_collector_items',
            'Number of named outputs per collector',
            ['collector'],
            registry=self.registry,
        )

        self.exported_items = Counter(
            'nodescope_exported_items_total',
            'Items uploaded to object storage',
            ['collector'],
            registry=self.registry,
        )

    def record_outcome(self, collector: str, outcome: str):
        self.collector_runs.labels(collector=collector, outcome=outcome).inc()

    def get_metrics_text(self) -> str:
        return generate_latest(self.registry).decode('utf-8')

    def get_data(self) -> Dict[str, str]:
        return {METRICS_ITEM: self.get_metrics_text()}
