# nodescope/collector/orchestrator.py - Collection pass driver
"""
Runs every registered collector once and routes successful output to the
exporter.

Unsupported collectors are skipped. Collect failures are gathered rather
than short-circuiting, and never hide the output of the collectors that
succeeded.
"""

import io
import logging
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from nodescope.collector.base import Collector
from nodescope.collector.gadget import GadgetTraceCollector
from nodescope.collector.registry import ContainerRegistry
from nodescope.collector.sources import CriContainerSource
from nodescope.collector.systemperf import SystemPerfCollector
from nodescope.collector.trace_dns import DnsTraceCollector
from nodescope.collector.trace_tcp import TcpTraceCollector
from nodescope.errors import (CollectError, CollectionErrors, ExportError,
                              StorageNotConfiguredError, UnsupportedEnvironmentError)
from nodescope.exporters.metrics import AgentMetrics
from nodescope.probes.bcc_probes import BccDnsProbe, BccTcpProbe
from nodescope.probes.procnet import ProcNetTcpProbe
from nodescope.utils.config import Config
from nodescope.utils.runtime_info import RuntimeInfo


@dataclass
class RunResult:
    """
    Outcome of one collection pass.
    """
    skipped: Dict[str, str] = field(default_factory=dict)
    succeeded: List[str] = field(default_factory=list)
    errors: Dict[str, Exception] = field(default_factory=dict)
    exported: List[str] = field(default_factory=list)
    export_errors: Dict[str, Exception] = field(default_factory=dict)

    @property
    def collect_error(self) -> Optional[CollectionErrors]:
        return CollectionErrors(self.errors) if self.errors else None

    @property
    def ok(self) -> bool:
        return not self.errors and not self.export_errors


class Orchestrator:
    """
    Drives one full collection pass.
    """

    def __init__(self, collectors: List[Collector], exporter, max_workers: int = 1,
                 metrics: Optional[AgentMetrics] = None, archive: bool = False):
        """
        Args:
            collectors: Collectors to run, each at most once
            exporter: ObjectStorageExporter (or compatible)
            max_workers: Collectors run concurrently, 1 runs them in order
            metrics: Run metrics, exported after the collectors
            archive: Also upload all outputs as one zip archive
        """
        self.collectors = list(collectors)
        self.exporter = exporter
        self.max_workers = max(1, max_workers)
        self.metrics = metrics or AgentMetrics()
        self.archive = archive
        self.logger = logging.getLogger(__name__)

    def check_supported(self, result: RunResult) -> List[Collector]:
        supported = []

        for collector in self.collectors:
            name = collector.get_name()
            try:
                collector.check_supported()
            except UnsupportedEnvironmentError as e:
                self.logger.info(f"Skipping unsupported collector {name}: {e.reason}")
                result.skipped[name] = e.reason
                self.metrics.record_outcome(name, 'skipped')
                continue

            supported.append(collector)

        return supported

    def _collect_one(self, collector: Collector):
        name = collector.get_name()
        self.logger.info(f"Collector: {name}, collect data")

        start = time.monotonic()
        try:
            collector.collect()
        except CollectError:
            raise
        except Exception as e:
            raise CollectError(name, str(e)) from e
        finally:
            self.metrics.collect_duration.labels(collector=name).observe(time.monotonic() - start)

    def collect_all(self, collectors: List[Collector], result: RunResult) -> List[Collector]:
        """
        Collect from every collector, gathering all failures.

        Returns:
            Collectors whose collect() succeeded
        """
        succeeded = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._collect_one, c): c for c in collectors}

            for future in as_completed(futures):
                collector = futures[future]
                name = collector.get_name()
                try:
                    future.result()
                except CollectError as e:
                    self.logger.error(f"Collector: {name}, collect data failed: {e}")
                    result.errors[name] = e
                    self.metrics.record_outcome(name, 'failed')
                    continue

                succeeded.append(collector)
                result.succeeded.append(name)
                self.metrics.record_outcome(name, 'succeeded')

        return succeeded

    def export_all(self, collectors: List[Collector], result: RunResult):
        producers = [(c.get_name(), c) for c in collectors] + [('metrics', self.metrics)]

        for name, producer in producers:
            if name != 'metrics':
                self.metrics.collector_items.labels(collector=name).set(len(producer.get_data()))

            self.logger.info(f"Collector: {name}, export data")
            try:
                keys = self.exporter.export(producer)
            except StorageNotConfiguredError as e:
                # Every further attempt would fail the same way
                result.export_errors[name] = e
                return
            except ExportError as e:
                self.logger.error(f"Collector: {name}, export data failed: {e}")
                result.export_errors[name] = e
                continue

            result.exported.extend(keys)
            if name != 'metrics':
                self.metrics.exported_items.labels(collector=name).inc(len(keys))

        if self.archive:
            self._export_archive(collectors, result)

    def _export_archive(self, collectors: List[Collector], result: RunResult):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as archive:
            for collector in collectors:
                for item_name, content in collector.get_data().items():
                    archive.writestr(f"{collector.get_name()}/{item_name}", content)
        buffer.seek(0)

        name = f"{self.exporter.runtime_info.host_node_name}.zip"
        try:
            result.exported.append(self.exporter.export_reader(name, buffer))
        except ExportError as e:
            self.logger.error(f"Archive export failed: {e}")
            result.export_errors[name] = e

    def run(self) -> RunResult:
        """
        Run one pass: check, collect, export.
        """
        result = RunResult()

        supported = self.check_supported(result)
        succeeded = self.collect_all(supported, result)
        self.export_all(succeeded, result)

        self.logger.info(f"Run finished: {len(result.succeeded)} succeeded, "
                         f"{len(result.errors)} failed, {len(result.skipped)} skipped, "
                         f"{len(result.exported)} items exported")
        return result


def build_collectors(runtime_info: RuntimeInfo, config: Config, waiter: Callable[[], None],
                     api_client=None) -> List[Collector]:
    """
    Build the collector list for a run.

    Cluster-facing collectors are only built when an API client is given.
    """
    def registry_factory() -> ContainerRegistry:
        return ContainerRegistry(CriContainerSource(
            crictl_path=config.get('registry.crictl_path', 'crictl'),
            poll_interval=config.get('registry.poll_interval', 2.0),
        ))

    buffer_pages = config.get('probes.buffer_pages', 64)

    collectors: List[Collector] = [
        DnsTraceCollector(
            runtime_info, waiter, registry_factory,
            probe_factory=lambda: BccDnsProbe(buffer_pages=buffer_pages),
        ),
        TcpTraceCollector(
            runtime_info, waiter, registry_factory,
            probe_factory=lambda: BccTcpProbe(buffer_pages=buffer_pages),
            fallback_factory=lambda: ProcNetTcpProbe(
                poll_interval=config.get('probes.proc_poll_interval', 0.5)),
        ),
    ]

    if api_client is not None:
        collectors.append(SystemPerfCollector(api_client, runtime_info))
        for gadget in config.get('collectors.gadgets', []):
            collectors.append(GadgetTraceCollector(gadget, api_client, runtime_info, waiter))

    return collectors
