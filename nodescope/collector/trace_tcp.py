# nodescope/collector/trace_tcp.py - TCP trace collector
"""
Captures TCP connection events from every container on the node.

The BCC tracer is preferred; when it cannot be attached the collector falls
back to polling /proc/net, which needs no kernel support but reports no pid.
"""

from contextlib import ExitStack
from typing import Callable, Optional

from nodescope.collector.event_collector import EventTraceCollector
from nodescope.collector.registry import ContainerRegistry
from nodescope.collector.trace_base import TraceCollector, Waiter
from nodescope.errors import CollectError, ResourceInitError
from nodescope.probes.base import ProbeConnection, TraceProbe
from nodescope.probes.bcc_probes import BccTcpProbe
from nodescope.probes.procnet import ProcNetTcpProbe
from nodescope.utils.runtime_info import RuntimeInfo


class TcpTraceCollector(TraceCollector):
    """
    TCP trace with fallback from the BCC probe to the /proc/net probe.
    """

    name = "ig-tcptrace"

    def __init__(self, runtime_info: RuntimeInfo, waiter: Waiter,
                 registry_factory: Callable[[], ContainerRegistry],
                 probe_factory: Callable[[], TraceProbe] = BccTcpProbe,
                 fallback_factory: Callable[[], TraceProbe] = ProcNetTcpProbe,
                 event_collector: Optional[EventTraceCollector] = None):
        super().__init__(runtime_info, waiter, registry_factory, probe_factory, event_collector)
        self.fallback_factory = fallback_factory
        self.active_probe: Optional[TraceProbe] = None

    def open_probe(self, stack: ExitStack, registry: ContainerRegistry) -> ProbeConnection:
        probe = self.probe_factory()
        try:
            with ExitStack() as attempt:
                connection = self.connect(attempt, probe, registry)
                stack.push(attempt.pop_all())
        except ResourceInitError as e:
            self.logger.warning(f"Failed to create core tracer, falling back to standard one: {e}")
            probe = self.fallback_factory()
            try:
                connection = self.connect(stack, probe, registry)
            except ResourceInitError as fallback_error:
                raise CollectError(self.name, f"failed to create a tracer: {fallback_error}") from fallback_error

        self.active_probe = probe
        return connection
