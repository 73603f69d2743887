# nodescope/collector/trace_dns.py - DNS trace collector
"""
Captures DNS queries from every container on the node.
"""

from typing import Callable, Optional

from nodescope.collector.event_collector import EventTraceCollector
from nodescope.collector.registry import ContainerRegistry
from nodescope.collector.trace_base import TraceCollector, Waiter
from nodescope.probes.base import TraceProbe
from nodescope.probes.bcc_probes import BccDnsProbe
from nodescope.utils.runtime_info import RuntimeInfo


class DnsTraceCollector(TraceCollector):
    """
    DNS trace over the BCC udp_sendmsg probe.
    """

    name = "ig-dnstrace"

    def __init__(self, runtime_info: RuntimeInfo, waiter: Waiter,
                 registry_factory: Callable[[], ContainerRegistry],
                 probe_factory: Callable[[], TraceProbe] = BccDnsProbe,
                 event_collector: Optional[EventTraceCollector] = None):
        super().__init__(runtime_info, waiter, registry_factory, probe_factory, event_collector)
