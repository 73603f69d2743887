# nodescope/collector/trace_base.py - In-process kernel trace collectors
"""
Shared lifecycle of the collectors that attach kernel probes in-process.

collect() builds a fresh ContainerRegistry, starts the probe connected to it
and blocks in the injected waiter. Teardown runs in reverse acquisition order
(connection, probe, registry) on every exit path, and only then is the event
bucket read.
"""

import logging
import threading
from contextlib import ExitStack
from enum import Enum
from typing import Callable, Dict, Optional

from nodescope.collector.base import Collector, check_linux, check_not_excluded
from nodescope.collector.event_collector import EventTraceCollector
from nodescope.collector.registry import ContainerRecord, ContainerRegistry
from nodescope.errors import CollectError, ResourceInitError, UnsupportedEnvironmentError
from nodescope.probes.base import ContainerSelector, ProbeConnection, TraceProbe, connect_to_registry
from nodescope.probes.events import TraceEvent
from nodescope.utils.runtime_info import RuntimeInfo


Waiter = Callable[[], None]


class TraceState(Enum):
    UNSUPPORTED = "unsupported"
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


def make_duration_waiter(seconds: float, stop_event: Optional[threading.Event] = None) -> Waiter:
    """
    Build a waiter that returns after `seconds`, or earlier once
    `stop_event` is set.
    """
    event = stop_event or threading.Event()

    def waiter():
        event.wait(seconds)

    return waiter


class TraceCollector(Collector):
    """
    Base class for the DNS and TCP trace collectors.
    """

    name = "trace"

    def __init__(self, runtime_info: RuntimeInfo, waiter: Waiter,
                 registry_factory: Callable[[], ContainerRegistry],
                 probe_factory: Callable[[], TraceProbe],
                 event_collector: Optional[EventTraceCollector] = None):
        """
        Args:
            runtime_info: Node identity and exclusion list
            waiter: Blocks for the collection window
            registry_factory: Builds an uninitialized ContainerRegistry
            probe_factory: Builds the protocol probe
            event_collector: Event sink, a private one by default
        """
        self.runtime_info = runtime_info
        self.waiter = waiter
        self.registry_factory = registry_factory
        self.probe_factory = probe_factory
        self.event_collector = event_collector or EventTraceCollector()

        self.state: Optional[TraceState] = None
        self.selector = ContainerSelector()
        self.logger = logging.getLogger(__name__)

    def get_name(self) -> str:
        return self.name

    def check_supported(self):
        try:
            check_linux(self.runtime_info)
            check_not_excluded(self.runtime_info, self.name)
        except UnsupportedEnvironmentError:
            self.state = TraceState.UNSUPPORTED
            raise

    def collect(self):
        self.state = TraceState.INITIALIZING

        try:
            with ExitStack() as stack:
                registry = self.registry_factory()
                try:
                    registry.initialize()
                except ResourceInitError as e:
                    raise CollectError(self.name, f"failed to initialize container collection: {e}") from e
                stack.callback(registry.close)

                self.open_probe(stack, registry)

                self.state = TraceState.RUNNING
                self.logger.info(f"{self.name}: tracing {len(registry)} containers")
                self.waiter()
                self.state = TraceState.DRAINING
        except Exception:
            self.state = TraceState.FAILED
            raise

        self.state = TraceState.DONE

    def open_probe(self, stack: ExitStack, registry: ContainerRegistry) -> ProbeConnection:
        """
        Start the probe and register its teardown on `stack`.

        Raises:
            CollectError: The probe could not be started
        """
        try:
            return self.connect(stack, self.probe_factory(), registry)
        except ResourceInitError as e:
            raise CollectError(self.name, f"failed to start tracer: {e}") from e

    def connect(self, stack: ExitStack, probe: TraceProbe, registry: ContainerRegistry) -> ProbeConnection:
        stack.callback(probe.close)
        connection = connect_to_registry(probe, registry, self.selector, self.on_event)
        stack.callback(connection.close)
        return connection

    def on_event(self, container: Optional[ContainerRecord], event: TraceEvent):
        """
        Enrich an event with node and container identity and store it.
        """
        event.node = self.runtime_info.host_node_name
        if container is not None and not container.host_network:
            event.namespace = container.namespace
            event.pod = container.pod
            event.container = container.name

        self.event_collector.publish_event(self.name, container, event.to_json())

    def get_data(self) -> Dict[str, str]:
        if not self.event_collector.has_events(self.name):
            return {}

        return self.event_collector.get_tracer_data(self.name)
