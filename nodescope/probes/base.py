# nodescope/probes/base.py - Probe contract
"""
Pluggable boundary between the trace collectors and the kernel probe engine.

A probe delivers TraceEvents from its own thread once started. A
ProbeConnection ties a probe to a ContainerRegistry, resolving each event's
pid to a container and filtering with a ContainerSelector.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from nodescope.collector.registry import ContainerRecord, ContainerRegistry
from nodescope.probes.events import TraceEvent


EventCallback = Callable[[Optional[ContainerRecord], TraceEvent], None]


class TraceProbe(ABC):
    """
    Base class for kernel event sources.
    """

    name = "probe"

    @abstractmethod
    def start(self, deliver: Callable[[TraceEvent], None]):
        """
        Attach to the kernel and begin delivering events.

        Raises:
            ResourceInitError: The probe could not be attached
        """

    @abstractmethod
    def stop(self):
        """Stop delivering events. Safe to call when not started."""

    @abstractmethod
    def close(self):
        """Release all kernel resources. Idempotent."""


@dataclass(frozen=True)
class ContainerSelector:
    """
    Selects containers by namespace, pod and container name. Empty fields
    match everything, so ContainerSelector() traces the whole node.
    """
    namespace: str = ""
    pod: str = ""
    container: str = ""

    @property
    def inclusive(self) -> bool:
        return not (self.namespace or self.pod or self.container)

    def matches(self, record: Optional[ContainerRecord]) -> bool:
        if self.inclusive:
            return True
        if record is None:
            return False

        return ((not self.namespace or record.namespace == self.namespace)
                and (not self.pod or record.pod == self.pod)
                and (not self.container or record.name == self.container))


class ProbeConnection:
    """
    Live link between a started probe and the registry. Closing it stops
    delivery; the probe itself is released by TraceProbe.close().
    """

    def __init__(self, probe: TraceProbe, registry: ContainerRegistry,
                 selector: ContainerSelector, callback: EventCallback):
        self.probe = probe
        self.registry = registry
        self.selector = selector
        self.callback = callback

        self._open = False
        self._lock = threading.Lock()
        self.delivered = 0
        self.errors = 0

        self.logger = logging.getLogger(__name__)

    def _deliver(self, event: TraceEvent):
        with self._lock:
            if not self._open:
                return

        container = self.registry.lookup(event.pid) if event.pid else None
        if not self.selector.matches(container):
            return

        try:
            self.callback(container, event)
            self.delivered += 1
        except Exception as e:
            # One bad event must not kill the probe thread
            self.errors += 1
            self.logger.error(f"Error processing {self.probe.name} event: {e}")

    def open(self):
        with self._lock:
            self._open = True
        self.probe.start(self._deliver)

    def close(self):
        with self._lock:
            if not self._open:
                return
            self._open = False

        self.probe.stop()
        self.logger.debug(f"Disconnected {self.probe.name}: {self.delivered} events, {self.errors} errors")


def connect_to_registry(probe: TraceProbe, registry: ContainerRegistry,
                        selector: ContainerSelector, callback: EventCallback) -> ProbeConnection:
    """
    Start `probe` and route its events through `registry` to `callback`.

    Raises:
        ResourceInitError: The probe failed to start; nothing is left open
    """
    connection = ProbeConnection(probe, registry, selector, callback)
    try:
        connection.open()
    except Exception:
        connection.close()
        raise

    return connection
