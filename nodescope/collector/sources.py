# nodescope/collector/sources.py - Container notification sources
"""
Sources of container add/remove notifications for the ContainerRegistry.

CriContainerSource polls the node's CRI runtime through crictl and turns the
difference between two snapshots into notifications.
"""

import json
import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from nodescope.collector.registry import ContainerEventType, ContainerRecord, read_mount_namespace


ContainerCallback = Callable[[ContainerEventType, ContainerRecord], None]

POD_NAME_LABEL = 'io.kubernetes.pod.name'
POD_NAMESPACE_LABEL = 'io.kubernetes.pod.namespace'
CONTAINER_NAME_LABEL = 'io.kubernetes.container.name'


class ContainerSource(ABC):
    """
    Publishes container add/remove notifications to subscribers.
    """

    def __init__(self):
        self._subscribers: List[ContainerCallback] = []
        self._subscribers_lock = threading.Lock()

    def subscribe(self, callback: ContainerCallback):
        with self._subscribers_lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ContainerCallback):
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        with self._subscribers_lock:
            return len(self._subscribers)

    def notify(self, event_type: ContainerEventType, record: ContainerRecord):
        with self._subscribers_lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            callback(event_type, record)

    @abstractmethod
    def list_containers(self) -> List[ContainerRecord]:
        """Current containers on the node"""

    @abstractmethod
    def start(self):
        """Begin delivering live notifications"""

    @abstractmethod
    def stop(self):
        """Stop delivering notifications. Safe to call when not started."""


class CriContainerSource(ContainerSource):
    """
    Container source backed by the crictl CLI.
    """

    def __init__(self, crictl_path: str = 'crictl', poll_interval: float = 2.0, timeout: float = 15.0):
        """
        Args:
            crictl_path: crictl binary
            poll_interval: Seconds between runtime snapshots
            timeout: Per-command timeout in seconds
        """
        super().__init__()
        self.crictl_path = crictl_path
        self.poll_interval = poll_interval
        self.timeout = timeout

        self._known: Dict[str, ContainerRecord] = {}
        self._sandbox_host_network: Dict[str, bool] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.logger = logging.getLogger(__name__)

    def _crictl(self, *args) -> Dict:
        result = subprocess.run(
            [self.crictl_path, *args, '-o', 'json'],
            capture_output=True,
            text=True,
            check=True,
            timeout=self.timeout,
        )
        return json.loads(result.stdout or '{}')

    def _is_host_network(self, sandbox_id: str) -> bool:
        if sandbox_id not in self._sandbox_host_network:
            status = self._crictl('inspectp', sandbox_id).get('status', {})
            options = status.get('linux', {}).get('namespaces', {}).get('options', {})
            self._sandbox_host_network[sandbox_id] = options.get('network') == 'NODE'

        return self._sandbox_host_network[sandbox_id]

    def _snapshot(self) -> Dict[str, ContainerRecord]:
        containers = {}

        for entry in self._crictl('ps', '--state', 'Running').get('containers', []):
            container_id = entry['id']
            if container_id in self._known:
                containers[container_id] = self._known[container_id]
                continue

            pid = self._crictl('inspect', container_id).get('info', {}).get('pid')
            if not pid:
                # Exited between ps and inspect
                continue

            labels = entry.get('labels', {})
            containers[container_id] = ContainerRecord(
                container_id=container_id,
                namespace=labels.get(POD_NAMESPACE_LABEL, ''),
                pod=labels.get(POD_NAME_LABEL, ''),
                name=labels.get(CONTAINER_NAME_LABEL, entry.get('metadata', {}).get('name', '')),
                pid=int(pid),
                host_network=self._is_host_network(entry.get('podSandboxId', '')),
                mntns=read_mount_namespace(int(pid)) or 0,
            )

        return containers

    def list_containers(self) -> List[ContainerRecord]:
        self._known = self._snapshot()
        return list(self._known.values())

    def poll_once(self):
        """
        Take one snapshot and notify subscribers of the differences.
        """
        current = self._snapshot()

        for container_id, record in current.items():
            if container_id not in self._known:
                self.notify(ContainerEventType.ADD, record)

        for container_id, record in self._known.items():
            if container_id not in current:
                self.notify(ContainerEventType.REMOVE, record)

        self._known = current

    def _run(self):
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll_once()
            except (subprocess.SubprocessError, OSError, ValueError) as e:
                self.logger.warning(f"Container runtime poll failed: {e}")

    def start(self):
        if self._thread is not None:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='cri-container-source', daemon=True)
        self._thread.start()

    def stop(self):
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join()
        self._thread = None
