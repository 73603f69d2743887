# nodescope/collector/registry.py - Container registry adapter
"""
Live, queryable view of the containers running on the node, keyed by pid.

The registry subscribes to a ContainerSource, seeds itself from the source's
current state and then applies add/remove notifications until closed. The
notification callback is the only writer.
"""

import logging
import os
import resource
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from nodescope.errors import ResourceInitError


class ContainerEventType(Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class ContainerRecord:
    """
    One container alive on the node.
    """
    container_id: str
    namespace: str
    pod: str
    name: str
    pid: int
    host_network: bool = False
    mntns: int = 0


def remove_memlock_limit():
    """
    Lift RLIMIT_MEMLOCK so BPF maps can be allocated on older kernels.

    Raises:
        ResourceInitError: The limit could not be raised
    """
    limit = (resource.RLIM_INFINITY, resource.RLIM_INFINITY)
    try:
        resource.setrlimit(resource.RLIMIT_MEMLOCK, limit)
    except (OSError, ValueError) as e:
        raise ResourceInitError(f"failed to remove memlock limit: {e}") from e


def read_mount_namespace(pid: int) -> Optional[int]:
    """
    Inode of the mount namespace of `pid`, or None once the process is gone.
    """
    try:
        return os.stat(f"/proc/{pid}/ns/mnt").st_ino
    except OSError:
        return None


class ContainerRegistry:
    """
    Owned, internally synchronized container index.

    Use as a context manager, or call initialize() and close() explicitly.
    close() must run on every exit path once initialize() succeeded.
    """

    def __init__(self, source, raise_memlock: bool = True,
                 mntns_reader: Callable[[int], Optional[int]] = read_mount_namespace):
        """
        Args:
            source: ContainerSource delivering add/remove notifications
            raise_memlock: Lift RLIMIT_MEMLOCK during initialization
            mntns_reader: Resolves a pid to its mount namespace inode
        """
        self.source = source
        self.raise_memlock = raise_memlock
        self.mntns_reader = mntns_reader

        self._lock = threading.Lock()
        self._containers: Dict[int, ContainerRecord] = {}
        self._by_mntns: Dict[int, ContainerRecord] = {}
        self._subscribed = False

        self.logger = logging.getLogger(__name__)

    def initialize(self) -> 'ContainerRegistry':
        """
        Subscribe to the source, seed from its current state and start
        receiving live updates.

        Raises:
            ResourceInitError: Setup failed; nothing is left subscribed
        """
        if self.raise_memlock:
            remove_memlock_limit()

        self.source.subscribe(self._on_container_event)
        self._subscribed = True

        try:
            for record in self.source.list_containers():
                self._on_container_event(ContainerEventType.ADD, record)
            self.source.start()
        except Exception as e:
            self.close()
            raise ResourceInitError(f"failed to initialize container registry: {e}") from e

        self.logger.info(f"Container registry initialized with {len(self)} containers")
        return self

    def _on_container_event(self, event_type: ContainerEventType, record: ContainerRecord):
        with self._lock:
            if event_type == ContainerEventType.ADD:
                self._containers[record.pid] = record
                if record.mntns:
                    self._by_mntns[record.mntns] = record
            else:
                if self._containers.get(record.pid) == record:
                    del self._containers[record.pid]
                if record.mntns and self._by_mntns.get(record.mntns) == record:
                    del self._by_mntns[record.mntns]

        if event_type == ContainerEventType.ADD:
            self.logger.debug(f"Container added: {record.name!r} pid {record.pid}")
        else:
            self.logger.debug(f"Container removed: {record.name!r} pid {record.pid}")

    def lookup(self, pid: int) -> Optional[ContainerRecord]:
        """
        Container owning `pid`: its init process, or any process sharing the
        container's mount namespace.
        """
        with self._lock:
            record = self._containers.get(pid)
            if record is not None or not self._by_mntns:
                return record

        mntns = self.mntns_reader(pid)
        if mntns is None:
            return None

        with self._lock:
            return self._by_mntns.get(mntns)

    def snapshot(self) -> List[ContainerRecord]:
        with self._lock:
            return list(self._containers.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._containers)

    def close(self):
        """
        Stop receiving updates and release the subscription. Idempotent.
        """
        if not self._subscribed:
            return

        self._subscribed = False
        self.source.unsubscribe(self._on_container_event)
        self.source.stop()
        self.logger.debug("Container registry closed")

    def __enter__(self) -> 'ContainerRegistry':
        return self.initialize()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
