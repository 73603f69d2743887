# nodescope/probes/procnet.py - /proc/net TCP polling probe
"""
TCP connection tracing by diffing /proc/net/tcp snapshots.

Works on any Linux host without BPF, at the cost of missing connections
shorter than the poll interval and of having no owning pid.
"""

import logging
import socket
import struct
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from nodescope.errors import ResourceInitError
from nodescope.probes.base import TraceProbe
from nodescope.probes.events import TcpEvent, TraceEvent


TCP_ESTABLISHED = '01'

ConnectionKey = Tuple[str, int, str, int]


def parse_address(hex_addr: str) -> Tuple[str, int]:
    """
    Parse a /proc/net/tcp{,6} address such as "0100007F:0050".

    Returns:
        (ip, port) tuple
    """
    ip_hex, port_hex = hex_addr.split(':')
    port = int(port_hex, 16)

    if len(ip_hex) == 8:
        return socket.inet_ntoa(struct.pack('<I', int(ip_hex, 16))), port

    # IPv6 is four host-order 32-bit words
    raw = bytes.fromhex(ip_hex)
    words = b''.join(raw[i:i + 4][::-1] for i in range(0, 16, 4))
    return socket.inet_ntop(socket.AF_INET6, words), port


def read_established(path: str) -> Dict[ConnectionKey, int]:
    """
    Read established connections from one /proc/net table.

    Returns:
        Mapping of (saddr, sport, daddr, dport) to socket inode
    """
    connections = {}

    with open(path, 'r') as f:
        next(f, None)
        for line in f:
            fields = line.split()
            if len(fields) < 10 or fields[3] != TCP_ESTABLISHED:
                continue

            saddr, sport = parse_address(fields[1])
            daddr, dport = parse_address(fields[2])
            connections[(saddr, sport, daddr, dport)] = int(fields[9])

    return connections


class ProcNetTcpProbe(TraceProbe):
    """
    Polls /proc/net/tcp and /proc/net/tcp6 and reports connections that
    appeared ("established") or disappeared ("closed") between polls.
    """

    name = "procnet-tcp"

    def __init__(self, poll_interval: float = 0.5,
                 tables: Tuple[str, ...] = ('/proc/net/tcp', '/proc/net/tcp6')):
        self.poll_interval = poll_interval
        self.tables = tables

        self._known: Dict[ConnectionKey, int] = {}
        self._deliver: Optional[Callable[[TraceEvent], None]] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.logger = logging.getLogger(__name__)

    def _snapshot(self) -> Dict[ConnectionKey, int]:
        connections = {}
        for table in self.tables:
            try:
                connections.update(read_established(table))
            except FileNotFoundError:
                # tcp6 is absent when IPv6 is disabled
                continue
        return connections

    def poll_once(self):
        current = self._snapshot()
        now = time.time_ns()

        for key in current.keys() - self._known.keys():
            self._deliver(self._event(now, 'established', key))
        for key in self._known.keys() - current.keys():
            self._deliver(self._event(now, 'closed', key))

        self._known = current

    @staticmethod
    def _event(timestamp_ns: int, operation: str, key: ConnectionKey) -> TcpEvent:
        saddr, sport, daddr, dport = key
        return TcpEvent(
            timestamp_ns=timestamp_ns,
            pid=0,
            operation=operation,
            saddr=saddr,
            sport=sport,
            daddr=daddr,
            dport=dport,
        )

    def _run(self):
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll_once()
            except OSError as e:
                self.logger.warning(f"Failed to read TCP tables: {e}")

    def start(self, deliver: Callable[[TraceEvent], None]):
        try:
            self._known = self._snapshot()
        except OSError as e:
            raise ResourceInitError(f"failed to read TCP tables: {e}") from e

        self._deliver = deliver
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=f"{self.name}-poll", daemon=True)
        self._thread.start()
        self.logger.info(f"{self.name}: polling every {self.poll_interval}s, "
                         f"{len(self._known)} connections at start")

    def stop(self):
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join()
        self._thread = None

    def close(self):
        self.stop()
        self._known = {}
