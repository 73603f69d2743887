# nodescope/probes/bcc_probes.py - BCC kprobe tracers
"""
Kernel probes built on BCC (BPF Compiler Collection).

Each probe compiles its C program from nodescope/ebpf, attaches kprobes and
polls the perf buffer on its own thread, converting raw events into
TraceEvents for the connected collector.
"""

import logging
import socket
import struct
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from nodescope.errors import ResourceInitError
from nodescope.probes.base import TraceProbe
from nodescope.probes.events import DnsEvent, TcpEvent, TraceEvent


EBPF_DIR = Path(__file__).parent.parent / 'ebpf'


def ipv4_to_str(addr: int) -> str:
    """Convert a network-order IPv4 address read as a host u32"""
    return socket.inet_ntoa(struct.pack('I', addr))


def monotonic_to_epoch_offset() -> int:
    """
    Offset that turns bpf_ktime_get_ns() (CLOCK_MONOTONIC) readings into
    nanoseconds since the epoch.
    """
    return time.time_ns() - time.monotonic_ns()


class BccProbe(TraceProbe):
    """
    Base class for BCC tracers.

    Subclasses name their C program and list the (kind, kernel function,
    BPF function) attachments to make. Each kernel function may have
    several candidate names across kernel versions.
    """

    program = ""
    attachments: List[Dict] = []

    def __init__(self, buffer_pages: int = 64, poll_timeout_ms: int = 100):
        """
        Args:
            buffer_pages: Perf buffer size in pages
            poll_timeout_ms: perf_buffer_poll timeout
        """
        self.buffer_pages = buffer_pages
        self.poll_timeout_ms = poll_timeout_ms

        self.bpf = None
        self.attached_probes = []
        self.running = False
        self.clock_offset_ns = monotonic_to_epoch_offset()
        self._deliver: Optional[Callable[[TraceEvent], None]] = None
        self._thread: Optional[threading.Thread] = None

        self.logger = logging.getLogger(__name__)

    def load_ebpf_program(self) -> str:
        with open(EBPF_DIR / self.program, 'r') as f:
            return f.read()

    def initialize(self):
        """
        Compile the eBPF program and attach all kprobes.

        Raises:
            ResourceInitError: Compilation or attachment failed
        """
        try:
            from bcc import BPF
            self.bpf = BPF(text=self.load_ebpf_program())
        except Exception as e:
            raise ResourceInitError(f"failed to load {self.program}: {e}") from e

        for attachment in self.attachments:
            self._attach(attachment)

        self.logger.info(f"{self.name}: attached {len(self.attached_probes)} probes")

    def _attach(self, attachment: Dict):
        kind = attachment['kind']
        attach = getattr(self.bpf, f"attach_{kind}")

        for kernel_func in attachment['events']:
            try:
                attach(event=kernel_func, fn_name=attachment['fn_name'])
            except Exception:
                continue

            self.attached_probes.append((kind, kernel_func))
            return

        raise ResourceInitError(
            f"{self.name}: failed to attach {kind} {attachment['fn_name']}. "
            f"Tried: {', '.join(attachment['events'])}"
        )

    def start(self, deliver: Callable[[TraceEvent], None]):
        if self.bpf is None:
            try:
                self.initialize()
            except ResourceInitError:
                self.close()
                raise

        self._deliver = deliver
        self.clock_offset_ns = monotonic_to_epoch_offset()
        try:
            self.bpf["events"].open_perf_buffer(self._handle_event, page_cnt=self.buffer_pages)

            self.running = True
            thread = threading.Thread(target=self._poll, name=f"{self.name}-poll", daemon=True)
            thread.start()
        except Exception as e:
            self.close()
            raise ResourceInitError(f"{self.name}: failed to open perf buffer: {e}") from e

        self._thread = thread

    def _poll(self):
        while self.running:
            self.bpf.perf_buffer_poll(timeout=self.poll_timeout_ms)

    def _handle_event(self, cpu, data, size):
        raw = self.bpf["events"].event(data)
        self._deliver(self.convert(raw))

    def convert(self, raw) -> TraceEvent:
        """Build a TraceEvent from the raw perf buffer struct"""
        raise NotImplementedError

    def stop(self):
        self.running = False
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def close(self):
        self.stop()

        if self.bpf is None:
            return

        for kind, kernel_func in self.attached_probes:
            try:
                getattr(self.bpf, f"detach_{kind}")(event=kernel_func)
            except Exception as e:
                self.logger.warning(f"Failed to detach {kind} {kernel_func}: {e}")

        self.attached_probes = []
        self.bpf.cleanup()
        self.bpf = None
        self.logger.debug(f"{self.name} closed")


class BccDnsProbe(BccProbe):
    """
    Outgoing DNS queries, via a kprobe on udp_sendmsg.
    """

    name = "bcc-dns"
    program = "dns_tracer.c"
    attachments = [
        {'kind': 'kprobe', 'events': ['udp_sendmsg'], 'fn_name': 'trace_udp_sendmsg'},
    ]

    def convert(self, raw) -> DnsEvent:
        return DnsEvent(
            timestamp_ns=raw.ts_ns + self.clock_offset_ns,
            pid=raw.pid,
            tid=raw.tid,
            comm=raw.comm.decode('utf-8', 'replace'),
            daddr=ipv4_to_str(raw.daddr),
            dport=raw.dport,
            length=raw.len,
        )


class BccTcpProbe(BccProbe):
    """
    IPv4 TCP connect, accept and close.
    """

    name = "bcc-tcp"
    program = "tcp_tracer.c"
    attachments = [
        {'kind': 'kprobe', 'events': ['tcp_v4_connect'], 'fn_name': 'trace_connect_entry'},
        {'kind': 'kretprobe', 'events': ['tcp_v4_connect'], 'fn_name': 'trace_connect_return'},
        {'kind': 'kretprobe', 'events': ['inet_csk_accept'], 'fn_name': 'trace_accept_return'},
        {'kind': 'kprobe', 'events': ['tcp_close'], 'fn_name': 'trace_close'},
    ]

    OPERATIONS = {1: 'connect', 2: 'accept', 3: 'close'}

    def convert(self, raw) -> TcpEvent:
        return TcpEvent(
            timestamp_ns=raw.ts_ns + self.clock_offset_ns,
            pid=raw.pid,
            tid=raw.tid,
            comm=raw.comm.decode('utf-8', 'replace'),
            operation=self.OPERATIONS.get(raw.op, 'unknown'),
            saddr=ipv4_to_str(raw.saddr),
            daddr=ipv4_to_str(raw.daddr),
            sport=raw.sport,
            dport=raw.dport,
        )
