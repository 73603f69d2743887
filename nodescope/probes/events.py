# nodescope/probes/events.py - Trace event types
"""
Structured representation of the events delivered by probes.
"""

import json
from dataclasses import asdict, dataclass


@dataclass
class TraceEvent:
    """
    Fields common to every probe event. The node and Kubernetes fields are
    filled in by the collector before the event is stored.
    """
    timestamp_ns: int
    pid: int
    tid: int = 0
    comm: str = ""
    node: str = ""
    namespace: str = ""
    pod: str = ""
    container: str = ""

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)


@dataclass
class DnsEvent(TraceEvent):
    """
    Outgoing DNS query.
    """
    daddr: str = ""
    dport: int = 53
    length: int = 0


@dataclass
class TcpEvent(TraceEvent):
    """
    TCP connection lifecycle event.
    """
    operation: str = ""
    saddr: str = ""
    daddr: str = ""
    sport: int = 0
    dport: int = 0
