# nodescope/collector/event_collector.py - Concurrent trace event sink
"""
Accumulates events from concurrently running probes into one bucket per
trace name.

Writers are probe callbacks running on probe threads. The only reader is the
owning collector, after its probe has been torn down.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from nodescope.collector.registry import ContainerRecord


def format_timestamp(timestamp_ns: int) -> str:
    """
    Format a nanosecond epoch timestamp as RFC 3339 with nanoseconds.
    """
    seconds, nanos = divmod(timestamp_ns, 1_000_000_000)
    base = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%S')
    return f"{base}.{nanos:09d}Z"


def event_key(container: Optional[ContainerRecord], timestamp_ns: int) -> str:
    """
    Derive the bucket key for an event.

    Two events for the same container in the same nanosecond share a key.
    """
    timestamp = format_timestamp(timestamp_ns)
    if container is None:
        return timestamp

    return (f"/namespaces/{container.namespace}/pods/{container.pod}"
            f"/containers/{container.name} {timestamp}")


class EventTraceCollector:
    """
    Thread-safe mapping of trace name -> {event key -> content}.
    """

    def __init__(self, clock: Callable[[], int] = time.time_ns):
        """
        Args:
            clock: Source of nanosecond timestamps for event keys
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[str, Dict[str, str]] = {}

    def publish_event(self, trace_name: str, container: Optional[ContainerRecord], content: str):
        """
        Store one event under its derived key.

        A later event with the same key replaces the earlier one.

        Args:
            trace_name: Bucket to write into
            container: Container the event belongs to, or None
            content: Stringified event
        """
        key = event_key(container, self._clock())

        with self._lock:
            bucket = self._buckets.get(trace_name)
            if bucket is None:
                self._buckets[trace_name] = {key: content}
            else:
                bucket[key] = content

    def has_events(self, trace_name: str) -> bool:
        with self._lock:
            return trace_name in self._buckets

    def trace_names(self) -> List[str]:
        with self._lock:
            return list(self._buckets)

    def get_tracer_data(self, trace_name: str) -> Dict[str, str]:
        """
        Get the bucket for a trace.

        Raises:
            KeyError: Nothing was ever published for this trace
        """
        with self._lock:
            if trace_name not in self._buckets:
                raise KeyError(f"no events published for trace {trace_name!r}")
            return dict(self._buckets[trace_name])
