# tests/test_trace_collectors.py - Tests for the DNS and TCP trace collectors
"""
Unit tests for TraceCollector lifecycle, DnsTraceCollector and
TcpTraceCollector.
"""

import itertools
import json
import threading
from unittest.mock import MagicMock

import pytest

from nodescope.collector.event_collector import EventTraceCollector
from nodescope.collector.registry import ContainerRecord, ContainerRegistry
from nodescope.collector.trace_base import TraceState, make_duration_waiter
from nodescope.collector.trace_dns import DnsTraceCollector
from nodescope.collector.trace_tcp import TcpTraceCollector
from nodescope.errors import CollectError, UnsupportedEnvironmentError
from nodescope.probes.bcc_probes import BccTcpProbe
from nodescope.probes.events import TcpEvent
from nodescope.utils.runtime_info import RuntimeInfo
from tests.fakes import HOSTNET, WEB, FakeContainerSource, FakeProbe, dns_event


def no_wait():
    pass


def counting_events():
    return EventTraceCollector(clock=itertools.count(1_000_000_000).__next__)


def make_dns_collector(runtime_info, registry_factory, events=(), **kwargs):
    return DnsTraceCollector(
        runtime_info, no_wait, registry_factory,
        probe_factory=lambda: FakeProbe(events=events),
        event_collector=counting_events(),
        **kwargs,
    )


class TestDnsTraceCollector:
    """Test cases for DnsTraceCollector"""

    def test_name(self, runtime_info, registry_factory):
        assert make_dns_collector(runtime_info, registry_factory).get_name() == "ig-dnstrace"

    def test_events_enriched_with_node_and_container(self, runtime_info, registry_factory):
        collector = make_dns_collector(runtime_info, registry_factory,
                                       events=[dns_event(101), dns_event(202)])

        collector.collect()
        data = collector.get_data()

        assert collector.state == TraceState.DONE
        assert len(data) == 2
        records = {json.loads(v)["pod"]: json.loads(v) for v in data.values()}
        assert records["web-0"]["namespace"] == "default"
        assert records["web-0"]["container"] == "nginx"
        assert records["db-0"]["container"] == "postgres"
        assert all(r["node"] == "node-1" for r in records.values())
        assert any(k.startswith("/namespaces/default/pods/web-0/containers/nginx ") for k in data)

    def test_host_network_container_has_no_names(self, runtime_info, registry_factory):
        collector = make_dns_collector(runtime_info, registry_factory, events=[dns_event(HOSTNET.pid)])

        collector.collect()
        record = json.loads(next(iter(collector.get_data().values())))

        assert record["node"] == "node-1"
        assert record["pod"] == ""
        assert record["container"] == ""

    def test_child_process_event_enriched(self, runtime_info):
        """Events from a worker process inherit the container of its mount namespace"""
        web = ContainerRecord(container_id="c1", namespace="default", pod="web-0", name="nginx",
                              pid=101, mntns=4026532001)
        namespaces = {4242: 4026532001}
        collector = DnsTraceCollector(
            runtime_info, no_wait,
            lambda: ContainerRegistry(FakeContainerSource([web]), raise_memlock=False,
                                      mntns_reader=namespaces.get),
            probe_factory=lambda: FakeProbe(events=[dns_event(4242)]),
        )

        collector.collect()
        key, value = next(iter(collector.get_data().items()))

        assert key.startswith("/namespaces/default/pods/web-0/containers/nginx ")
        assert json.loads(value)["pid"] == 4242
        assert json.loads(value)["pod"] == "web-0"

    def test_unknown_pid_keeps_node_only(self, runtime_info, registry_factory):
        collector = make_dns_collector(runtime_info, registry_factory, events=[dns_event(999)])

        collector.collect()
        key, value = next(iter(collector.get_data().items()))

        assert not key.startswith("/namespaces/")
        assert json.loads(value)["namespace"] == ""

    def test_no_events_returns_empty_data(self, runtime_info, registry_factory):
        collector = make_dns_collector(runtime_info, registry_factory)

        collector.collect()

        assert collector.get_data() == {}

    def test_teardown_in_reverse_order(self, runtime_info):
        log = []
        source = FakeContainerSource([WEB], log=log)
        collector = DnsTraceCollector(
            runtime_info, no_wait,
            lambda: ContainerRegistry(source, raise_memlock=False),
            probe_factory=lambda: FakeProbe(log=log),
        )

        collector.collect()

        assert log == ["connection.close", "probe.close", "registry.close"]
        assert source.subscriber_count == 0

    def test_registry_failure_is_collect_error(self, runtime_info):
        source = FakeContainerSource(fail_start=True)
        collector = DnsTraceCollector(
            runtime_info, no_wait,
            lambda: ContainerRegistry(source, raise_memlock=False),
            probe_factory=FakeProbe,
        )

        with pytest.raises(CollectError, match="failed to initialize container collection"):
            collector.collect()

        assert collector.state == TraceState.FAILED
        assert source.subscriber_count == 0

    def test_probe_failure_releases_registry(self, runtime_info):
        log = []
        source = FakeContainerSource([WEB], log=log)
        collector = DnsTraceCollector(
            runtime_info, no_wait,
            lambda: ContainerRegistry(source, raise_memlock=False),
            probe_factory=lambda: FakeProbe(fail_start=True, log=log),
        )

        with pytest.raises(CollectError, match="failed to start tracer"):
            collector.collect()

        assert collector.state == TraceState.FAILED
        assert log[-1] == "registry.close"
        assert source.subscriber_count == 0
        assert FakeProbe.active == 0

    def test_waiter_error_still_tears_down(self, runtime_info):
        log = []
        source = FakeContainerSource([WEB], log=log)

        def interrupted():
            raise RuntimeError("interrupted")

        collector = DnsTraceCollector(
            runtime_info, interrupted,
            lambda: ContainerRegistry(source, raise_memlock=False),
            probe_factory=lambda: FakeProbe(log=log),
        )

        with pytest.raises(RuntimeError):
            collector.collect()

        assert collector.state == TraceState.FAILED
        assert log == ["connection.close", "probe.close", "registry.close"]
        assert FakeProbe.active == 0

    def test_sequential_runs_both_succeed(self, runtime_info, registry_factory):
        for _ in range(2):
            collector = make_dns_collector(runtime_info, registry_factory, events=[dns_event(101)])
            collector.collect()

            assert collector.state == TraceState.DONE
            assert len(collector.get_data()) == 1
            assert FakeProbe.active == 0

    def test_excluded_by_collector_list(self, storage):
        runtime_info = RuntimeInfo(host_node_name="node-1", collector_list=["ig-dnstrace"], storage=storage)
        collector = make_dns_collector(runtime_info, lambda: None)

        with pytest.raises(UnsupportedEnvironmentError, match="ig-dnstrace"):
            collector.check_supported()

        assert collector.state == TraceState.UNSUPPORTED

    def test_unsupported_os(self, storage):
        runtime_info = RuntimeInfo(host_node_name="node-1", os_identifier="windows", storage=storage)
        collector = make_dns_collector(runtime_info, lambda: None)

        with pytest.raises(UnsupportedEnvironmentError, match="windows"):
            collector.check_supported()

    def test_supported_on_linux(self, runtime_info, registry_factory):
        make_dns_collector(runtime_info, registry_factory).check_supported()


class TestTcpTraceCollector:
    """Test cases for TcpTraceCollector"""

    def tcp_event(self, pid):
        return TcpEvent(timestamp_ns=1, pid=pid, operation="connect",
                        saddr="10.0.0.5", daddr="10.0.0.6", sport=40000, dport=5432)

    def test_primary_probe_used(self, runtime_info, registry_factory):
        primary = FakeProbe(events=[self.tcp_event(101)])
        collector = TcpTraceCollector(
            runtime_info, no_wait, registry_factory,
            probe_factory=lambda: primary,
            fallback_factory=FakeProbe,
        )

        collector.collect()

        assert collector.get_name() == "ig-tcptrace"
        assert collector.active_probe is primary
        assert len(collector.get_data()) == 1

    def test_falls_back_when_primary_cannot_attach(self, runtime_info, registry_factory):
        primary = FakeProbe(fail_start=True)
        fallback = FakeProbe(events=[self.tcp_event(202)])
        collector = TcpTraceCollector(
            runtime_info, no_wait, registry_factory,
            probe_factory=lambda: primary,
            fallback_factory=lambda: fallback,
        )

        collector.collect()

        assert collector.active_probe is fallback
        assert primary.closed
        assert fallback.closed
        record = json.loads(next(iter(collector.get_data().values())))
        assert record["pod"] == "db-0"
        assert FakeProbe.active == 0

    def test_falls_back_when_perf_buffer_cannot_open(self, runtime_info, registry_factory):
        """A kernel tracer that compiles but cannot open its perf buffer still falls back"""
        bpf = MagicMock()
        bpf.__getitem__.return_value.open_perf_buffer.side_effect = Exception("perf buffer mmap failed")
        primary = BccTcpProbe()
        primary.bpf = bpf
        fallback = FakeProbe(events=[self.tcp_event(101)])
        collector = TcpTraceCollector(
            runtime_info, no_wait, registry_factory,
            probe_factory=lambda: primary,
            fallback_factory=lambda: fallback,
        )

        collector.collect()

        assert collector.state == TraceState.DONE
        assert collector.active_probe is fallback
        assert primary.bpf is None
        assert len(collector.get_data()) == 1

    def test_both_probes_failing(self, runtime_info, registry_factory, source):
        collector = TcpTraceCollector(
            runtime_info, no_wait, registry_factory,
            probe_factory=lambda: FakeProbe(fail_start=True),
            fallback_factory=lambda: FakeProbe(fail_start=True),
        )

        with pytest.raises(CollectError, match="failed to create a tracer"):
            collector.collect()

        assert collector.state == TraceState.FAILED
        assert source.subscriber_count == 0

    def test_events_without_pid_have_no_container(self, runtime_info, registry_factory):
        collector = TcpTraceCollector(
            runtime_info, no_wait, registry_factory,
            probe_factory=lambda: FakeProbe(events=[self.tcp_event(0)]),
            fallback_factory=FakeProbe,
        )

        collector.collect()
        key, value = next(iter(collector.get_data().items()))

        assert not key.startswith("/namespaces/")
        assert json.loads(value)["daddr"] == "10.0.0.6"


class TestDurationWaiter:
    """Test cases for make_duration_waiter"""

    def test_returns_early_when_stopped(self):
        stop = threading.Event()
        stop.set()

        make_duration_waiter(3600, stop)()

    def test_waits_for_duration(self):
        make_duration_waiter(0.01)()
