# nodescope/collector/__init__.py - Collection module
"""
Collector module for gathering diagnostic data from the local node.

This module provides:
- base.py: Collector contract shared by every gatherer
- orchestrator.py: Drives one collection pass and routes output to export
- registry.py: Live view of the containers running on the node
- sources.py: Container add/remove notification sources
- event_collector.py: Concurrent sink for kernel trace events
- trace_base.py, trace_dns.py, trace_tcp.py: In-process kernel trace collectors
- gadget.py: Remote trace collection through Inspektor Gadget
- systemperf.py: Node and pod resource usage
"""
