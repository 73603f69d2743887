# nodescope/probes/__init__.py - Kernel probe module
"""
Event sources feeding the trace collectors.

This module provides:
- base.py: Probe contract and the connection to the container registry
- events.py: Structured DNS and TCP events
- bcc_probes.py: BCC kprobe tracers (C sources in nodescope/ebpf)
- procnet.py: /proc/net polling TCP probe, used when BCC is unavailable
"""
