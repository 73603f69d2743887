# nodescope/ebpf/__init__.py - eBPF programs module
"""
eBPF programs compiled by BCC at probe start-up.

- dns_tracer.c: Outgoing UDP datagrams to port 53
- tcp_tracer.c: TCP connect, accept and close
"""
