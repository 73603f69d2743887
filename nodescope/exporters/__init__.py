# nodescope/exporters/__init__.py - Exporters module
"""
Exporters for shipping collected data off the node.

This module provides:
- object_storage.py: S3-compatible object storage exporter
- metrics.py: Prometheus metrics describing the run itself
"""
