# nodescope/__init__.py - Per-node diagnostic agent
"""
nodescope gathers logs, metrics and live kernel-level network traces from the
node it runs on and uploads the results to object storage.
"""

__version__ = "0.1.0"
