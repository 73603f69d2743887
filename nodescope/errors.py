# nodescope/errors.py - Exception hierarchy
"""
Exceptions raised across the agent.

UnsupportedEnvironmentError skips one collector, CollectError fails one
collector, ResourceInitError is raised by probe and registry setup, and
ExportError aborts the remainder of an export attempt.
"""

from typing import Dict


class NodescopeError(Exception):
    """Base class for all agent errors"""


class ConfigError(NodescopeError):
    """Required run configuration is missing or invalid"""


class UnsupportedEnvironmentError(NodescopeError):
    """
    A collector's prerequisites are absent on this node.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CollectError(NodescopeError):
    """
    A collector failed irrecoverably during collect().
    """

    def __init__(self, collector_name: str, message: str):
        super().__init__(f"{collector_name}: {message}")
        self.collector_name = collector_name


class ResourceInitError(NodescopeError):
    """Probe or container registry setup failed"""


class ExportError(NodescopeError):
    """An upload to object storage failed"""


class StorageNotConfiguredError(ExportError):
    """Storage settings were not provided"""

    def __init__(self):
        super().__init__("storage not configured")


class CollectionErrors(NodescopeError):
    """
    All collect-phase failures of one pass, keyed by collector name.
    """

    def __init__(self, errors: Dict[str, Exception]):
        self.errors = dict(errors)
        details = "; ".join(f"{name}: {err}" for name, err in sorted(self.errors.items()))
        super().__init__(f"{len(self.errors)} collector(s) failed: {details}")
