# nodescope/collector/base.py - Collector contract
"""
Uniform lifecycle contract implemented by every collector.

A collector is asked whether it can run on this node (check_supported),
then gathers its data (collect), then hands over named outputs (get_data).
"""

from abc import ABC, abstractmethod
from typing import Dict

from nodescope.errors import UnsupportedEnvironmentError
from nodescope.utils.runtime_info import RuntimeInfo


class DataProducer(ABC):
    """
    Anything that can hand named outputs to an exporter.
    """

    @abstractmethod
    def get_data(self) -> Dict[str, str]:
        """
        Get accumulated named outputs.

        Returns:
            Dictionary mapping item name to content
        """


class Collector(DataProducer):
    """
    Base class for all collectors.
    """

    @abstractmethod
    def get_name(self) -> str:
        """Stable identifier used for logging and export keys"""

    @abstractmethod
    def check_supported(self):
        """
        Verify the collector can run on this node.

        Raises:
            UnsupportedEnvironmentError: A prerequisite is absent
        """

    @abstractmethod
    def collect(self):
        """
        Gather the data. May block for a long time.

        Raises:
            CollectError: Irrecoverable failure, wrapping the cause
        """


def check_not_excluded(runtime_info: RuntimeInfo, value: str):
    """
    Fail when the exclusion list names `value`.
    """
    if runtime_info.is_excluded(value):
        raise UnsupportedEnvironmentError(
            f"Not included because '{value}' is in COLLECTOR_LIST variable. "
            f"Included values: {' '.join(runtime_info.collector_list)}"
        )


def check_linux(runtime_info: RuntimeInfo):
    """
    Fail on hosts without eBPF.
    """
    if runtime_info.os_identifier != 'linux':
        raise UnsupportedEnvironmentError(f"unsupported OS: {runtime_info.os_identifier}")
