# nodescope/utils/runtime_info.py - Node identity and run inputs
"""
Runtime information for one agent run.

The host node name cannot be derived from inside the pod (the container
hostname is the pod name), so it must be exposed through the HOST_NODE_NAME
environment variable. Every other input falls back to the YAML config.
"""

import os
import platform
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from nodescope.errors import ConfigError
from nodescope.utils.config import Config


STORAGE_ENV_KEYS = {
    'account_name': 'STORAGE_ACCOUNT_NAME',
    'access_key': 'STORAGE_ACCESS_KEY',
    'container_name': 'STORAGE_CONTAINER_NAME',
    'key_type': 'STORAGE_KEY_TYPE',
    'endpoint_url': 'STORAGE_ENDPOINT_URL',
    'region': 'STORAGE_REGION',
}


@dataclass
class StorageInfo:
    """Destination object storage settings"""
    account_name: str = ""
    access_key: str = ""
    container_name: str = ""
    key_type: str = ""
    endpoint_url: str = ""
    region: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.account_name and self.access_key and self.container_name)


@dataclass
class RuntimeInfo:
    """
    Inputs for one run, built once at start-up.
    """
    host_node_name: str
    os_identifier: str = "linux"
    collector_list: List[str] = field(default_factory=list)
    kubernetes_objects: List[str] = field(default_factory=list)
    node_logs: List[str] = field(default_factory=list)
    container_logs_namespaces: List[str] = field(default_factory=list)
    storage: StorageInfo = field(default_factory=StorageInfo)

    def is_excluded(self, value: str) -> bool:
        return value in self.collector_list

    @classmethod
    def from_env(cls, config: Optional[Config] = None,
                 environ: Optional[Mapping[str, str]] = None) -> 'RuntimeInfo':
        """
        Build runtime info from environment variables layered over config.

        Raises:
            ConfigError: HOST_NODE_NAME is not set
        """
        config = config or Config()
        env = os.environ if environ is None else environ

        host_name = env.get('HOST_NODE_NAME', '')
        if not host_name:
            raise ConfigError("HOST_NODE_NAME value not set for container")

        os_identifier = platform.system().lower()

        collector_list = env.get('COLLECTOR_LIST', '').split()
        if not collector_list:
            collector_list = list(config.get('collectors.exclude', []))

        if os_identifier == 'linux':
            node_logs = env.get('DIAGNOSTIC_NODELOGS_LIST_LINUX', '').split()
        else:
            node_logs = env.get('DIAGNOSTIC_NODELOGS_LIST_WINDOWS', '').split()

        storage = StorageInfo(**{
            attr: env.get(env_key) or str(config.get(f'storage.{attr}', '') or '')
            for attr, env_key in STORAGE_ENV_KEYS.items()
        })

        return cls(
            host_node_name=host_name,
            os_identifier=os_identifier,
            collector_list=collector_list,
            kubernetes_objects=env.get('DIAGNOSTIC_KUBEOBJECTS_LIST', '').split(),
            node_logs=node_logs,
            container_logs_namespaces=env.get('DIAGNOSTIC_CONTAINERLOGS_LIST', '').split(),
            storage=storage,
        )
