# nodescope/collector/systemperf.py - Node and pod resource usage
"""
Collects CPU and memory usage for nodes and pod containers from the
metrics.k8s.io API.
"""

import json
import logging
from typing import Dict, List

from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.utils import parse_quantity

from nodescope.collector.base import Collector, check_not_excluded
from nodescope.errors import CollectError
from nodescope.utils.runtime_info import RuntimeInfo


METRICS_GROUP = 'metrics.k8s.io'
METRICS_VERSION = 'v1beta1'


def usage_to_dict(name: str, usage: Dict) -> Dict:
    """
    Convert a metrics usage block to millicores and bytes.
    """
    return {
        'name': name,
        'cpuUsage': int(parse_quantity(usage.get('cpu', '0')) * 1000),
        'memoryUsage': int(parse_quantity(usage.get('memory', '0'))),
    }


class SystemPerfCollector(Collector):
    """
    Resource usage snapshot for every node and pod container.
    """

    def __init__(self, api_client: client.ApiClient, runtime_info: RuntimeInfo):
        self.api_client = api_client
        self.runtime_info = runtime_info
        self.data: Dict[str, str] = {}
        self.logger = logging.getLogger(__name__)

    def get_name(self) -> str:
        return "systemperf"

    def check_supported(self):
        check_not_excluded(self.runtime_info, "connectedCluster")

    def _list(self, plural: str) -> List[Dict]:
        api = client.CustomObjectsApi(self.api_client)
        try:
            response = api.list_cluster_custom_object(METRICS_GROUP, METRICS_VERSION, plural)
        except ApiException as e:
            raise CollectError(self.get_name(), f"{plural} metrics error: {e.reason}") from e

        return response.get('items', [])

    def collect(self):
        nodes = [
            usage_to_dict(item['metadata']['name'], item.get('usage', {}))
            for item in self._list('nodes')
        ]
        self.data['nodes'] = json.dumps(nodes)

        pods = [
            usage_to_dict(container['name'], container.get('usage', {}))
            for item in self._list('pods')
            for container in item.get('containers', [])
        ]
        self.data['pods'] = json.dumps(pods)

        self.logger.info(f"Collected usage for {len(nodes)} nodes and {len(pods)} containers")

    def get_data(self) -> Dict[str, str]:
        return self.data
