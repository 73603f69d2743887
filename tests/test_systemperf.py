# tests/test_systemperf.py - Tests for the resource usage collector
"""
Unit tests for SystemPerfCollector.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from nodescope.collector.systemperf import SystemPerfCollector, usage_to_dict
from nodescope.errors import CollectError, UnsupportedEnvironmentError
from nodescope.utils.runtime_info import RuntimeInfo


NODE_METRICS = {'items': [
    {'metadata': {'name': 'node-1'}, 'usage': {'cpu': '250m', 'memory': '1Gi'}},
]}

POD_METRICS = {'items': [
    {'metadata': {'name': 'web-0'}, 'containers': [
        {'name': 'nginx', 'usage': {'cpu': '1500000n', 'memory': '64Mi'}},
        {'name': 'sidecar', 'usage': {'cpu': '2', 'memory': '1024Ki'}},
    ]},
]}


def list_metrics(group, version, plural):
    return NODE_METRICS if plural == 'nodes' else POD_METRICS


class TestSystemPerfCollector:
    """Test cases for SystemPerfCollector"""

    def test_usage_conversion(self):
        assert usage_to_dict('node-1', {'cpu': '250m', 'memory': '1Gi'}) == {
            'name': 'node-1', 'cpuUsage': 250, 'memoryUsage': 1024 ** 3,
        }

    def test_excluded_on_connected_cluster(self, storage):
        runtime_info = RuntimeInfo(host_node_name="node-1", collector_list=["connectedCluster"], storage=storage)
        collector = SystemPerfCollector(MagicMock(), runtime_info)

        with pytest.raises(UnsupportedEnvironmentError) as exc_info:
            collector.check_supported()

        assert "connectedCluster" in exc_info.value.reason

    def test_supported_by_default(self, runtime_info):
        SystemPerfCollector(MagicMock(), runtime_info).check_supported()

    @patch('nodescope.collector.systemperf.client.CustomObjectsApi')
    def test_collect(self, mock_api, runtime_info):
        mock_api.return_value.list_cluster_custom_object.side_effect = list_metrics
        collector = SystemPerfCollector(MagicMock(), runtime_info)

        collector.collect()
        data = collector.get_data()

        assert set(data) == {'nodes', 'pods'}
        assert json.loads(data['nodes']) == [{'name': 'node-1', 'cpuUsage': 250, 'memoryUsage': 1024 ** 3}]
        pods = json.loads(data['pods'])
        assert [p['name'] for p in pods] == ['nginx', 'sidecar']
        assert pods[0]['cpuUsage'] == 1
        assert pods[1]['cpuUsage'] == 2000
        assert pods[1]['memoryUsage'] == 1024 * 1024

    @patch('nodescope.collector.systemperf.client.CustomObjectsApi')
    def test_api_error(self, mock_api, runtime_info):
        mock_api.return_value.list_cluster_custom_object.side_effect = ApiException(status=503, reason="Service Unavailable")
        collector = SystemPerfCollector(MagicMock(), runtime_info)

        with pytest.raises(CollectError, match="nodes metrics error"):
            collector.collect()

        assert collector.get_data() == {}
