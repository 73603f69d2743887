# tests/test_config.py - Tests for configuration and runtime info
"""
Unit tests for Config and RuntimeInfo.from_env.
"""

from unittest.mock import patch

import pytest

from nodescope.errors import ConfigError
from nodescope.utils.config import Config
from nodescope.utils.runtime_info import RuntimeInfo


class TestConfig:
    """Test cases for Config"""

    def test_defaults(self):
        config = Config()

        assert config.get('agent.collection_period') == 10
        assert config.get('collectors.gadgets') == ['dns', 'tcptracer']
        assert config.get('missing.key', 'fallback') == 'fallback'

    def test_load_from_file_merges(self, tmp_path):
        path = tmp_path / "agent.yaml"
        path.write_text("agent:\n  collection_period: 30\nstorage:\n  container_name: diag\n")

        config = Config(str(path))

        assert config.get('agent.collection_period') == 30
        assert config.get('agent.max_workers') == 4
        assert config.get('storage.container_name') == 'diag'

    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config(str(tmp_path / "absent.yaml"))

        assert config.to_dict() == Config().to_dict()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert Config(str(path)).get('agent.archive') is False

    def test_set_creates_nested_keys(self):
        config = Config()
        config.set('new.nested.key', 5)

        assert config.get('new.nested.key') == 5

    def test_instances_do_not_share_defaults(self):
        first = Config()
        first.get('collectors.exclude').append('ig-dnstrace')

        assert Config().get('collectors.exclude') == []


class TestRuntimeInfo:
    """Test cases for RuntimeInfo.from_env"""

    def test_requires_host_node_name(self):
        with pytest.raises(ConfigError, match="HOST_NODE_NAME"):
            RuntimeInfo.from_env(environ={})

    @patch('nodescope.utils.runtime_info.platform.system', return_value='Linux')
    def test_reads_environment(self, mock_system):
        environ = {
            'HOST_NODE_NAME': 'node-7',
            'COLLECTOR_LIST': 'connectedCluster  ig-tcptrace',
            'DIAGNOSTIC_KUBEOBJECTS_LIST': 'kube-system/pod kube-system/service',
            'DIAGNOSTIC_NODELOGS_LIST_LINUX': '/var/log/syslog',
            'DIAGNOSTIC_CONTAINERLOGS_LIST': 'kube-system',
            'STORAGE_ACCOUNT_NAME': 'acct',
            'STORAGE_ACCESS_KEY': 'key',
            'STORAGE_CONTAINER_NAME': 'bucket',
        }

        info = RuntimeInfo.from_env(environ=environ)

        assert info.host_node_name == 'node-7'
        assert info.os_identifier == 'linux'
        assert info.collector_list == ['connectedCluster', 'ig-tcptrace']
        assert info.is_excluded('connectedCluster')
        assert not info.is_excluded('ig-dnstrace')
        assert info.kubernetes_objects == ['kube-system/pod', 'kube-system/service']
        assert info.node_logs == ['/var/log/syslog']
        assert info.container_logs_namespaces == ['kube-system']
        assert info.storage.configured

    def test_config_fallbacks(self):
        config = Config()
        config.set('collectors.exclude', ['systemperf'])
        config.set('storage.container_name', 'from-config')
        config.set('storage.region', 'eu-west-1')

        info = RuntimeInfo.from_env(config, environ={
            'HOST_NODE_NAME': 'node-1',
            'STORAGE_CONTAINER_NAME': 'from-env',
        })

        assert info.collector_list == ['systemperf']
        assert info.storage.container_name == 'from-env'
        assert info.storage.region == 'eu-west-1'
        assert not info.storage.configured
