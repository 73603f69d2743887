# tests/conftest.py - Shared fixtures
import pytest

from nodescope.collector.registry import ContainerRegistry
from nodescope.utils.runtime_info import RuntimeInfo, StorageInfo
from tests.fakes import DB, HOSTNET, WEB, FakeContainerSource, FakeProbe


@pytest.fixture(autouse=True)
def reset_fake_probe():
    FakeProbe.active = 0
    yield


@pytest.fixture
def storage():
    return StorageInfo(account_name="AKIAEXAMPLE", access_key="secret", container_name="diagnostics")


@pytest.fixture
def runtime_info(storage):
    return RuntimeInfo(host_node_name="node-1", os_identifier="linux", storage=storage)


@pytest.fixture
def source():
    return FakeContainerSource([WEB, DB, HOSTNET])


@pytest.fixture
def registry_factory(source):
    def factory():
        return ContainerRegistry(source, raise_memlock=False)
    return factory
