"""Pytest configuration and fixtures."""

from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from pathlib import Path

import pytest
import pytest_asyncio
import respx
import structlog
from kubernetes_asyncio.client import ApiClient
from safir.testing.kubernetes import MockKubernetesApi, patch_kubernetes
from structlog.stdlib import BoundLogger

from voldriver.config import Config, PluginConfig
from voldriver.constants import ROOT_LOGGER
from voldriver.storage.kubernetes.events import EventRecorder
from voldriver.storage.kubernetes.volume import VolumeStorage
from voldriver.storage.plugin import VolumePluginClient

from .support.plugin import MockDockerEngine, MockPlugin

PLUGIN_SOCKET = "/run/docker/plugins/test.sock"


@pytest.fixture
def config() -> Config:
    return Config(
        name="hpe.com/",
        plugin=PluginConfig(socket=PLUGIN_SOCKET),
        clone_wait=2,
    )


@pytest.fixture
def config_path() -> Path:
    return Path(__file__).parent / "data" / "config.yaml"


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger(ROOT_LOGGER)


@pytest.fixture
def respx_mock() -> Iterator[respx.MockRouter]:
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def mock_plugin(respx_mock: respx.MockRouter) -> MockPlugin:
    plugin = MockPlugin()
    plugin.install(respx_mock)
    return plugin


@pytest.fixture
def mock_docker(respx_mock: respx.MockRouter) -> MockDockerEngine:
    docker = MockDockerEngine()
    docker.install(respx_mock)
    return docker


@pytest_asyncio.fixture
async def plugin(
    config: Config, mock_plugin: MockPlugin, logger: BoundLogger
) -> AsyncIterator[VolumePluginClient]:
    client, error = await VolumePluginClient.connect(config.plugin, logger)
    assert error is None
    yield client
    await client.aclose()


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    with contextmanager(patch_kubernetes)() as mock:
        yield mock


@pytest_asyncio.fixture
async def api_client(
    mock_kubernetes: MockKubernetesApi,
) -> AsyncIterator[ApiClient]:
    api_client = ApiClient()
    yield api_client
    await api_client.close()


@pytest.fixture
def event_recorder(
    api_client: ApiClient, config: Config, logger: BoundLogger
) -> EventRecorder:
    return EventRecorder(api_client, config.name, logger)


@pytest.fixture
def volume_storage(
    api_client: ApiClient, logger: BoundLogger
) -> VolumeStorage:
    return VolumeStorage(api_client, logger)
