"""
pytest fixtures for suites that need the shared speaches service.

Registered through the ``pytest11`` entry point. Override ``speaches_models``
in a conftest to choose which models get provisioned:

    @pytest.fixture(scope="session")
    def speaches_models():
        return {"STT": "Systran/faster-whisper-base"}

Tests marked ``requires_docker`` are skipped when no Docker daemon is
reachable.
"""

from typing import Dict

import pytest

from speaches_testkit.config import Config, load_config
from speaches_testkit.container import docker_available
from speaches_testkit.descriptors import ServiceInstance
from speaches_testkit.lifecycle import ServiceLifecycleManager


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "requires_docker: skip the test when no Docker daemon is reachable"
    )


def pytest_collection_modifyitems(config, items):
    marked = [item for item in items if item.get_closest_marker("requires_docker")]
    if not marked or docker_available():
        return
    skip = pytest.mark.skip(reason="Docker is not available")
    for item in marked:
        item.add_marker(skip)


@pytest.fixture(scope="session")
def speaches_config() -> Config:
    """Configuration loaded from the default locations and environment."""
    return load_config()


@pytest.fixture(scope="session")
def speaches_models(speaches_config: Config) -> Dict[str, str]:
    """``{capability: model_id}`` to provision; defaults to the configured models."""
    return dict(speaches_config.provisioning.models)


@pytest.fixture(scope="session")
def speaches_manager(speaches_config: Config) -> ServiceLifecycleManager:
    return ServiceLifecycleManager(speaches_config)


@pytest.fixture(scope="session")
def speaches_service(speaches_manager: ServiceLifecycleManager, speaches_models) -> ServiceInstance:
    """Shared running instance with ``speaches_models`` provisioned."""
    if not docker_available():
        pytest.skip("Docker is not available")
    return speaches_manager.start_if_needed(models=speaches_models)


@pytest.fixture(scope="session")
def speaches_base_url(speaches_service: ServiceInstance) -> str:
    return speaches_service.base_url
