"""
Pytest configuration and fixtures for integration tests.
"""

import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from speaches_testkit.config import Config, load_config
from speaches_testkit.lifecycle import ServiceContext, ServiceLifecycleManager

from conftest import FakeBackend

REAL_SERVICE_ENV = "SPEACHES_INTEGRATION"


@pytest.fixture
def shared_context() -> ServiceContext:
    """Instance registry shared by every manager in one test."""
    return ServiceContext()


@pytest.fixture
def slow_backend() -> FakeBackend:
    """Backend whose startup takes long enough for callers to overlap."""
    return FakeBackend(delay=0.1)


@pytest.fixture
def make_manager(sample_config: Config, slow_backend: FakeBackend, shared_context: ServiceContext, http_client: TestClient):
    """Factory for managers that behave like independent test suites in one process."""
    def factory() -> ServiceLifecycleManager:
        return ServiceLifecycleManager(
            sample_config,
            backend=slow_backend,
            context=shared_context,
            http_client=http_client,
        )

    return factory


@pytest.fixture
def real_manager() -> Generator[ServiceLifecycleManager, None, None]:
    """Manager for a real container; skipped unless explicitly enabled."""
    if os.getenv(REAL_SERVICE_ENV) != "1":
        pytest.skip(f"set {REAL_SERVICE_ENV}=1 to run against a real speaches container")
    config = load_config()
    config.container.label = "SpeachesTestkitIntegration"
    yield ServiceLifecycleManager(config, context=ServiceContext())
