"""
Pytest configuration and shared fixtures.
"""

import tempfile
import threading
import time
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from speaches_testkit.client import SpeachesClient
from speaches_testkit.config import (
    Config,
    ContainerConfig,
    HttpConfig,
    LogConfig,
    ProvisioningConfig,
    ReadinessConfig,
)
from speaches_testkit.container import ContainerBackend
from speaches_testkit.descriptors import ServiceInstance
from speaches_testkit.lifecycle import ServiceContext, ServiceLifecycleManager
from speaches_testkit.provisioning import ModelProvisioner
from speaches_testkit.readiness import ReadinessPoller
from speaches_testkit.registry import RegistryClient

from fake_speaches import FakeSpeachesState, create_fake_app

BASE_URL = "http://127.0.0.1:28001"


class FakeBackend(ContainerBackend):
    """Backend handing out a new instance, on a new port, per start call."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.starts = 0
        self._lock = threading.Lock()

    def start(self, label: str) -> ServiceInstance:
        with self._lock:
            self.starts += 1
            port = 28000 + self.starts
        time.sleep(self.delay)
        return ServiceInstance(label=label, host="127.0.0.1", port=port, created=True)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir: Path) -> Config:
    """Create a configuration with fast readiness polling."""
    return Config(
        log=LogConfig(level="INFO", format="text", output="stdout"),
        container=ContainerConfig(
            label="TestSpeaches",
            host_port=28001,
            model_cache_dir=str(temp_dir / "hub"),
            startup_timeout=5.0,
        ),
        http=HttpConfig(connect_timeout=1.0, registry_timeout=2.0, poll_timeout=1.0, load_timeout=2.0),
        readiness=ReadinessConfig(max_wait=0.3, poll_interval=0.05, settle_seconds=0.0, tts_settle_seconds=0.0),
        provisioning=ProvisioningConfig(),
    )


@pytest.fixture
def config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    import yaml

    config_path = temp_dir / "speaches.yaml"
    config_dict = {
        "speaches": {
            "log": {"level": "DEBUG", "format": "json", "output": "stdout"},
            "container": {"label": "FromFile", "host_port": 29001, "startup_timeout": 60},
            "http": {"load_timeout": 120},
            "readiness": {"max_wait": 30, "poll_interval": 1, "tts_settle_seconds": 8},
            "provisioning": {
                "models": {"STT": "Systran/faster-whisper-base"},
                "registry_check": "fatal",
            },
        },
    }

    with open(config_path, "w") as f:
        yaml.dump(config_dict, f)

    return config_path


@pytest.fixture
def fake_state() -> FakeSpeachesState:
    """State of the fake service; tests mutate it to script responses."""
    return FakeSpeachesState(
        registry={
            "automatic-speech-recognition": ["Systran/faster-whisper-base", "Systran/faster-whisper-small"],
            "text-to-speech": ["speaches-ai/Kokoro-82M-v1.0-ONNX"],
            "speaker-embedding": ["Wespeaker/wespeaker-voxceleb-resnet34-LM"],
        },
    )


@pytest.fixture
def http_client(fake_state: FakeSpeachesState) -> Generator[TestClient, None, None]:
    """httpx client routed to the fake service."""
    with TestClient(create_fake_app(fake_state)) as client:
        yield client


@pytest.fixture
def speaches_client(http_client: TestClient, sample_config: Config) -> SpeachesClient:
    return SpeachesClient(BASE_URL, sample_config.http, http_client=http_client)


@pytest.fixture
def provisioner(speaches_client: SpeachesClient, sample_config: Config) -> ModelProvisioner:
    return ModelProvisioner(
        client=speaches_client,
        registry=RegistryClient(speaches_client),
        poller=ReadinessPoller(speaches_client, sample_config.readiness),
        config=sample_config.provisioning,
        model_cache_dir=sample_config.container.model_cache_dir,
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def manager(sample_config: Config, fake_backend: FakeBackend, http_client: TestClient) -> ServiceLifecycleManager:
    """Lifecycle manager on a private context, a fake backend and the fake service."""
    return ServiceLifecycleManager(
        sample_config,
        backend=fake_backend,
        context=ServiceContext(),
        http_client=http_client,
    )
