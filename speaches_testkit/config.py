"""
Configuration management for the speaches test service.

Handles loading and validation of configuration from YAML files and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_IMAGE = "ghcr.io/speaches-ai/speaches:0.9.0-rc.3-cpu"
DEFAULT_LABEL = "Speeches"
DEFAULT_MODEL_CACHE_DIR = str(Path.home() / ".cache" / "speaches-tc" / "huggingface" / "hub")
CONTAINER_MODEL_CACHE_DIR = "/home/ubuntu/.cache/huggingface/hub"

REGISTRY_CHECK_POLICIES = ("advisory", "fatal")


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"  # "json" or "text"
    output: str = "stdout"  # "stdout" or file path


@dataclass
class ContainerConfig:
    """Container configuration for the managed service."""
    image: str = DEFAULT_IMAGE
    label: str = DEFAULT_LABEL
    container_port: int = 8000
    host_port: int = 28001
    host: str = "127.0.0.1"
    model_cache_dir: str = DEFAULT_MODEL_CACHE_DIR
    container_cache_dir: str = CONTAINER_MODEL_CACHE_DIR
    service_log_level: str = "info"
    startup_timeout: float = 300.0


@dataclass
class HttpConfig:
    """Per-call HTTP timeouts in seconds."""
    connect_timeout: float = 10.0
    registry_timeout: float = 30.0
    poll_timeout: float = 5.0
    load_timeout: float = 600.0


@dataclass
class ReadinessConfig:
    """Readiness polling configuration in seconds."""
    max_wait: float = 120.0
    poll_interval: float = 2.0
    settle_seconds: float = 2.0
    tts_settle_seconds: float = 5.0


@dataclass
class ProvisioningConfig:
    """Models to provision and how strictly to check the registry."""
    models: Dict[str, str] = field(default_factory=dict)  # capability -> model id
    api_key: Optional[str] = None
    registry_check: str = "advisory"  # "advisory" or "fatal"


@dataclass
class Config:
    """Application configuration."""
    log: LogConfig = field(default_factory=LogConfig)
    container: ContainerConfig = field(default_factory=ContainerConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    readiness: ReadinessConfig = field(default_factory=ReadinessConfig)
    provisioning: ProvisioningConfig = field(default_factory=ProvisioningConfig)

    def __post_init__(self):
        """Validate configuration after initialization."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.log.level}")

        if self.log.format not in ["json", "text"]:
            raise ValueError(f"Invalid log format: {self.log.format}")

        for name in ("container_port", "host_port"):
            port = getattr(self.container, name)
            if not (1 <= port <= 65535):
                raise ValueError(f"Invalid port: {port}")

        if self.readiness.poll_interval <= 0:
            raise ValueError(f"Invalid poll interval: {self.readiness.poll_interval}")

        if self.readiness.max_wait < 0:
            raise ValueError(f"Invalid readiness max wait: {self.readiness.max_wait}")

        if self.provisioning.registry_check not in REGISTRY_CHECK_POLICIES:
            raise ValueError(f"Invalid registry check policy: {self.provisioning.registry_check}")


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file and environment variables.

    Args:
        config_path: Path to YAML configuration file. If None, searches for
                     config files in common locations.

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file is specified but not found
        ValueError: If configuration is invalid
    """
    load_dotenv()

    default_paths = [
        Path("config/speaches.yaml"),
        Path("config/config.yaml"),
        Path("./speaches.yaml"),
    ]

    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
    else:
        config_file = None
        for path in default_paths:
            if path.exists():
                config_file = path
                break

    yaml_config = {}
    if config_file is not None:
        with open(config_file, "r") as f:
            yaml_config = yaml.safe_load(f) or {}

    # Nested under speaches or testkit.speaches
    section = yaml_config.get("speaches", {})
    if not section:
        section = yaml_config.get("testkit", {}).get("speaches", {})

    log = section.get("log", {})
    container = section.get("container", {})
    http = section.get("http", {})
    readiness = section.get("readiness", {})
    provisioning = section.get("provisioning", {})

    defaults = ContainerConfig()

    config = Config(
        log=LogConfig(
            level=os.getenv("SPEACHES_LOG_LEVEL", log.get("level", "INFO")),
            format=os.getenv("SPEACHES_LOG_FORMAT", log.get("format", "text")),
            output=os.getenv("SPEACHES_LOG_OUTPUT", log.get("output", "stdout")),
        ),
        container=ContainerConfig(
            image=os.getenv("SPEACHES_IMAGE", container.get("image", defaults.image)),
            label=os.getenv("SPEACHES_LABEL", container.get("label", defaults.label)),
            container_port=int(container.get("container_port", defaults.container_port)),
            host_port=int(os.getenv("SPEACHES_HOST_PORT", container.get("host_port", defaults.host_port))),
            host=container.get("host", defaults.host),
            model_cache_dir=os.path.expanduser(
                os.getenv("SPEACHES_MODEL_CACHE_DIR", container.get("model_cache_dir", defaults.model_cache_dir))
            ),
            container_cache_dir=container.get("container_cache_dir", defaults.container_cache_dir),
            service_log_level=container.get("service_log_level", defaults.service_log_level),
            startup_timeout=float(
                os.getenv("SPEACHES_STARTUP_TIMEOUT", container.get("startup_timeout", defaults.startup_timeout))
            ),
        ),
        http=HttpConfig(
            connect_timeout=float(http.get("connect_timeout", 10.0)),
            registry_timeout=float(http.get("registry_timeout", 30.0)),
            poll_timeout=float(http.get("poll_timeout", 5.0)),
            load_timeout=float(os.getenv("SPEACHES_LOAD_TIMEOUT", http.get("load_timeout", 600.0))),
        ),
        readiness=ReadinessConfig(
            max_wait=float(os.getenv("SPEACHES_READY_MAX_WAIT", readiness.get("max_wait", 120.0))),
            poll_interval=float(
                os.getenv("SPEACHES_READY_POLL_INTERVAL", readiness.get("poll_interval", 2.0))
            ),
            settle_seconds=float(readiness.get("settle_seconds", 2.0)),
            tts_settle_seconds=float(readiness.get("tts_settle_seconds", 5.0)),
        ),
        provisioning=ProvisioningConfig(
            models=dict(provisioning.get("models") or {}),
            api_key=os.getenv("SPEACHES_API_KEY", provisioning.get("api_key")),
            registry_check=os.getenv(
                "SPEACHES_REGISTRY_CHECK", provisioning.get("registry_check", "advisory")
            ),
        ),
    )

    return config
