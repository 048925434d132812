"""
Docker backend for the managed speaches service.

Creates the service container, or reuses a running one carrying the same
label, binds the host model cache into it and waits until ``/health``
answers 200. The Docker client is created lazily, on first use.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import docker
import httpx
from docker.errors import DockerException

from speaches_testkit.client import SpeachesClient
from speaches_testkit.config import ContainerConfig, HttpConfig
from speaches_testkit.descriptors import ServiceInstance
from speaches_testkit.errors import ServiceStartError

logger = logging.getLogger(__name__)

LABEL_KEY = "speaches-testkit.label"

HEALTH_RETRY_INTERVAL = 1.0


def docker_available() -> bool:
    """Whether a Docker daemon is reachable from this process."""
    try:
        client = docker.from_env()
        try:
            return bool(client.ping())
        finally:
            client.close()
    except Exception as e:
        logger.debug("Docker daemon not reachable", extra={"error": str(e)})
        return False


def container_environment(config: ContainerConfig, api_key: Optional[str] = None) -> Dict[str, str]:
    """Environment passed to a newly created service container."""
    env = {
        "host": "0.0.0.0",
        "port": str(config.container_port),
        # -1 keeps models resident; tests would otherwise reload them constantly
        "stt_model_ttl": "-1",
        "tts_model_ttl": "-1",
        "vad_model_ttl": "-1",
        "log_level": config.service_log_level,
        "enable_ui": "False",
    }
    if api_key:
        env["API_KEY"] = api_key
    return env


class ContainerBackend:
    """Starts, or finds, the service instance for a label."""

    def start(self, label: str) -> ServiceInstance:
        raise NotImplementedError


class DockerBackend(ContainerBackend):
    """
    Container backend built on the Docker SDK.

    Args:
        config: Image, ports, cache directories and startup timeout
        http_config: Timeouts for the health probe
        api_key: Key set on newly created containers and sent with health probes
        client_factory: Builds the Docker client (defaults to ``docker.from_env``)
    """

    def __init__(
        self,
        config: Optional[ContainerConfig] = None,
        http_config: Optional[HttpConfig] = None,
        api_key: Optional[str] = None,
        client_factory: Callable[[], "docker.DockerClient"] = docker.from_env,
    ):
        self.config = config or ContainerConfig()
        self.http_config = http_config or HttpConfig()
        self.api_key = api_key
        self._client_factory = client_factory
        self._docker: Optional["docker.DockerClient"] = None

    @property
    def docker(self) -> "docker.DockerClient":
        if self._docker is None:
            try:
                self._docker = self._client_factory()
            except DockerException as e:
                raise ServiceStartError(f"Docker is not available: {e}") from e
        return self._docker

    def ensure_cache_dir(self) -> Path:
        """Create the host model cache directory if absent."""
        cache_dir = Path(self.config.model_cache_dir).expanduser()
        cache_dir.mkdir(parents=True, exist_ok=True)
        return cache_dir

    def find_running(self, label: str):
        """Running container carrying ``label``, or None."""
        containers = self.docker.containers.list(
            filters={"label": f"{LABEL_KEY}={label}", "status": "running"},
        )
        return containers[0] if containers else None

    def _published_port(self, container) -> int:
        try:
            container.reload()
        except DockerException as e:
            raise ServiceStartError(f"Failed to inspect container {container.short_id}: {e}") from e
        ports = container.attrs.get("NetworkSettings", {}).get("Ports") or {}
        bindings = ports.get(f"{self.config.container_port}/tcp") or []
        for binding in bindings:
            if binding.get("HostPort"):
                return int(binding["HostPort"])
        raise ServiceStartError(
            f"Container {container.short_id} does not publish port {self.config.container_port}"
        )

    def _create(self, label: str):
        cache_dir = self.ensure_cache_dir()
        logger.info(
            "Starting service container",
            extra={"image": self.config.image, "label": label, "host_port": self.config.host_port},
        )
        try:
            return self.docker.containers.run(
                self.config.image,
                detach=True,
                environment=container_environment(self.config, self.api_key),
                ports={f"{self.config.container_port}/tcp": self.config.host_port},
                volumes={
                    str(cache_dir.resolve()): {"bind": self.config.container_cache_dir, "mode": "rw"},
                },
                labels={LABEL_KEY: label},
            )
        except DockerException as e:
            raise ServiceStartError(f"Failed to start container for {label}: {e}") from e

    def start(self, label: str) -> ServiceInstance:
        """
        Start the container for ``label`` unless one is already running.

        Returns:
            Instance pointing at the published host port

        Raises:
            ServiceStartError: If Docker fails or the service never turns healthy
        """
        try:
            container = self.find_running(label)
        except DockerException as e:
            raise ServiceStartError(f"Failed to list containers for {label}: {e}") from e

        created = container is None
        if created:
            container = self._create(label)
        else:
            self.ensure_cache_dir()
            logger.info("Reusing running service container", extra={"label": label, "container": container.short_id})

        instance = ServiceInstance(
            label=label,
            host=self.config.host,
            port=self._published_port(container),
            container_id=container.id,
            created=created,
        )
        self.wait_for_health(instance, container)
        return instance

    def wait_for_health(self, instance: ServiceInstance, container=None):
        """
        Block until ``GET /health`` returns 200.

        Raises:
            ServiceStartError: If the container exits or the startup timeout passes
        """
        deadline = time.monotonic() + self.config.startup_timeout
        with SpeachesClient(instance.base_url, self.http_config, api_key=self.api_key) as client:
            while True:
                try:
                    if client.health().status_code == 200:
                        logger.info("Service is healthy", extra={"base_url": instance.base_url})
                        return
                except httpx.HTTPError as e:
                    logger.debug("Health check failed", extra={"error": str(e)})

                if container is not None:
                    try:
                        container.reload()
                        exited = container.status in ("exited", "dead")
                        logs = container.logs(tail=50).decode("utf-8", errors="replace") if exited else ""
                    except DockerException as e:
                        raise ServiceStartError(f"Service container lost during startup: {e}") from e
                    if exited:
                        raise ServiceStartError(f"Service container exited during startup:\n{logs}")

                if time.monotonic() >= deadline:
                    raise ServiceStartError(
                        f"Service at {instance.base_url} not healthy after {self.config.startup_timeout:g} seconds"
                    )
                time.sleep(HEALTH_RETRY_INTERVAL)
