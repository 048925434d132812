"""
Lifecycle manager for the shared speaches service.

One service instance exists per label within a process. Instance state and
the per-label locks live in a ``ServiceContext``; the manager uses the
process-wide default context unless another one is injected, so tests can
work against a private context and a fake backend.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Mapping, MutableMapping, Optional, Union

import httpx

from speaches_testkit.client import SpeachesClient
from speaches_testkit.config import Config
from speaches_testkit.container import ContainerBackend, DockerBackend
from speaches_testkit.descriptors import (
    CapabilityType,
    ModelDescriptor,
    ProvisioningOutcome,
    ServiceInstance,
)
from speaches_testkit.provisioning import ModelProvisioner
from speaches_testkit.readiness import ReadinessPoller
from speaches_testkit.registry import RegistryClient

logger = logging.getLogger(__name__)

BASE_URL_PROPERTY = "speaches.base-url"
API_KEY_PROPERTY = "speaches.api-key"

ModelsSpec = Union[
    None,
    Mapping[Union[str, CapabilityType], str],
    Iterable[ModelDescriptor],
]


class ServiceContext:
    """Process-wide registry of service instances and their per-label locks."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._instances: Dict[str, ServiceInstance] = {}

    def lock_for(self, label: str) -> threading.RLock:
        """Re-entrant lock serializing start and provisioning for ``label``."""
        with self._guard:
            lock = self._locks.get(label)
            if lock is None:
                lock = self._locks[label] = threading.RLock()
            return lock

    def get_instance(self, label: str) -> Optional[ServiceInstance]:
        with self._guard:
            return self._instances.get(label)

    def set_instance(self, instance: ServiceInstance):
        with self._guard:
            self._instances[instance.label] = instance

    def reset(self):
        """Forget all instances. Does not stop anything."""
        with self._guard:
            self._instances.clear()


_default_context = ServiceContext()


def get_default_context() -> ServiceContext:
    return _default_context


def normalize_models(models: ModelsSpec) -> List[ModelDescriptor]:
    """
    Turn a ``{capability: model_id}`` mapping or descriptor list into descriptors.

    Raises:
        ValueError: If a capability name is unknown
    """
    if models is None:
        return []
    if isinstance(models, Mapping):
        return [
            ModelDescriptor(model_id=model_id, capability=CapabilityType.parse(capability))
            for capability, model_id in models.items()
        ]
    return list(models)


def register_properties(
    registry: MutableMapping[str, str],
    instance: ServiceInstance,
    api_key: Optional[str] = None,
):
    """Publish the resolved base URL, and the API key when set, to a caller's registry."""
    registry[BASE_URL_PROPERTY] = instance.base_url
    if api_key:
        registry[API_KEY_PROPERTY] = api_key


class ServiceLifecycleManager:
    """
    Starts the shared service once and provisions models in it.

    Args:
        config: Application configuration
        backend: Container backend (defaults to Docker)
        context: Instance registry (defaults to the process-wide context)
        http_client: ``httpx.Client`` shared by all service clients
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        backend: Optional[ContainerBackend] = None,
        context: Optional[ServiceContext] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config or Config()
        self.backend = backend or DockerBackend(
            self.config.container,
            self.config.http,
            api_key=self.config.provisioning.api_key,
        )
        self.context = context or get_default_context()
        self.http_client = http_client

    def ensure_started(self, label: Optional[str] = None) -> ServiceInstance:
        """
        Start the instance for ``label`` unless this process already has it.

        Concurrent callers are serialized on the label lock; all of them get
        the same instance and only the first runs startup work.
        """
        label = label or self.config.container.label
        with self.context.lock_for(label):
            instance = self.context.get_instance(label)
            if instance is not None and instance.running:
                return instance

            instance = self.backend.start(label)
            self.context.set_instance(instance)
            logger.info(
                "Service instance started",
                extra={"label": label, "endpoint": instance.endpoint, "created": instance.created},
            )
            return instance

    def _client_for(self, instance: ServiceInstance, api_key: Optional[str] = None) -> SpeachesClient:
        return SpeachesClient(
            instance.base_url,
            self.config.http,
            api_key=api_key or self.config.provisioning.api_key,
            http_client=self.http_client,
        )

    def provisioner_for(self, client: SpeachesClient) -> ModelProvisioner:
        return ModelProvisioner(
            client=client,
            registry=RegistryClient(client),
            poller=ReadinessPoller(client, self.config.readiness),
            config=self.config.provisioning,
            model_cache_dir=self.config.container.model_cache_dir,
        )

    def provision_all(
        self,
        instance: ServiceInstance,
        models: ModelsSpec,
        parallel: bool = False,
        api_key: Optional[str] = None,
    ) -> Dict[ModelDescriptor, ProvisioningOutcome]:
        """
        Provision every requested model and report each outcome.

        Models are provisioned in the given order, one at a time, unless
        ``parallel`` is set. The label lock is held throughout.

        Raises:
            ProvisioningError: On the first fatal provisioning failure
        """
        descriptors = normalize_models(models)
        outcomes: Dict[ModelDescriptor, ProvisioningOutcome] = {}
        if not descriptors:
            return outcomes

        with self.context.lock_for(instance.label):
            with self._client_for(instance, api_key) as client:
                provisioner = self.provisioner_for(client)
                if parallel and len(descriptors) > 1:
                    with ThreadPoolExecutor(max_workers=len(descriptors)) as pool:
                        futures = [(d, pool.submit(provisioner.provision, d)) for d in descriptors]
                    # Pool has joined; result() re-raises the first failure in request order
                    for descriptor, future in futures:
                        outcomes[descriptor] = future.result()
                else:
                    for descriptor in descriptors:
                        outcomes[descriptor] = provisioner.provision(descriptor)

        logger.info(
            "Models provisioned",
            extra={"label": instance.label, "outcomes": {d.model_id: o.value for d, o in outcomes.items()}},
        )
        return outcomes

    def ensure_ready(
        self,
        instance: ServiceInstance,
        models: ModelsSpec,
        parallel: bool = False,
    ) -> ServiceInstance:
        """Provision ``models`` in ``instance`` and return the same instance."""
        self.provision_all(instance, models, parallel=parallel)
        return instance

    def start_if_needed(
        self,
        models: ModelsSpec = None,
        api_key: Optional[str] = None,
        property_registry: Optional[MutableMapping[str, str]] = None,
        label: Optional[str] = None,
        parallel: bool = False,
    ) -> ServiceInstance:
        """
        Start the shared instance if needed, provision models and publish the endpoint.

        Args:
            models: ``{capability: model_id}`` mapping or descriptors; defaults
                    to the configured models
            api_key: Optional key forwarded to the service and published
            property_registry: Mapping receiving ``speaches.base-url`` and
                               ``speaches.api-key``
            label: Instance label (defaults to the configured label)
            parallel: Provision independent models concurrently

        Returns:
            The running instance
        """
        label = label or self.config.container.label
        if models is None:
            models = self.config.provisioning.models
        api_key = api_key or self.config.provisioning.api_key

        with self.context.lock_for(label):
            instance = self.ensure_started(label)
            self.provision_all(instance, models, parallel=parallel, api_key=api_key)

            if api_key and not instance.created:
                logger.info(
                    "API key specified, but the container environment is already set; "
                    "set SPEACHES_API_KEY before the container is created",
                    extra={"label": label},
                )

            if property_registry is not None:
                register_properties(property_registry, instance, api_key)

        return instance

    def get_running_instance(self, label: Optional[str] = None) -> Optional[ServiceInstance]:
        """Instance for ``label`` if this process has started or found one."""
        instance = self.context.get_instance(label or self.config.container.label)
        if instance is not None and instance.running:
            return instance
        return None
