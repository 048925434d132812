"""
Provisioning state machine for a single model.

START -> CHECK_REGISTRY -> {UNSUPPORTED | REGISTRY_UNAVAILABLE | CHECK_LOADED}
      -> {ALREADY_LOADED | TRIGGER_LOAD} -> {LOAD_FAILED | WAIT_READY}
      -> {READY | READY_TIMEOUT}

UNSUPPORTED and LOAD_FAILED raise, as does REGISTRY_UNAVAILABLE under the
fatal registry check; every other terminal state returns an outcome.
"""

import logging
import time
from pathlib import Path
from typing import Optional

import httpx

from speaches_testkit.client import SpeachesClient
from speaches_testkit.config import ProvisioningConfig
from speaches_testkit.descriptors import ModelDescriptor, ProvisioningOutcome, ProvisioningState
from speaches_testkit.errors import LoadTriggerError, RegistryQueryError, UnsupportedModelError
from speaches_testkit.readiness import ReadinessPoller
from speaches_testkit.registry import RegistryClient

logger = logging.getLogger(__name__)


def cached_model_present(model_cache_dir: Optional[str], descriptor: ModelDescriptor) -> bool:
    """
    Whether the host model cache holds files for ``descriptor``.

    Diagnostic only: the loaded-models listing decides what is loaded.
    """
    if not model_cache_dir:
        return False
    model_path = Path(model_cache_dir) / descriptor.cache_dir_name
    try:
        return model_path.is_dir() and any(model_path.iterdir())
    except OSError:
        return False


class ModelProvisioner:
    """
    Drives one model from "requested" to "loaded and ready".

    Args:
        client: Client for the running instance
        registry: Registry client used for the support check
        poller: Readiness poller used after the load trigger
        config: Registry check policy
        model_cache_dir: Host model cache, used for log diagnostics
    """

    def __init__(
        self,
        client: SpeachesClient,
        registry: RegistryClient,
        poller: ReadinessPoller,
        config: Optional[ProvisioningConfig] = None,
        model_cache_dir: Optional[str] = None,
    ):
        self.client = client
        self.registry = registry
        self.poller = poller
        self.config = config or ProvisioningConfig()
        self.model_cache_dir = model_cache_dir

    def _transition(self, descriptor: ModelDescriptor, state: ProvisioningState):
        logger.debug(
            "Provisioning state",
            extra={"model_id": descriptor.model_id, "state": state.value},
        )

    def provision(self, descriptor: ModelDescriptor) -> ProvisioningOutcome:
        """
        Ensure a model is supported, loaded and ready.

        Args:
            descriptor: Model id and capability

        Returns:
            ALREADY_LOADED, LOADED_NOW or READY_TIMEOUT

        Raises:
            UnsupportedModelError: If the registry lists other models but not this one
            RegistryQueryError: If the registry query failed and the check is fatal
            LoadTriggerError: If the load request failed
        """
        self._transition(descriptor, ProvisioningState.START)

        self._check_registry(descriptor)

        if not descriptor.is_official:
            logger.warning(
                "Model is not an official speaches-ai model and may have compatibility issues",
                extra={"model_id": descriptor.model_id},
            )

        self._transition(descriptor, ProvisioningState.CHECK_LOADED)
        if self._is_loaded(descriptor):
            self._transition(descriptor, ProvisioningState.ALREADY_LOADED)
            logger.info("Model already loaded in container", extra={"model_id": descriptor.model_id})
            return ProvisioningOutcome.ALREADY_LOADED

        self._trigger_load(descriptor)

        self._transition(descriptor, ProvisioningState.WAIT_READY)
        if self.poller.wait_until_ready(descriptor):
            self._transition(descriptor, ProvisioningState.READY)
            return ProvisioningOutcome.LOADED_NOW

        self._transition(descriptor, ProvisioningState.READY_TIMEOUT)
        return ProvisioningOutcome.READY_TIMEOUT

    def _check_registry(self, descriptor: ModelDescriptor):
        self._transition(descriptor, ProvisioningState.CHECK_REGISTRY)
        capability = descriptor.capability
        supported = self.registry.query_supported(capability)

        if supported.is_empty:
            self._transition(descriptor, ProvisioningState.REGISTRY_UNAVAILABLE)
            if self.config.registry_check == "fatal":
                raise RegistryQueryError(
                    f"Registry query for task {capability.task} failed; "
                    f"cannot confirm support for model '{descriptor.model_id}'",
                    model_id=descriptor.model_id,
                    capability=capability,
                )
            logger.warning(
                "Registry support unknown, skipping support check",
                extra={"model_id": descriptor.model_id, "task": capability.task},
            )
            return

        if descriptor.model_id not in supported:
            self._transition(descriptor, ProvisioningState.UNSUPPORTED)
            raise UnsupportedModelError(
                f"Model '{descriptor.model_id}' (type: {capability.task}) is not supported in "
                f"speaches registry. Please check available models at "
                f"{self.client.base_url}/v1/registry?task={capability.task}",
                model_id=descriptor.model_id,
                capability=capability,
            )

    def _is_loaded(self, descriptor: ModelDescriptor) -> bool:
        try:
            return self.client.is_model_loaded(
                descriptor.model_id, timeout=self.client.http_config.registry_timeout
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Error listing loaded models",
                extra={"model_id": descriptor.model_id, "error": str(e)},
            )
            return False

    def _trigger_load(self, descriptor: ModelDescriptor):
        self._transition(descriptor, ProvisioningState.TRIGGER_LOAD)
        capability = descriptor.capability

        cached = cached_model_present(self.model_cache_dir, descriptor)
        if cached:
            logger.info(
                "Model files exist locally but are not loaded, loading model",
                extra={"model_id": descriptor.model_id, "cache_dir": descriptor.cache_dir_name},
            )
        else:
            logger.info("Start downloading model", extra={"model_id": descriptor.model_id})

        started = time.monotonic()
        try:
            response = self.client.trigger_load(descriptor.model_id)
        except httpx.HTTPError as e:
            self._transition(descriptor, ProvisioningState.LOAD_FAILED)
            raise LoadTriggerError(
                f"Error downloading/loading model {descriptor.model_id} (type: {capability.task}): {e}",
                model_id=descriptor.model_id,
                capability=capability,
            ) from e

        if not response.is_success:
            self._transition(descriptor, ProvisioningState.LOAD_FAILED)
            raise LoadTriggerError(
                f"Failed to download/load model {descriptor.model_id} (type: {capability.task}), "
                f"status code: {response.status_code}, response: {response.text}",
                model_id=descriptor.model_id,
                capability=capability,
                status_code=response.status_code,
                body=response.text,
            )

        logger.info(
            "Finish loading model" if cached else "Finish downloading model",
            extra={
                "model_id": descriptor.model_id,
                "elapsed_ms": int((time.monotonic() - started) * 1000),
            },
        )
