"""
Readiness polling for a freshly loaded model.

Two phases: wait for the model id to appear in the loaded-models listing,
then sleep a capability-dependent settle time, since the listing can report
a model slightly before the instance serves it correctly. A timeout is not
an error; it is logged and surfaced as ``ReadinessTimeoutWarning``.
"""

import logging
import time
import warnings
from typing import Callable, Optional

import httpx

from speaches_testkit.client import SpeachesClient
from speaches_testkit.config import ReadinessConfig
from speaches_testkit.descriptors import CapabilityType, ModelDescriptor
from speaches_testkit.errors import ReadinessTimeoutWarning

logger = logging.getLogger(__name__)


class ReadinessPoller:
    """
    Blocking, fixed-interval poller for the loaded-models listing.

    Args:
        client: Client for the running instance
        config: Polling interval, ceiling and settle durations
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        client: SpeachesClient,
        config: Optional[ReadinessConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.config = config or ReadinessConfig()
        self._sleep = sleep
        self._clock = clock

    def settle_seconds(self, capability: CapabilityType) -> float:
        """Post-appearance settle time; text-to-speech initializes slower."""
        if capability is CapabilityType.TEXT_TO_SPEECH:
            return self.config.tts_settle_seconds
        return self.config.settle_seconds

    def wait_for_listing(self, model_id: str) -> bool:
        """
        Poll until ``model_id`` is listed or ``max_wait`` elapses.

        Returns:
            True if the model appeared, False on timeout
        """
        deadline = self._clock() + self.config.max_wait

        while True:
            try:
                if self.client.is_model_loaded(model_id):
                    logger.info("Model found in loaded models list", extra={"model_id": model_id})
                    return True
            except httpx.HTTPError as e:
                logger.debug(
                    "Error checking loaded models list",
                    extra={"model_id": model_id, "error": str(e)},
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(self.config.poll_interval, remaining))

    def wait_until_ready(self, descriptor: ModelDescriptor) -> bool:
        """
        Block until the model is listed and settled.

        Args:
            descriptor: Model to wait for

        Returns:
            True when ready, False when the listing deadline passed
        """
        logger.info(
            "Waiting for model to be ready",
            extra={"model_id": descriptor.model_id, "max_wait": self.config.max_wait},
        )

        if not self.wait_for_listing(descriptor.model_id):
            message = (
                f"Model {descriptor.model_id} not found in loaded models list "
                f"after {self.config.max_wait:g} seconds"
            )
            logger.warning(message, extra={"model_id": descriptor.model_id})
            warnings.warn(message, ReadinessTimeoutWarning, stacklevel=2)
            return False

        settle = self.settle_seconds(descriptor.capability)
        if settle > 0:
            logger.info(
                "Model listed, waiting for full initialization",
                extra={"model_id": descriptor.model_id, "settle_seconds": settle},
            )
            self._sleep(settle)

        logger.info("Model is ready", extra={"model_id": descriptor.model_id})
        return True
