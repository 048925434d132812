"""
Registry client: which model ids the service can install, per capability.

The registry query is advisory. Transport errors, non-2xx statuses and
unparseable bodies all come back as an empty result flagged ``query_failed``
rather than an exception.
"""

import logging

import httpx

from speaches_testkit.client import SpeachesClient
from speaches_testkit.descriptors import CapabilityType, RegistrySupportResult
from speaches_testkit.extractor import extract

logger = logging.getLogger(__name__)


class RegistryClient:
    """Queries ``/v1/registry`` and extracts model ids from the response."""

    def __init__(self, client: SpeachesClient):
        self.client = client

    def query_supported(self, capability: CapabilityType) -> RegistrySupportResult:
        """
        List model ids the registry recognizes for a capability.

        Args:
            capability: Capability whose task label scopes the query

        Returns:
            Ids in response order; empty with ``query_failed`` set when the
            query could not be completed
        """
        try:
            response = self.client.get_registry(capability)
        except httpx.HTTPError as e:
            logger.warning(
                "Error querying model registry",
                extra={"task": capability.task, "error": str(e)},
            )
            return RegistrySupportResult(capability=capability, query_failed=True)

        if not response.is_success:
            logger.warning(
                "Failed to query model registry",
                extra={"task": capability.task, "status_code": response.status_code},
            )
            return RegistrySupportResult(capability=capability, query_failed=True)

        extraction = extract(response.text)
        if not extraction.model_ids:
            logger.warning(
                "No model ids recognized in registry response",
                extra={"task": capability.task, "length": len(response.text)},
            )
            return RegistrySupportResult(capability=capability, query_failed=True)

        logger.info(
            "Registry models for task",
            extra={
                "task": capability.task,
                "shape": extraction.shape.value,
                "count": len(extraction.model_ids),
            },
        )
        logger.debug("Registry model ids", extra={"task": capability.task, "model_ids": extraction.model_ids})
        return RegistrySupportResult(capability=capability, model_ids=tuple(extraction.model_ids))

    def is_supported(self, model_id: str, capability: CapabilityType) -> bool:
        """Whether the registry lists ``model_id`` for ``capability``."""
        return model_id in self.query_supported(capability)
