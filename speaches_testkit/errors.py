"""
Exception taxonomy for the speaches test service.

Fatal conditions are raised to the caller. Recovered conditions are
downgraded by the component that detects them and only show up in logs.
"""

from typing import Optional

from speaches_testkit.descriptors import CapabilityType


class SpeachesTestkitError(Exception):
    """Base class for errors raised to callers."""


class ServiceStartError(SpeachesTestkitError):
    """The service container could not be started or never became healthy."""


class ProvisioningError(SpeachesTestkitError):
    """
    A model could not be provisioned.

    Carries the model id, capability and, where an HTTP response was
    involved, its status code and body.
    """

    def __init__(
        self,
        message: str,
        model_id: str,
        capability: CapabilityType,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.model_id = model_id
        self.capability = capability
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class UnsupportedModelError(ProvisioningError):
    """The registry explicitly excludes the model for its capability."""


class LoadTriggerError(ProvisioningError):
    """The load/download request did not succeed."""


class RegistryQueryError(ProvisioningError):
    """The registry query failed and the registry check is configured as fatal."""


class ResponseParseError(ValueError):
    """A response body does not have the shape a decoder expects."""


class ReadinessTimeoutWarning(UserWarning):
    """A model did not appear in the loaded-models listing before the deadline."""
