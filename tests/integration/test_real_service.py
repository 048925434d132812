"""
Integration tests against a real speaches container.

Opt-in: needs Docker and SPEACHES_INTEGRATION=1. The first run downloads the
image and the model into the host cache and can take several minutes.
"""

import httpx
import pytest

from speaches_testkit.descriptors import CapabilityType, ProvisioningOutcome
from speaches_testkit.lifecycle import BASE_URL_PROPERTY

STT_MODEL = "Systran/faster-whisper-tiny"

pytestmark = [pytest.mark.integration, pytest.mark.requires_docker]


def test_start_and_provision(real_manager):
    """Test the container starts healthy and the model ends up loaded."""
    properties = {}

    instance = real_manager.start_if_needed({"STT": STT_MODEL}, property_registry=properties)

    assert properties[BASE_URL_PROPERTY] == instance.base_url
    response = httpx.get(f"{instance.base_url}/health", timeout=10.0)
    assert response.status_code == 200

    outcomes = real_manager.provision_all(instance, {CapabilityType.SPEECH_TO_TEXT: STT_MODEL})
    assert list(outcomes.values()) == [ProvisioningOutcome.ALREADY_LOADED]
