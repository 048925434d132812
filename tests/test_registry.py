"""
Unit tests for the registry client.
"""

import httpx

from speaches_testkit.client import SpeachesClient
from speaches_testkit.descriptors import CapabilityType
from speaches_testkit.registry import RegistryClient


class TestQuerySupported:
    """Tests for RegistryClient.query_supported."""

    def test_lists_models_for_task(self, speaches_client, fake_state):
        """Test ids come back in registry order for the requested task."""
        result = RegistryClient(speaches_client).query_supported(CapabilityType.SPEECH_TO_TEXT)

        assert result.model_ids == ("Systran/faster-whisper-base", "Systran/faster-whisper-small")
        assert not result.query_failed
        assert fake_state.registry_calls == ["automatic-speech-recognition"]

    def test_voice_ids_not_mistaken_for_models(self, speaches_client):
        """Test nested voice ids are filtered out."""
        result = RegistryClient(speaches_client).query_supported(CapabilityType.TEXT_TO_SPEECH)

        assert result.model_ids == ("speaches-ai/Kokoro-82M-v1.0-ONNX",)
        assert "af_heart" not in result

    def test_non_200_returns_empty(self, speaches_client, fake_state, caplog):
        """Test a failing registry degrades to an empty result with a warning."""
        fake_state.registry_status = 500

        result = RegistryClient(speaches_client).query_supported(CapabilityType.SPEECH_TO_TEXT)

        assert result.is_empty
        assert result.query_failed
        assert "Failed to query model registry" in caplog.text

    def test_transport_error_returns_empty(self):
        """Test a transport error degrades to an empty result."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = SpeachesClient("http://127.0.0.1:1", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

        result = RegistryClient(client).query_supported(CapabilityType.EMBEDDING)

        assert result.is_empty
        assert result.query_failed

    def test_unparseable_body_returns_empty(self, speaches_client, fake_state):
        """Test an unrecognized body degrades to an empty result."""
        fake_state.registry_body = "not json at all {{{"

        result = RegistryClient(speaches_client).query_supported(CapabilityType.SPEECH_TO_TEXT)

        assert result.is_empty
        assert result.query_failed

    def test_plain_text_body(self, speaches_client, fake_state):
        """Test a plain-text registry body is understood."""
        fake_state.registry_body = "a/b\nc/d\n"

        result = RegistryClient(speaches_client).query_supported(CapabilityType.SPEECH_TO_TEXT)

        assert result.model_ids == ("a/b", "c/d")

    def test_is_supported(self, speaches_client):
        """Test the membership helper."""
        registry = RegistryClient(speaches_client)

        assert registry.is_supported("Systran/faster-whisper-base", CapabilityType.SPEECH_TO_TEXT)
        assert not registry.is_supported("Systran/faster-whisper-base", CapabilityType.TEXT_TO_SPEECH)

    def test_junk_plain_text_body_returns_empty(self, speaches_client, fake_state):
        """Test a plain-text body with any non-id line is not taken as a model list."""
        fake_state.registry_body = "Service warming up\nretry"

        result = RegistryClient(speaches_client).query_supported(CapabilityType.SPEECH_TO_TEXT)

        assert result.is_empty
        assert result.query_failed

    def test_any_2xx_status_is_success(self):
        """Test a 2xx status other than 200 is accepted."""
        transport = httpx.MockTransport(lambda request: httpx.Response(203, json=[{"id": "a/b"}]))
        client = SpeachesClient("http://127.0.0.1:28001", http_client=httpx.Client(transport=transport))

        result = RegistryClient(client).query_supported(CapabilityType.SPEECH_TO_TEXT)

        assert result.model_ids == ("a/b",)
        assert not result.query_failed
