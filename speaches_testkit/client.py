"""
HTTP client for the managed speaches service.

A thin wrapper over the endpoints used during provisioning. Transport errors
are raised as ``httpx.RequestError``; callers decide whether they are fatal.
"""

import logging
from typing import Dict, Optional
from urllib.parse import quote

import httpx

from speaches_testkit.config import HttpConfig
from speaches_testkit.descriptors import CapabilityType

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
REGISTRY_PATH = "/v1/registry"
MODELS_PATH = "/v1/models"


def encode_path_segment(value: str) -> str:
    """Percent-encode ``value`` as a single URL path segment, including ``/``."""
    return quote(value, safe="")


class SpeachesClient:
    """
    Client for one running service instance.

    Args:
        base_url: Service base URL, e.g. ``http://127.0.0.1:28001``
        http_config: Per-call timeouts
        api_key: Optional key, sent as a bearer token on every request
        http_client: Pre-built ``httpx.Client`` to use instead of creating one
    """

    def __init__(
        self,
        base_url: str,
        http_config: Optional[HttpConfig] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.http_config = http_config or HttpConfig()
        self.api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(self.http_config.registry_timeout, connect=self.http_config.connect_timeout),
        )

    def __enter__(self) -> "SpeachesClient":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self._owns_client:
            self._client.close()

    def _timeout(self, seconds: float) -> httpx.Timeout:
        return httpx.Timeout(seconds, connect=min(seconds, self.http_config.connect_timeout))

    def _headers(self) -> Dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def health(self, timeout: Optional[float] = None) -> httpx.Response:
        """GET /health."""
        return self._client.get(
            self._url(HEALTH_PATH),
            headers=self._headers(),
            timeout=self._timeout(timeout or self.http_config.poll_timeout),
        )

    def get_registry(self, capability: CapabilityType) -> httpx.Response:
        """GET /v1/registry?task=<task> for one capability."""
        return self._client.get(
            self._url(REGISTRY_PATH),
            params={"task": capability.task},
            headers=self._headers(),
            timeout=self._timeout(self.http_config.registry_timeout),
        )

    def list_loaded_models(self, timeout: Optional[float] = None) -> httpx.Response:
        """GET /v1/models, the listing of models resident in the instance."""
        return self._client.get(
            self._url(MODELS_PATH),
            headers=self._headers(),
            timeout=self._timeout(timeout or self.http_config.poll_timeout),
        )

    def loaded_models_text(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Body of the loaded-models listing.

        Returns:
            Response text on 2xx, None on any other status
        """
        response = self.list_loaded_models(timeout=timeout)
        if not response.is_success:
            logger.debug(
                "Loaded models listing unavailable",
                extra={"status_code": response.status_code},
            )
            return None
        return response.text

    def is_model_loaded(self, model_id: str, timeout: Optional[float] = None) -> bool:
        """Whether ``model_id`` appears in the loaded-models listing."""
        text = self.loaded_models_text(timeout=timeout)
        return text is not None and model_id in text

    def trigger_load(self, model_id: str) -> httpx.Response:
        """POST /v1/models/{model_id} with no body to download and load a model."""
        return self._client.post(
            self._url(f"{MODELS_PATH}/{encode_path_segment(model_id)}"),
            headers=self._headers(),
            timeout=self._timeout(self.http_config.load_timeout),
        )
