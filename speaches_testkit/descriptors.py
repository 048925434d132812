"""
Data model for the speaches test service.

Capabilities, model descriptors, registry results and provisioning outcomes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

MODEL_ID_SEPARATOR = "/"
OFFICIAL_NAMESPACE = "speaches-ai/"


class CapabilityType(Enum):
    """Functional category of a model, mapped to its registry task label."""

    SPEECH_TO_TEXT = "automatic-speech-recognition"
    TEXT_TO_SPEECH = "text-to-speech"
    EMBEDDING = "speaker-embedding"

    @property
    def task(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: "str | CapabilityType") -> "CapabilityType":
        """
        Resolve a capability from an enum member, name, alias or task label.

        Accepts ``STT``, ``TTS`` and ``EMBEDDING`` (case-insensitive) as well as
        the full member names and task labels.

        Raises:
            ValueError: If the value names no capability
        """
        if isinstance(value, cls):
            return value

        key = str(value).strip()
        alias = _CAPABILITY_ALIASES.get(key.upper())
        if alias is not None:
            return alias
        for member in cls:
            if key.upper() == member.name or key.lower() == member.value:
                return member
        raise ValueError(f"Unknown capability: {value}")


_CAPABILITY_ALIASES = {
    "STT": CapabilityType.SPEECH_TO_TEXT,
    "TTS": CapabilityType.TEXT_TO_SPEECH,
    "EMBEDDING": CapabilityType.EMBEDDING,
}


@dataclass(frozen=True)
class ModelDescriptor:
    """A model id together with the capability it is provisioned for."""
    model_id: str
    capability: CapabilityType

    def __post_init__(self):
        if not self.model_id or not self.model_id.strip():
            raise ValueError("model_id must not be empty")

    @property
    def cache_dir_name(self) -> str:
        """Directory name used for this model in the huggingface hub cache."""
        return "models--" + self.model_id.replace(MODEL_ID_SEPARATOR, "--")

    @property
    def is_official(self) -> bool:
        return self.model_id.startswith(OFFICIAL_NAMESPACE)


@dataclass(frozen=True)
class RegistrySupportResult:
    """Model ids the registry recognizes for one capability at query time."""
    capability: CapabilityType
    model_ids: Tuple[str, ...] = ()
    query_failed: bool = False

    def __contains__(self, model_id: object) -> bool:
        return model_id in self.model_ids

    def __len__(self) -> int:
        return len(self.model_ids)

    @property
    def is_empty(self) -> bool:
        return not self.model_ids


class ProvisioningOutcome(Enum):
    """Result of one provisioning attempt."""
    ALREADY_LOADED = "already_loaded"
    LOADED_NOW = "loaded_now"
    UNSUPPORTED = "unsupported"
    LOAD_FAILED = "load_failed"
    READY_TIMEOUT = "ready_timeout"

    @property
    def is_fatal(self) -> bool:
        return self in (ProvisioningOutcome.UNSUPPORTED, ProvisioningOutcome.LOAD_FAILED)


class ProvisioningState(Enum):
    """States walked by the provisioning state machine."""
    START = "start"
    CHECK_REGISTRY = "check_registry"
    REGISTRY_UNAVAILABLE = "registry_unavailable"
    UNSUPPORTED = "unsupported"
    CHECK_LOADED = "check_loaded"
    ALREADY_LOADED = "already_loaded"
    TRIGGER_LOAD = "trigger_load"
    LOAD_FAILED = "load_failed"
    WAIT_READY = "wait_ready"
    READY = "ready"
    READY_TIMEOUT = "ready_timeout"


@dataclass
class ServiceInstance:
    """
    Handle to the shared service for one label.

    Only one instance exists per label in a process; it lives for the
    lifetime of the process.
    """
    label: str
    host: str
    port: int
    running: bool = True
    container_id: Optional[str] = None
    created: bool = field(default=False, compare=False)

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"http://{self.endpoint}"
