"""
Model id extraction from loosely structured service responses.

The registry and model listing endpoints do not guarantee a response
schema. Each known shape has its own decoder; decoders are tried in a fixed
precedence and the first one that yields at least one id wins. Nothing in
this module raises to the caller: when no decoder matches the result is an
empty list.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, StrictStr, TypeAdapter, ValidationError

from speaches_testkit.descriptors import MODEL_ID_SEPARATOR
from speaches_testkit.errors import ResponseParseError

logger = logging.getLogger(__name__)

_NOT_JSON = object()

_LOOSE_ID_PATTERN = re.compile(r'"id"\s*:\s*"([^"]+/[^"]+)"\s*[,}]')

# Any of these on a non-blank line means the body is not a plain id list
_NON_ID_CHARS = re.compile(r'[\s{}\[\]"<>]')

_OBJECT_ARRAY = TypeAdapter(List[Dict[str, Any]])
_STRING_ARRAY = TypeAdapter(List[StrictStr])


class _SingleObject(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: StrictStr


class _ModelsWrapper(BaseModel):
    model_config = ConfigDict(extra="allow")
    models: Any = None
    data: Any = None


class ResponseShape(Enum):
    """Known response shapes, in decoding precedence."""
    OBJECT_ARRAY_WITH_ID = "object_array_with_id"
    LOOSE_ID_SCAN = "loose_id_scan"
    STRING_ARRAY = "string_array"
    MODELS_WRAPPER = "models_wrapper"
    SINGLE_OBJECT = "single_object"
    PLAIN_TEXT_LINES = "plain_text_lines"


@dataclass(frozen=True)
class Extraction:
    """Ids recovered from a payload and the shape that produced them."""
    shape: Optional[ResponseShape]
    model_ids: List[str]


def _unique(values: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates, keeping first-occurrence order."""
    seen = set()
    result = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return _NOT_JSON


def _require_json(document: Any, shape: ResponseShape) -> Any:
    if document is _NOT_JSON:
        raise ResponseParseError(f"{shape.value}: payload is not JSON")
    return document


class Decoder:
    """Decoder for one response shape."""

    shape: ResponseShape

    def decode(self, text: str, document: Any) -> List[str]:
        """
        Decode ids from a payload.

        Args:
            text: Raw response text
            document: Parsed JSON document, or the not-JSON sentinel

        Returns:
            Ids in document order, de-duplicated (possibly empty)

        Raises:
            ResponseParseError: If the payload does not have this shape
        """
        raise NotImplementedError


class ObjectArrayDecoder(Decoder):
    """``[{"id": "org/model", ...}, ...]``, top-level ids containing the separator."""

    shape = ResponseShape.OBJECT_ARRAY_WITH_ID

    def decode(self, text: str, document: Any) -> List[str]:
        document = _require_json(document, self.shape)
        try:
            items = _OBJECT_ARRAY.validate_python(document)
        except ValidationError as e:
            raise ResponseParseError(f"{self.shape.value}: {e.error_count()} validation errors") from e

        # Nested objects (voices and the like) carry ids without a separator
        return _unique(
            item["id"]
            for item in items
            if isinstance(item.get("id"), str) and MODEL_ID_SEPARATOR in item["id"]
        )


class LooseIdScanDecoder(Decoder):
    """Any ``"id": "org/model"`` pair anywhere in the text."""

    shape = ResponseShape.LOOSE_ID_SCAN

    def decode(self, text: str, document: Any) -> List[str]:
        return _unique(match.group(1) for match in _LOOSE_ID_PATTERN.finditer(text))


class StringArrayDecoder(Decoder):
    """``["org/model", ...]``"""

    shape = ResponseShape.STRING_ARRAY

    def decode(self, text: str, document: Any) -> List[str]:
        document = _require_json(document, self.shape)
        try:
            return _unique(_STRING_ARRAY.validate_python(document))
        except ValidationError as e:
            raise ResponseParseError(f"{self.shape.value}: {e.error_count()} validation errors") from e


class ModelsWrapperDecoder(Decoder):
    """``{"models": <shape>}`` or ``{"data": <shape>}``, decoded recursively."""

    shape = ResponseShape.MODELS_WRAPPER

    def decode(self, text: str, document: Any) -> List[str]:
        document = _require_json(document, self.shape)
        if not isinstance(document, dict):
            raise ResponseParseError(f"{self.shape.value}: payload is not an object")
        try:
            wrapper = _ModelsWrapper.model_validate(document)
        except ValidationError as e:
            raise ResponseParseError(f"{self.shape.value}: {e.error_count()} validation errors") from e

        inner = wrapper.models if wrapper.models is not None else wrapper.data
        if inner is None:
            raise ResponseParseError(f"{self.shape.value}: no models key")

        extraction = _run(_WRAPPED_DECODERS, json.dumps(inner), inner)
        return extraction.model_ids


class SingleObjectDecoder(Decoder):
    """``{"id": "model", ...}``"""

    shape = ResponseShape.SINGLE_OBJECT

    def decode(self, text: str, document: Any) -> List[str]:
        document = _require_json(document, self.shape)
        if not isinstance(document, dict):
            raise ResponseParseError(f"{self.shape.value}: payload is not an object")
        try:
            return _unique([_SingleObject.model_validate(document).id])
        except ValidationError as e:
            raise ResponseParseError(f"{self.shape.value}: no string id field") from e


class PlainTextLinesDecoder(Decoder):
    """One id per line, for non-JSON payloads."""

    shape = ResponseShape.PLAIN_TEXT_LINES

    def decode(self, text: str, document: Any) -> List[str]:
        if document is not _NOT_JSON:
            raise ResponseParseError(f"{self.shape.value}: payload is JSON")

        lines = [line for line in (raw.strip() for raw in text.splitlines()) if line]
        for line in lines:
            if _NON_ID_CHARS.search(line):
                raise ResponseParseError(f"{self.shape.value}: line is not a model id: {line[:80]!r}")
        return _unique(lines)


DECODERS: Sequence[Decoder] = (
    ObjectArrayDecoder(),
    LooseIdScanDecoder(),
    StringArrayDecoder(),
    ModelsWrapperDecoder(),
    SingleObjectDecoder(),
    PlainTextLinesDecoder(),
)

_WRAPPED_DECODERS: Sequence[Decoder] = DECODERS[:4]


def _run(decoders: Sequence[Decoder], text: str, document: Any) -> Extraction:
    for decoder in decoders:
        try:
            model_ids = decoder.decode(text, document)
        except ResponseParseError as e:
            logger.debug("Decoder rejected payload", extra={"shape": decoder.shape.value, "reason": str(e)})
            continue
        if model_ids:
            return Extraction(shape=decoder.shape, model_ids=model_ids)
    return Extraction(shape=None, model_ids=[])


def extract(text: Optional[str]) -> Extraction:
    """
    Recover model ids from a response body of unknown shape.

    Args:
        text: Raw response text

    Returns:
        Extraction naming the matching shape, or an empty extraction with no
        shape when every decoder rejects the payload
    """
    if not text or not text.strip():
        return Extraction(shape=None, model_ids=[])

    text = text.strip()
    try:
        return _run(DECODERS, text, _parse_json(text))
    except RecursionError:
        logger.warning("Response nested too deeply to decode", extra={"length": len(text)})
        return Extraction(shape=None, model_ids=[])


def extract_model_ids(text: Optional[str]) -> List[str]:
    """Best-effort ordered, de-duplicated list of model ids in ``text``."""
    return extract(text).model_ids
