"""Client and response decoding for the remote vision model.

The model is asked to answer with a strict JSON object, but in practice the
text it returns may be wrapped in markdown fences, surrounded by prose or
shaped differently than requested. The helpers in this module clean that
text, locate the JSON object inside it and classify the decoded payload
before any value is trusted.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import enum
import io
import json
import logging
import re
from dataclasses import dataclass, field
from statistics import fmean
from typing import Any, Mapping, Optional, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from PIL import Image, UnidentifiedImageError

from .config import Settings
from .errors import ConfigurationError, InvalidImageError, VisionServiceError
from .schemas import (
    CORE_FIELDS,
    FIELD_NAMES,
    WIRE_NAMES,
    ExtractedField,
    ExtractionFields,
    ExtractionMetadata,
    ExtractionResult,
)

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """
Analyze this ID document image and extract the following information in JSON format.

Extract these fields if present:
1. fullName - Full name of the person
2. idNumber - ID number, passport number, or identification number
3. dateOfBirth - Date of birth in YYYY-MM-DD format
4. gender - Gender (Male/Female/Other)
5. address - Full residential address

IMPORTANT INSTRUCTIONS:
- Return ONLY valid JSON with no additional text, no markdown formatting, no code blocks
- Use null for missing fields
- Format dates as YYYY-MM-DD
- If gender is not specified, use null
- Include a confidence score from 0.0 to 1.0 for the overall extraction

JSON structure:
{
  "fullName": "string or null",
  "idNumber": "string or null",
  "dateOfBirth": "string or null",
  "gender": "string or null",
  "address": "string or null",
  "confidence": number
}
""".strip()

DEFAULT_IMAGE_MIME = "image/jpeg"

# Confidence attached to each populated field of a structured model answer.
STRUCTURED_CONFIDENCE: Mapping[str, float] = {
    "full_name": 0.9,
    "id_number": 0.95,
    "date_of_birth": 0.8,
    "gender": 0.85,
    "address": 0.7,
}

_DATA_URL_PREFIX = re.compile(r"^data:(image/[\w.+-]+);base64,", re.IGNORECASE)
_JSON_FENCE = re.compile(r"```json\s*")
_FENCE = re.compile(r"```\s*")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class VisionClient(Protocol):
    """Anything able to run the extraction prompt against an image."""

    model_name: str

    async def generate(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        ...


class GeminiVisionClient:
    """Thin async wrapper around the Gemini ``generate_content`` endpoint."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.model_name = settings.gemini_model
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if not self.settings.has_api_key:
            raise ConfigurationError("Gemini API key not configured")
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.gemini_api_key)
        return self._client

    def _generation_config(self) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            temperature=self.settings.gemini_temperature,
            top_p=self.settings.gemini_top_p,
            top_k=self.settings.gemini_top_k,
            max_output_tokens=self.settings.gemini_max_output_tokens,
        )

    async def generate(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        """Send ``prompt`` and the image to the model and return its raw text."""

        client = self._get_client()
        contents = [prompt, genai_types.Part.from_bytes(data=image_bytes, mime_type=mime_type)]

        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self.model_name,
                    contents=contents,
                    config=self._generation_config(),
                ),
                timeout=self.settings.gemini_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise VisionServiceError(
                f"Vision model did not answer within {self.settings.gemini_timeout_seconds}s."
            ) from exc
        except genai_errors.APIError as exc:
            raise VisionServiceError(f"Vision model request failed: {exc}") from exc

        text = response.text or ""
        if not text.strip():
            raise VisionServiceError("Vision model returned an empty response.")
        return text


@dataclass(frozen=True)
class ImagePayload:
    """Decoded image bytes and the MIME type sent alongside them."""

    data: bytes
    mime_type: str


def _sniff_mime_type(data: bytes) -> Optional[str]:
    """Return the MIME type Pillow recognises for ``data``, if any."""

    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        return None


def decode_image_payload(image_data: str) -> ImagePayload:
    """Decode a base64 image, optionally prefixed with a ``data:`` URL tag."""

    text = (image_data or "").strip()
    declared: Optional[str] = None
    match = _DATA_URL_PREFIX.match(text)
    if match:
        declared = match.group(1).lower()
        text = text[match.end():]

    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Image payload is not valid base64 data.") from exc

    if not data:
        raise InvalidImageError("Image payload decoded to an empty buffer.")

    mime_type = _sniff_mime_type(data) or declared or DEFAULT_IMAGE_MIME
    return ImagePayload(data=data, mime_type=mime_type)


def decoded_image_size(image_data: str) -> int:
    """Number of bytes the base64 image payload decodes to, without decoding it."""

    text = (image_data or "").strip()
    match = _DATA_URL_PREFIX.match(text)
    if match:
        text = text[match.end():]
    return len(text) * 3 // 4 - len(text) + len(text.rstrip("="))


def clean_model_text(text: str) -> str:
    """Strip markdown code fences and surrounding whitespace from model output."""

    cleaned = _JSON_FENCE.sub("", text or "")
    cleaned = _FENCE.sub("", cleaned)
    return cleaned.strip()


def parse_model_text(text: str) -> Optional[Any]:
    """Parse ``text`` as JSON, retrying on the outermost ``{...}`` substring.

    Returns ``None`` when neither attempt yields valid JSON.
    """

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Model response is not plain JSON; searching for an embedded object")

    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.warning("Embedded JSON object in model response could not be parsed")
        return None


class PayloadStatus(str, enum.Enum):
    """Classification of a decoded model payload."""

    VALID = "valid"
    PARTIALLY_VALID = "partially_valid"
    INVALID = "invalid"


@dataclass
class DecodedPayload:
    """Field values recovered from a model payload and the problems found."""

    status: PayloadStatus
    values: dict[str, Optional[str]] = field(default_factory=dict)
    confidence: Optional[float] = None
    problems: list[str] = field(default_factory=list)

    @property
    def usable(self) -> bool:
        return self.status is not PayloadStatus.INVALID


def _decode_value(key: str, payload: Mapping[str, Any], problems: list[str]) -> Optional[str]:
    if key not in payload:
        problems.append(f"missing key '{key}'")
        return None

    value = payload[key]
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        problems.append(f"'{key}' was a number and has been converted to text")
        return str(value)
    problems.append(f"'{key}' has unsupported type {type(value).__name__}")
    return None


def _decode_confidence(payload: Mapping[str, Any], problems: list[str]) -> Optional[float]:
    value = payload.get("confidence")
    if value is None:
        problems.append("missing overall confidence")
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        problems.append("overall confidence is not a number")
        return None
    if not 0.0 <= float(value) <= 1.0:
        problems.append("overall confidence is outside [0, 1]")
        return None
    return float(value)


def decode_model_payload(payload: Any) -> DecodedPayload:
    """Classify a parsed model answer as valid, partially valid or invalid.

    A payload is invalid when it is not a JSON object or when none of the
    core fields (name, ID number, date of birth) carries a value, even if the
    JSON itself was well formed.
    """

    if not isinstance(payload, Mapping):
        return DecodedPayload(
            status=PayloadStatus.INVALID,
            problems=[f"expected a JSON object, got {type(payload).__name__}"],
        )

    problems: list[str] = []
    values = {name: _decode_value(WIRE_NAMES[name], payload, problems) for name in FIELD_NAMES}
    confidence = _decode_confidence(payload, problems)

    if not any(values[name] for name in CORE_FIELDS):
        problems.append("no core field (fullName, idNumber, dateOfBirth) was extracted")
        return DecodedPayload(
            status=PayloadStatus.INVALID, values=values, confidence=confidence, problems=problems
        )

    status = PayloadStatus.PARTIALLY_VALID if problems else PayloadStatus.VALID
    return DecodedPayload(status=status, values=values, confidence=confidence, problems=problems)


def build_structured_result(decoded: DecodedPayload, raw_text: str) -> ExtractionResult:
    """Wrap decoded values with the fixed per-field confidence constants."""

    if not decoded.usable:
        raise ValueError("Cannot build a result from an invalid payload.")

    fields = ExtractionFields(
        **{
            name: ExtractedField(
                value=decoded.values.get(name),
                confidence=STRUCTURED_CONFIDENCE[name] if decoded.values.get(name) else 0.0,
            )
            for name in FIELD_NAMES
        }
    )
    confidence = decoded.confidence
    if confidence is None:
        confidence = round(fmean(fields.get(name).confidence for name in FIELD_NAMES), 4)

    note = None
    if decoded.status is PayloadStatus.PARTIALLY_VALID:
        note = "Model response was partially valid: " + "; ".join(decoded.problems)

    return ExtractionResult(
        fields=fields,
        confidence=confidence,
        raw_text=raw_text,
        note=note,
        metadata=ExtractionMetadata(source="image", method="structured"),
    )
