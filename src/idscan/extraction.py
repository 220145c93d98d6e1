"""Orchestration of a single document extraction.

Every public coroutine here returns an :class:`ExtractionResult`. Soft
failures (undecodable images, model errors, unparseable answers) are logged
and turned into an explicitly low-confidence result so the registration
form always has something to show. Only :class:`ConfigurationError`
propagates.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .errors import ConfigurationError, ExtractionError
from .fallback import extract_with_regex
from .schemas import (
    FIELD_NAMES,
    ExtractedField,
    ExtractionFields,
    ExtractionMetadata,
    ExtractionResult,
    ExtractionSource,
)
from .vision import (
    EXTRACTION_PROMPT,
    VisionClient,
    build_structured_result,
    clean_model_text,
    decode_image_payload,
    decode_model_payload,
    parse_model_text,
)

logger = logging.getLogger(__name__)

FAILURE_CONFIDENCE = 0.1
PDF_CONFIDENCE = 0.2
PDF_NAME_CONFIDENCE = 0.5
DEFAULT_PDF_NAME = "document.pdf"

IMAGE_FAILURE_NOTE = "Failed to process image with AI"
PDF_FAILURE_NOTE = "Failed to process PDF"
PDF_PLACEHOLDER_NOTE = (
    "PDF processing requires additional setup. For best results, please use image files."
)

_EXTENSION = re.compile(r"\.[^/.]+$")


def failure_result(note: str, source: ExtractionSource = "image") -> ExtractionResult:
    """Return the empty, low-confidence envelope used when extraction fails."""

    return ExtractionResult(
        fields=ExtractionFields(),
        confidence=FAILURE_CONFIDENCE,
        raw_text="",
        note=note,
        metadata=ExtractionMetadata(source=source, method="failed"),
    )


def strip_extension(file_name: str) -> str:
    return _EXTENSION.sub("", file_name)


async def run_vision_extraction(image_data: str, client: VisionClient) -> ExtractionResult:
    """Run the image through the model, falling back to regex parsing.

    Raises :class:`ExtractionError` subclasses for failures that happen
    before a model answer is available.
    """

    payload = decode_image_payload(image_data)
    raw = await client.generate(EXTRACTION_PROMPT, payload.data, payload.mime_type)
    text = clean_model_text(raw)
    logger.debug("Cleaned model response: %s", text)

    parsed = parse_model_text(text)
    if parsed is None:
        return extract_with_regex(text)

    decoded = decode_model_payload(parsed)
    if not decoded.usable:
        logger.warning("Rejected model payload: %s", "; ".join(decoded.problems))
        return extract_with_regex(text)

    return build_structured_result(decoded, text)


async def extract_from_image(image_data: str, client: VisionClient) -> ExtractionResult:
    """Extract identity fields from a base64 image; never raises for soft failures."""

    try:
        return await run_vision_extraction(image_data, client)
    except ConfigurationError:
        raise
    except ExtractionError as exc:
        logger.warning("Image extraction failed: %s", exc)
    except Exception:
        logger.exception("Unexpected error while extracting image data")
    return failure_result(IMAGE_FAILURE_NOTE, source="image")


def extract_from_pdf(pdf_bytes: bytes, file_name: Optional[str] = None) -> ExtractionResult:
    """Return the placeholder result used for PDFs until real OCR is wired in.

    Only the file name is used: it becomes the full name guess and every
    other field stays empty.
    """

    name = strip_extension(file_name or DEFAULT_PDF_NAME).strip() or None
    logger.info(
        "PDF %r (%d bytes) handled in placeholder mode; no OCR is performed",
        file_name,
        len(pdf_bytes),
    )
    fields = ExtractionFields(
        full_name=ExtractedField(value=name, confidence=PDF_NAME_CONFIDENCE if name else 0.0)
    )
    return ExtractionResult(
        fields=fields,
        confidence=PDF_CONFIDENCE,
        raw_text="",
        note=PDF_PLACEHOLDER_NOTE,
        metadata=ExtractionMetadata(source="pdf", method="placeholder"),
    )


def merge_hybrid(regex_result: ExtractionResult, vision_result: ExtractionResult) -> ExtractionResult:
    """Combine a regex result with a vision result.

    Fields come from the vision result when it has a value and from the
    regex result otherwise; the overall confidence is the larger of the two.
    """

    merged = {}
    for name in FIELD_NAMES:
        vision_field = vision_result.fields.get(name)
        merged[name] = vision_field if vision_field.value else regex_result.fields.get(name)

    return ExtractionResult(
        fields=ExtractionFields(**merged),
        confidence=max(regex_result.confidence, vision_result.confidence),
        raw_text=vision_result.raw_text,
        note=vision_result.note,
        metadata=ExtractionMetadata(source="image", method="hybrid"),
    )


async def extract_hybrid(image_data: str, client: VisionClient) -> ExtractionResult:
    """Run the regex extractor and the vision model, then merge their results.

    The regex pass runs before any model text exists, so it only ever sees
    an empty string.
    """

    regex_result = extract_with_regex("")
    vision_result = await extract_from_image(image_data, client)
    return merge_hybrid(regex_result, vision_result)
