"""Pattern-based extraction used when the model answer cannot be parsed.

The extractor scans free text for the five identity fields with simple
regular expressions. It is independent of any AI response: it only needs
the text, so it can run on whatever the model returned, however malformed.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Pattern, Sequence

from .schemas import ExtractedField, ExtractionFields, ExtractionMetadata, ExtractionResult

logger = logging.getLogger(__name__)

FALLBACK_NOTE = "Used fallback extraction due to JSON parsing issues"

NAME_PATTERN = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+\b")
ID_PATTERN = re.compile(
    r"\b(?:ID|Passport|No\.?|Number)\s*[:#]?\s*([A-Z0-9\-]{6,20})\b", re.IGNORECASE
)
# Tried in order; the first pattern that matches wins.
DATE_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"\b(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})\b"),
    re.compile(r"\b(\d{4}[/\-]\d{1,2}[/\-]\d{1,2})\b"),
    re.compile(r"\b(?:DOB|Birth|Born)\s*[:#]?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})\b", re.IGNORECASE),
)
MALE_PATTERN = re.compile(r"\b(?:Male|M|Mr\.?)\b", re.IGNORECASE)
FEMALE_PATTERN = re.compile(r"\b(?:Female|F|Ms\.?|Mrs\.?)\b", re.IGNORECASE)
ADDRESS_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(
        r"\b\d+\s+[A-Za-z\s,]+(?:Street|St|Road|Rd|Avenue|Ave|Drive|Dr|Lane|Ln|Court|Ct|Place|Pl"
        r"|Circle|Cir|Boulevard|Blvd)\b[\s,]*[A-Za-z\s]*[,]*\s*[A-Z]{2}\s*\d{5}",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b\d+\s+[A-Za-z\s,]+(?:Street|St|Road|Rd|Avenue|Ave|Drive|Dr|Lane|Ln)\b",
        re.IGNORECASE,
    ),
)

BASE_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.9
# Added to the overall confidence for each field category that matched.
CONFIDENCE_BONUS = {
    "full_name": 0.2,
    "id_number": 0.2,
    "date_of_birth": 0.1,
    "gender": 0.1,
    "address": 0.1,
}
# Reported per field; independent of the overall accumulator.
FIELD_CONFIDENCE = {
    "full_name": 0.7,
    "id_number": 0.8,
    "date_of_birth": 0.6,
    "gender": 0.9,
    "address": 0.5,
}


def find_name(text: str) -> Optional[str]:
    """Return the first run of two or more capitalised words."""

    match = NAME_PATTERN.search(text)
    return match.group(0) if match else None


def find_id_number(text: str) -> Optional[str]:
    """Return the identifier following an ID/Passport/No/Number label."""

    match = ID_PATTERN.search(text)
    return match.group(1) if match else None


def find_date_of_birth(text: str) -> Optional[str]:
    for pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def find_gender(text: str) -> Optional[str]:
    if MALE_PATTERN.search(text):
        return "Male"
    if FEMALE_PATTERN.search(text):
        return "Female"
    return None


def find_address(text: str) -> Optional[str]:
    for pattern in ADDRESS_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def extract_with_regex(text: str) -> ExtractionResult:
    """Extract best-effort identity fields from ``text`` using patterns only.

    The overall confidence starts at ``0.3``, grows by a fixed bonus for each
    field category that matched and is capped at ``0.9``. Per-field
    confidences are fixed constants for populated fields and ``0`` otherwise.
    """

    logger.info("Using regex fallback for text: %s", text[:200])

    values = {
        "full_name": find_name(text),
        "id_number": find_id_number(text),
        "date_of_birth": find_date_of_birth(text),
        "gender": find_gender(text),
        "address": find_address(text),
    }

    confidence = BASE_CONFIDENCE
    for name, value in values.items():
        if value:
            confidence += CONFIDENCE_BONUS[name]
    confidence = round(min(MAX_CONFIDENCE, confidence), 4)

    fields = ExtractionFields(
        **{
            name: ExtractedField(value=value, confidence=FIELD_CONFIDENCE[name] if value else 0.0)
            for name, value in values.items()
        }
    )
    return ExtractionResult(
        fields=fields,
        confidence=confidence,
        raw_text=text,
        note=FALLBACK_NOTE,
        metadata=ExtractionMetadata(source="image", method="regex_fallback"),
    )
