"""Field validation and quality assessment of extraction results.

Nothing here blocks registration: the output is advisory and is shown next
to the pre-filled form so the user knows which values to double check.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Callable, Optional

from .schemas import (
    CORE_FIELDS,
    FIELD_NAMES,
    WIRE_NAMES,
    ConfidenceLevel,
    ExtractionQuality,
    ExtractionResult,
    FieldValidation,
)

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5
MIN_OVERALL_CONFIDENCE = 0.3
MIN_BIRTH_YEAR = 1900

FIELD_LABELS = {
    "full_name": "Full name",
    "id_number": "ID number",
    "date_of_birth": "Date of birth",
    "gender": "Gender",
    "address": "Address",
}
ALLOWED_GENDERS = ("Male", "Female", "Other")

_NAME_CHARSET = re.compile(r"^[A-Za-z\s\-'.]+$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def classify_confidence(confidence: float) -> ConfidenceLevel:
    if confidence >= HIGH_CONFIDENCE:
        return "high"
    if confidence >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def _check_full_name(value: str, issues: list[str], warnings: list[str]) -> None:
    if not 2 <= len(value) <= 100:
        issues.append("Full name must be between 2 and 100 characters")
    if not _NAME_CHARSET.match(value):
        warnings.append("Full name contains unusual characters")


def _check_id_number(value: str, issues: list[str], warnings: list[str]) -> None:
    if not 6 <= len(value) <= 20:
        issues.append("ID number must be between 6 and 20 characters")


def parse_birth_date(value: str) -> Optional[date]:
    """Parse ``YYYY-MM-DD`` or ``M/D/YYYY``; return ``None`` for anything else."""

    iso = _ISO_DATE.match(value)
    us = _US_DATE.match(value)
    try:
        if iso:
            year, month, day = (int(part) for part in iso.groups())
        elif us:
            month, day, year = (int(part) for part in us.groups())
        else:
            return None
        return date(year, month, day)
    except ValueError:
        return None


def _check_date_of_birth(value: str, issues: list[str], warnings: list[str]) -> None:
    if not (_ISO_DATE.match(value) or _US_DATE.match(value)):
        issues.append("Date of birth must use YYYY-MM-DD or M/D/YYYY format")
        return

    parsed = parse_birth_date(value)
    if parsed is None:
        issues.append("Date of birth is not a valid calendar date")
        return
    if parsed > datetime.now().date():
        issues.append("Date of birth cannot be in the future")
    if parsed.year < MIN_BIRTH_YEAR:
        issues.append(f"Date of birth year must be {MIN_BIRTH_YEAR} or later")


def _check_gender(value: str, issues: list[str], warnings: list[str]) -> None:
    if value not in ALLOWED_GENDERS:
        issues.append("Gender must be one of: " + ", ".join(ALLOWED_GENDERS))


def _check_address(value: str, issues: list[str], warnings: list[str]) -> None:
    if not 10 <= len(value) <= 500:
        issues.append("Address must be between 10 and 500 characters")


_CHECKS: dict[str, Callable[[str, list[str], list[str]], None]] = {
    "full_name": _check_full_name,
    "id_number": _check_id_number,
    "date_of_birth": _check_date_of_birth,
    "gender": _check_gender,
    "address": _check_address,
}


def validate_field(name: str, value: Optional[str], confidence: float) -> FieldValidation:
    """Check the shape and range of one field, independently of its confidence.

    Empty values are valid here; whether a field is required is decided by
    :func:`assess_quality`.
    """

    if name not in _CHECKS:
        raise KeyError(f"Unknown field {name!r}")

    issues: list[str] = []
    warnings: list[str] = []
    text = (value or "").strip()
    if text:
        _CHECKS[name](text, issues, warnings)

    return FieldValidation(
        is_valid=not issues,
        issues=issues,
        warnings=warnings,
        confidence_level=classify_confidence(confidence),
    )


def _summarise(
    missing: list[str], confidence_issues: list[str], format_issues: list[str], warnings: list[str]
) -> Optional[str]:
    lines: list[str] = []
    if missing:
        lines.append("• Missing required fields: " + ", ".join(missing))
    lines.extend(f"• {issue}" for issue in format_issues)
    lines.extend(f"• {issue}" for issue in confidence_issues)
    lines.extend(f"• {warning}" for warning in warnings)
    if not lines:
        return None
    return "Please review the extracted information:\n" + "\n".join(lines)


def assess_quality(result: ExtractionResult) -> ExtractionQuality:
    """Decide whether ``result`` can be presented without a warning."""

    missing: list[str] = []
    confidence_issues: list[str] = []
    format_issues: list[str] = []
    warnings: list[str] = []

    for name in FIELD_NAMES:
        extracted = result.fields.get(name)
        value = (extracted.value or "").strip()
        if not value:
            if name in CORE_FIELDS:
                missing.append(WIRE_NAMES[name])
            continue

        validation = validate_field(name, value, extracted.confidence)
        format_issues.extend(validation.issues)
        warnings.extend(validation.warnings)
        if validation.confidence_level == "low":
            confidence_issues.append(
                f"{FIELD_LABELS[name]} has low confidence ({round(extracted.confidence * 100)}%)"
            )

    if result.confidence < MIN_OVERALL_CONFIDENCE:
        confidence_issues.append(
            f"Overall extraction confidence is low ({round(result.confidence * 100)}%)"
        )

    return ExtractionQuality(
        is_valid=(
            not missing and not format_issues and result.confidence >= MIN_OVERALL_CONFIDENCE
        ),
        missing_fields=missing,
        confidence_issues=confidence_issues,
        format_issues=format_issues,
        warnings=warnings,
        warning=_summarise(missing, confidence_issues, format_issues, warnings),
    )
