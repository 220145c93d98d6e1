"""Tests for field validation and quality assessment."""

from __future__ import annotations

from typing import Optional

import pytest

from idscan.schemas import ExtractedField, ExtractionFields, ExtractionResult
from idscan.validation import assess_quality, classify_confidence, validate_field

GOOD_VALUES = {
    "full_name": "Jane Doe",
    "id_number": "X1234567",
    "date_of_birth": "2004-06-15",
    "gender": "Female",
    "address": "42 Elm Street, Portland, OR 97201",
}


def make_result(confidence: float = 0.9, field_confidence: float = 0.9, **overrides: Optional[str]) -> ExtractionResult:
    values = {**GOOD_VALUES, **overrides}
    fields = ExtractionFields(
        **{
            name: ExtractedField(value=value, confidence=field_confidence if value else 0.0)
            for name, value in values.items()
        }
    )
    return ExtractionResult(fields=fields, confidence=confidence)


def test_complete_result_is_valid_without_warning() -> None:
    quality = assess_quality(make_result())

    assert quality.is_valid
    assert quality.missing_fields == []
    assert quality.format_issues == []
    assert quality.warning is None


def test_future_birth_date_is_a_format_issue_regardless_of_confidence() -> None:
    quality = assess_quality(make_result(confidence=1.0, field_confidence=1.0, date_of_birth="2099-01-01"))

    assert not quality.is_valid
    assert "Date of birth cannot be in the future" in quality.format_issues


def test_missing_id_number_invalidates_result() -> None:
    quality = assess_quality(make_result(id_number=None))

    assert quality.missing_fields == ["idNumber"]
    assert not quality.is_valid
    assert quality.warning is not None and "Missing required fields: idNumber" in quality.warning


def test_optional_fields_may_be_missing() -> None:
    quality = assess_quality(make_result(gender=None, address=None))

    assert quality.is_valid


def test_low_overall_confidence_invalidates_result() -> None:
    quality = assess_quality(make_result(confidence=0.2))

    assert not quality.is_valid
    assert quality.format_issues == []


def test_low_field_confidence_is_reported_but_advisory() -> None:
    quality = assess_quality(make_result(field_confidence=0.4))

    assert len(quality.confidence_issues) == 5
    assert quality.is_valid


@pytest.mark.parametrize(
    ("name", "value", "expected_valid"),
    [
        ("full_name", "J", False),
        ("full_name", "Mary-Jane O'Neil Jr.", True),
        ("id_number", "12345", False),
        ("id_number", "A" * 21, False),
        ("id_number", "AB-123456", True),
        ("date_of_birth", "3/7/1999", True),
        ("date_of_birth", "1899-12-31", False),
        ("date_of_birth", "31/12/1990", False),
        ("date_of_birth", "1990.01.01", False),
        ("gender", "Other", True),
        ("gender", "Not specified", False),
        ("address", "Short St", False),
        ("address", "x" * 501, False),
        ("address", None, True),
    ],
)
def test_validate_field_rules(name: str, value: Optional[str], expected_valid: bool) -> None:
    assert validate_field(name, value, 0.9).is_valid is expected_valid


def test_unusual_name_characters_are_flagged_without_invalidating() -> None:
    validation = validate_field("full_name", "J0hn Sm1th", 0.9)

    assert validation.is_valid
    assert validation.warnings == ["Full name contains unusual characters"]


def test_validate_field_is_idempotent() -> None:
    first = validate_field("date_of_birth", "2099-01-01", 0.55)
    second = validate_field("date_of_birth", "2099-01-01", 0.55)

    assert first == second
    assert first.confidence_level == "medium"


def test_validate_field_rejects_unknown_names() -> None:
    with pytest.raises(KeyError):
        validate_field("email", "a@b.c", 1.0)


@pytest.mark.parametrize(
    ("confidence", "level"),
    [(0.95, "high"), (0.8, "high"), (0.79, "medium"), (0.5, "medium"), (0.49, "low"), (0.0, "low")],
)
def test_classify_confidence(confidence: float, level: str) -> None:
    assert classify_confidence(confidence) == level
