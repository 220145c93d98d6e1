"""Pydantic models used by the document extraction API and scan controller."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

#: Attribute names of the five identity fields, in display order.
FIELD_NAMES: tuple[str, ...] = (
    "full_name",
    "id_number",
    "date_of_birth",
    "gender",
    "address",
)

#: Fields an extraction must contain to be considered non-empty.
CORE_FIELDS: tuple[str, ...] = ("full_name", "id_number", "date_of_birth")

#: camelCase keys used on the wire and in the model prompt.
WIRE_NAMES: dict[str, str] = {name: to_camel(name) for name in FIELD_NAMES}

ExtractionSource = Literal["image", "pdf", "none"]
ExtractionMethod = Literal[
    "structured",
    "regex_fallback",
    "placeholder",
    "failed",
    "hybrid",
    "demo",
    "manual",
]
ConfidenceLevel = Literal["high", "medium", "low"]


class CamelModel(BaseModel):
    """Base model serialising attributes with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractedField(CamelModel):
    """A single recognised attribute and the heuristic trust placed in it."""

    value: Optional[str] = Field(None, description="Extracted text, or null when absent.")
    confidence: float = Field(
        0.0,
        ge=0.0,
        le=1.0,
        description="Heuristic confidence in [0, 1]; not a calibrated probability.",
    )


class ExtractionFields(CamelModel):
    """Per-field envelope for the five identity attributes."""

    full_name: ExtractedField = Field(default_factory=ExtractedField)
    id_number: ExtractedField = Field(default_factory=ExtractedField)
    date_of_birth: ExtractedField = Field(default_factory=ExtractedField)
    gender: ExtractedField = Field(default_factory=ExtractedField)
    address: ExtractedField = Field(default_factory=ExtractedField)

    def get(self, name: str) -> ExtractedField:
        if name not in FIELD_NAMES:
            raise KeyError(name)
        return getattr(self, name)

    def values(self) -> dict[str, Optional[str]]:
        return {name: self.get(name).value for name in FIELD_NAMES}


class ExtractionMetadata(CamelModel):
    """Describes how a result was produced."""

    source: ExtractionSource = Field(..., description="Kind of document the result came from.")
    method: ExtractionMethod = Field(..., description="Extraction path that produced the values.")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExtractionResult(CamelModel):
    """Uniform envelope returned for every extraction, successful or not.

    The flat ``fullName``/``idNumber``/... keys always mirror the values held
    in :attr:`fields`; they are derived rather than stored so the two views
    cannot drift apart when a field is corrected by hand.
    """

    fields: ExtractionFields = Field(default_factory=ExtractionFields)
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="Overall extraction confidence.")
    raw_text: str = Field("", description="Raw or cleaned text returned by the model.")
    note: Optional[str] = Field(None, description="Human-readable remark about degraded paths.")
    metadata: Optional[ExtractionMetadata] = None

    @computed_field(alias="fullName")  # type: ignore[prop-decorator]
    @property
    def full_name(self) -> Optional[str]:
        return self.fields.full_name.value

    @computed_field(alias="idNumber")  # type: ignore[prop-decorator]
    @property
    def id_number(self) -> Optional[str]:
        return self.fields.id_number.value

    @computed_field(alias="dateOfBirth")  # type: ignore[prop-decorator]
    @property
    def date_of_birth(self) -> Optional[str]:
        return self.fields.date_of_birth.value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def gender(self) -> Optional[str]:
        return self.fields.gender.value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def address(self) -> Optional[str]:
        return self.fields.address.value

    def with_field(self, name: str, value: Optional[str], confidence: float) -> "ExtractionResult":
        """Return a copy with one field replaced."""

        self.fields.get(name)
        updated = self.fields.model_copy(
            update={name: ExtractedField(value=value, confidence=confidence)}
        )
        return self.model_copy(update={"fields": updated})


class FieldValidation(CamelModel):
    """Outcome of checking one extracted field's shape and range."""

    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    confidence_level: ConfidenceLevel


class ExtractionQuality(CamelModel):
    """Advisory judgement over an :class:`ExtractionResult`."""

    is_valid: bool
    missing_fields: list[str] = Field(default_factory=list)
    confidence_issues: list[str] = Field(default_factory=list)
    format_issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    warning: Optional[str] = Field(None, description="Bullet-style summary of every issue found.")


class HealthResponse(CamelModel):
    """Static capability descriptor of the extraction route."""

    status: str = "ok"
    service: str = "Gemini AI Document Extraction"
    supported_features: list[str] = Field(default_factory=lambda: ["image_analysis"])
    model: str


class ErrorResponse(BaseModel):
    """Error envelope returned for configuration and request errors."""

    error: str
    details: Optional[str] = None
