"""Exceptions raised across the extraction pipeline.

Subclasses of :class:`ExtractionError` describe soft failures: the
orchestrator absorbs them into a low-confidence result instead of letting
them reach the HTTP layer. :class:`ConfigurationError` is the exception to
that rule and always surfaces to the operator.
"""

from __future__ import annotations


class ExtractionError(ValueError):
    """Raised when a document cannot be converted into structured fields."""


class InvalidImageError(ExtractionError):
    """Raised when an image payload does not decode to usable bytes."""


class VisionServiceError(ExtractionError):
    """Raised when the remote vision model fails, times out or answers with nothing."""


class ConfigurationError(RuntimeError):
    """Raised when the service is missing configuration required to call the model."""


class ScanStateError(ValueError):
    """Raised when a scan controller transition is not allowed from the current phase."""


class CameraUnavailableError(RuntimeError):
    """Raised when the camera stream cannot be opened or read."""
