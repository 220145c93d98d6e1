"""Client-side controller driving a document scan.

The scan flow is modelled as an immutable :class:`ScanState` and a set of
pure transition functions, so each step can be tested without a camera or a
server. :class:`ScanController` is the thin imperative shell around them: it
owns the camera stream and the HTTP client and feeds their outcomes into the
transitions.

Phases::

    idle -> (file_selected | camera_capturing) -> image_ready -> processing
         -> (extracted | manual_entry)
"""

from __future__ import annotations

import base64
import enum
import io
import logging
import random
import string
from dataclasses import dataclass, field, replace
from typing import Callable, Literal, Mapping, Optional, Protocol, Sequence

import fitz
import httpx
from PIL import Image

from .errors import CameraUnavailableError, ScanStateError
from .schemas import (
    FIELD_NAMES,
    WIRE_NAMES,
    ExtractedField,
    ExtractionFields,
    ExtractionMetadata,
    ExtractionQuality,
    ExtractionResult,
)
from .validation import assess_quality

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
CAPTURE_MIME = "image/jpeg"
CAPTURE_FILE_NAME = "capture.jpg"
CAPTURE_JPEG_QUALITY = 80
PDF_PREVIEW_DPI = 150

#: Confidence given to a field once a person has typed over it.
MANUAL_CONFIDENCE = 0.5

UNSUPPORTED_FILE_ERROR = "Unsupported file type. Please upload an image or a PDF document."
CAMERA_ERROR = "Unable to access camera. Please use file upload instead."
EXTRACTION_FAILED_ERROR = (
    "Failed to extract data from document. Please try again or enter details manually."
)
DEMO_NOTE = "Automatic extraction failed; demo values were filled in for manual correction."


class ScanPhase(str, enum.Enum):
    IDLE = "idle"
    FILE_SELECTED = "file_selected"
    CAMERA_CAPTURING = "camera_capturing"
    IMAGE_READY = "image_ready"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    MANUAL_ENTRY = "manual_entry"


@dataclass(frozen=True)
class ScanDocument:
    """The document selected or captured by the user."""

    kind: Literal["image", "pdf"]
    data: bytes
    file_name: str
    mime_type: str

    def as_data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)


@dataclass(frozen=True)
class ScanState:
    """Snapshot of the scan flow."""

    phase: ScanPhase = ScanPhase.IDLE
    document: Optional[ScanDocument] = None
    preview: Optional[str] = None
    result: Optional[ExtractionResult] = None
    quality: Optional[ExtractionQuality] = None
    error: Optional[str] = None
    edited_fields: frozenset[str] = field(default_factory=frozenset)


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64," + base64.b64encode(data).decode("ascii")


def is_supported_type(content_type: Optional[str]) -> bool:
    content_type = (content_type or "").lower()
    return content_type.startswith("image/") or content_type == PDF_MIME


def _require(state: ScanState, *phases: ScanPhase) -> None:
    if state.phase not in phases:
        allowed = ", ".join(phase.value for phase in phases)
        raise ScanStateError(f"Cannot leave phase '{state.phase.value}'; expected one of: {allowed}")


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def select_file(state: ScanState, file_name: str, content_type: Optional[str], data: bytes) -> ScanState:
    """Accept an uploaded file, or stay idle with an error for unsupported types."""

    _require(state, ScanPhase.IDLE)
    if not is_supported_type(content_type) or not data:
        return ScanState(error=UNSUPPORTED_FILE_ERROR)

    mime_type = (content_type or "").lower()
    kind: Literal["image", "pdf"] = "pdf" if mime_type == PDF_MIME else "image"
    document = ScanDocument(kind=kind, data=data, file_name=file_name, mime_type=mime_type)
    return ScanState(phase=ScanPhase.FILE_SELECTED, document=document)


def mark_ready(state: ScanState, preview: Optional[str]) -> ScanState:
    """Attach the preview shown to the user; the document is ready to send."""

    _require(state, ScanPhase.FILE_SELECTED)
    return replace(state, phase=ScanPhase.IMAGE_READY, preview=preview)


def open_camera(state: ScanState) -> ScanState:
    _require(state, ScanPhase.IDLE)
    return ScanState(phase=ScanPhase.CAMERA_CAPTURING)


def camera_failed(state: ScanState, message: str = CAMERA_ERROR) -> ScanState:
    _require(state, ScanPhase.IDLE, ScanPhase.CAMERA_CAPTURING)
    return ScanState(error=message)


def capture_frame(state: ScanState, jpeg: bytes) -> ScanState:
    """Turn a captured still into the document to process."""

    _require(state, ScanPhase.CAMERA_CAPTURING)
    document = ScanDocument(
        kind="image", data=jpeg, file_name=CAPTURE_FILE_NAME, mime_type=CAPTURE_MIME
    )
    return ScanState(
        phase=ScanPhase.IMAGE_READY, document=document, preview=document.as_data_url()
    )


def cancel_camera(state: ScanState) -> ScanState:
    _require(state, ScanPhase.CAMERA_CAPTURING)
    return ScanState()


def start_processing(state: ScanState) -> ScanState:
    _require(state, ScanPhase.IMAGE_READY)
    if state.document is None:
        raise ScanStateError("No document to process")
    return replace(state, phase=ScanPhase.PROCESSING, error=None)


def extraction_succeeded(state: ScanState, result: ExtractionResult) -> ScanState:
    _require(state, ScanPhase.PROCESSING)
    return replace(
        state,
        phase=ScanPhase.EXTRACTED,
        result=result,
        quality=assess_quality(result),
        error=None,
        edited_fields=frozenset(),
    )


def extraction_failed(
    state: ScanState, demo: ExtractionResult, message: str = EXTRACTION_FAILED_ERROR
) -> ScanState:
    """Fall back to an editable demo record instead of leaving the form empty."""

    _require(state, ScanPhase.PROCESSING)
    return replace(
        state,
        phase=ScanPhase.MANUAL_ENTRY,
        result=demo,
        quality=assess_quality(demo),
        error=message,
        edited_fields=frozenset(),
    )


def edit_field(state: ScanState, name: str, value: Optional[str]) -> ScanState:
    """Record a manual correction; the field drops to :data:`MANUAL_CONFIDENCE`.

    Clearing a field leaves it empty with zero confidence.
    """

    _require(state, ScanPhase.EXTRACTED, ScanPhase.MANUAL_ENTRY)
    if state.result is None:
        raise ScanStateError("No extraction result to edit")
    if name not in FIELD_NAMES:
        raise KeyError(f"Unknown field {name!r}")

    value = value or None
    confidence = MANUAL_CONFIDENCE if value is not None else 0.0
    result = state.result.with_field(name, value, confidence)
    source = state.result.metadata.source if state.result.metadata else "none"
    result = result.model_copy(
        update={"metadata": ExtractionMetadata(source=source, method="manual")}
    )
    return replace(
        state,
        phase=ScanPhase.MANUAL_ENTRY,
        result=result,
        quality=assess_quality(result),
        edited_fields=state.edited_fields | {name},
    )


def reset(state: ScanState) -> ScanState:
    return ScanState()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def render_pdf_first_page(pdf_bytes: bytes, dpi: int = PDF_PREVIEW_DPI) -> bytes:
    """Render the first page of a PDF to PNG bytes for the preview."""

    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        if doc.page_count == 0:
            raise ValueError("PDF has no pages")
        pix = doc[0].get_pixmap(matrix=fitz.Matrix(dpi / 72, dpi / 72))
        return pix.tobytes("png")


def build_demo_result() -> ExtractionResult:
    """Placeholder record shown when the server could not be reached."""

    token = "".join(random.choices(string.ascii_uppercase + string.digits, k=8))
    values = {
        "full_name": "Demo Student",
        "id_number": f"ID-{token}",
        "date_of_birth": "2005-01-15",
        "gender": "Not specified",
        "address": "Please enter address manually",
    }
    fields = ExtractionFields(
        **{name: ExtractedField(value=value, confidence=0.0) for name, value in values.items()}
    )
    return ExtractionResult(
        fields=fields,
        confidence=0.0,
        note=DEMO_NOTE,
        metadata=ExtractionMetadata(source="none", method="demo"),
    )


def merge_into_form(form: Mapping[str, str], result: ExtractionResult) -> dict[str, str]:
    """Copy extracted values into registration form data.

    Only non-empty extracted values overwrite what the form already holds.
    Form keys use the camelCase field names.
    """

    merged = dict(form)
    for name in FIELD_NAMES:
        key = WIRE_NAMES[name]
        value = result.fields.get(name).value
        merged[key] = value or form.get(key, "")
    return merged


# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------


class MediaTrack(Protocol):
    def stop(self) -> None:
        ...


class MediaStream(Protocol):
    def get_tracks(self) -> Sequence[MediaTrack]:
        ...

    def read_frame(self) -> Image.Image:
        ...


StreamOpener = Callable[[], MediaStream]


class CameraSession:
    """Exclusive owner of one camera stream.

    Tracks are stopped exactly once per opened stream, whether the session
    ends with a capture, a cancel or teardown.
    """

    def __init__(self, open_stream: StreamOpener) -> None:
        self._open_stream = open_stream
        self._stream: Optional[MediaStream] = None

    @property
    def active(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return
        try:
            self._stream = self._open_stream()
        except Exception as exc:
            raise CameraUnavailableError(CAMERA_ERROR) from exc

    def capture(self, quality: int = CAPTURE_JPEG_QUALITY) -> bytes:
        """Grab the current frame as JPEG bytes and release the stream."""

        if self._stream is None:
            raise CameraUnavailableError("Camera is not active")
        try:
            frame = self._stream.read_frame()
        except Exception as exc:
            raise CameraUnavailableError("Could not read a frame from the camera") from exc
        finally:
            self.stop()

        with io.BytesIO() as buffer:
            frame.convert("RGB").save(buffer, format="JPEG", quality=quality)
            return buffer.getvalue()

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        for track in stream.get_tracks():
            track.stop()

    def close(self) -> None:
        self.stop()

    def __enter__(self) -> "CameraSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class ScanController:
    """Runs the scan flow against the extraction endpoint."""

    def __init__(
        self,
        endpoint: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        open_stream: Optional[StreamOpener] = None,
        timeout: float = 30.0,
        on_extracted: Optional[Callable[[ExtractionResult], None]] = None,
    ) -> None:
        self.endpoint = endpoint
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._camera = CameraSession(open_stream) if open_stream is not None else None
        self._on_extracted = on_extracted
        self.state = ScanState()

    @property
    def camera_active(self) -> bool:
        return self._camera is not None and self._camera.active

    def select_file(self, file_name: str, content_type: Optional[str], data: bytes) -> ScanState:
        self.state = select_file(self.state, file_name, content_type, data)
        document = self.state.document
        if document is None:
            return self.state

        preview: Optional[str]
        if document.kind == "pdf":
            try:
                preview = to_data_url(render_pdf_first_page(document.data), "image/png")
            except (RuntimeError, ValueError) as exc:
                # The server only needs the PDF bytes; the preview is optional.
                logger.warning("Could not render preview for %s: %s", document.file_name, exc)
                preview = None
        else:
            preview = document.as_data_url()

        self.state = mark_ready(self.state, preview)
        return self.state

    def start_camera(self) -> ScanState:
        if self._camera is None:
            self.state = camera_failed(self.state)
            return self.state
        self.state = open_camera(self.state)
        try:
            self._camera.start()
        except CameraUnavailableError:
            logger.warning("Camera could not be opened", exc_info=True)
            self.state = camera_failed(self.state)
        return self.state

    def capture(self) -> ScanState:
        if self._camera is None:
            raise ScanStateError("No camera configured")
        _require(self.state, ScanPhase.CAMERA_CAPTURING)
        try:
            jpeg = self._camera.capture()
        except CameraUnavailableError:
            self.state = camera_failed(self.state)
            return self.state
        self.state = capture_frame(self.state, jpeg)
        return self.state

    def cancel_camera(self) -> ScanState:
        if self._camera is not None:
            self._camera.stop()
        self.state = cancel_camera(self.state)
        return self.state

    async def _submit(self, document: ScanDocument) -> ExtractionResult:
        if document.kind == "pdf":
            response = await self._client.post(
                self.endpoint,
                data={
                    "fileName": document.file_name,
                    "fileSize": str(len(document.data)),
                    "fileType": document.mime_type,
                },
                files={"pdf": (document.file_name, document.data, document.mime_type)},
            )
        else:
            response = await self._client.post(
                self.endpoint, data={"image": document.as_data_url()}
            )
        response.raise_for_status()
        return ExtractionResult.model_validate(response.json())

    async def process(self) -> ScanState:
        """Send the document for extraction and move to the review phase."""

        self.state = start_processing(self.state)
        document = self.state.document
        if document is None:
            raise ScanStateError("No document to process")
        try:
            result = await self._submit(document)
        except Exception:
            logger.exception("Extraction request failed, switching to manual entry")
            result = build_demo_result()
            self.state = extraction_failed(self.state, result)
        else:
            self.state = extraction_succeeded(self.state, result)

        if self._on_extracted is not None:
            self._on_extracted(result)
        return self.state

    def edit_field(self, name: str, value: Optional[str]) -> ScanState:
        self.state = edit_field(self.state, name, value)
        return self.state

    def clear(self) -> ScanState:
        if self._camera is not None:
            self._camera.stop()
        self.state = reset(self.state)
        return self.state

    async def aclose(self) -> None:
        if self._camera is not None:
            self._camera.close()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ScanController":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
