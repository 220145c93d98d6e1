"""FastAPI application exposing the ID document extraction endpoint."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import JSONResponse

from .config import Settings, get_settings, settings
from .errors import ConfigurationError
from .extraction import PDF_FAILURE_NOTE, extract_from_image, extract_from_pdf, extract_hybrid, failure_result
from .schemas import ErrorResponse, ExtractionResult, HealthResponse
from .vision import GeminiVisionClient, VisionClient, decoded_image_size

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Student ID Document Extraction API",
    version="0.1.0",
    description=(
        "Upload an image or PDF of an identity document to pre-fill the student "
        "registration form with name, ID number, date of birth, gender and address."
    ),
)

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


@app.exception_handler(HTTPException)
async def flat_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render errors as ``{"error": ...}`` instead of FastAPI's ``{"detail": ...}``."""

    if isinstance(exc.detail, dict):
        body = exc.detail
    else:
        body = {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


def get_vision_client(config: Settings = Depends(get_settings)) -> VisionClient:
    """Dependency that builds the client used to call the vision model."""

    return GeminiVisionClient(config)


def _require_api_key(config: Settings) -> None:
    if not config.has_api_key:
        logger.error("GEMINI_API_KEY is not set; refusing extraction request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Gemini API key not configured",
        )


def _check_size(size: int, config: Settings) -> None:
    if size > config.max_upload_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload exceeds the {config.max_upload_size} byte limit.",
        )


async def _extract_pdf(pdf: UploadFile, file_name: Optional[str], config: Settings) -> ExtractionResult:
    if pdf.size is not None:
        _check_size(pdf.size, config)
    try:
        contents = await pdf.read()
    except OSError:
        logger.exception("Unable to read uploaded PDF %r", pdf.filename)
        return failure_result(PDF_FAILURE_NOTE, source="pdf")
    finally:
        await pdf.close()

    _check_size(len(contents), config)
    return extract_from_pdf(contents, file_name or pdf.filename)


@app.post(
    "/api/ai-extract",
    response_model=ExtractionResult,
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
async def ai_extract(
    image: Optional[str] = Form(None, description="Base64 image, optionally as a data URL."),
    pdf: Optional[UploadFile] = File(None, description="PDF of the identity document."),
    file_name: Optional[str] = Form(None, alias="fileName"),
    file_size: Optional[str] = Form(None, alias="fileSize"),
    file_type: Optional[str] = Form(None, alias="fileType"),
    mode: Literal["structured", "hybrid"] = Form("structured"),
    config: Settings = Depends(get_settings),
    client: VisionClient = Depends(get_vision_client),
) -> ExtractionResult:
    """Extract identity fields from the submitted image or PDF.

    Extraction problems never produce an error status: the response is a
    well-formed result with a low confidence instead. Only a missing API key
    (500) and a request without any document (400) are reported as errors.
    """

    _require_api_key(config)

    try:
        if pdf is not None:
            logger.info(
                "Received PDF %r (declared size=%s, type=%s)", file_name, file_size, file_type
            )
            return await _extract_pdf(pdf, file_name, config)

        if image:
            _check_size(decoded_image_size(image), config)
            if mode == "hybrid":
                return await extract_hybrid(image, client)
            return await extract_from_image(image, client)
    except HTTPException:
        raise
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    except Exception as exc:
        logger.exception("AI processing failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "AI processing failed", "details": str(exc)},
        ) from exc

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="No image or PDF provided",
    )


@app.get("/api/ai-extract", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def ai_extract_capabilities(config: Settings = Depends(get_settings)) -> HealthResponse:
    """Describe the extraction service and the model it calls."""

    return HealthResponse(model=config.gemini_model)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """Simple endpoint to verify that the API is running."""

    return {"status": "ok"}
