"""Tests for the HTTP extraction endpoint."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient
from starlette.datastructures import UploadFile
from conftest import FakeVisionClient

from idscan.config import Settings, get_settings
from idscan.extraction import IMAGE_FAILURE_NOTE, PDF_PLACEHOLDER_NOTE
from idscan.main import app, get_vision_client
from idscan.errors import VisionServiceError


def test_image_extraction_returns_flat_and_per_field_values(
    api_client: TestClient, sample_image_data_url: str
) -> None:
    response = api_client.post("/api/ai-extract", data={"image": sample_image_data_url})

    assert response.status_code == 200
    body = response.json()
    assert body["fullName"] == "Jane Doe"
    assert body["idNumber"] == "X1234567"
    assert body["dateOfBirth"] == "2004-06-15"
    assert body["gender"] == "Female"
    assert body["fields"]["idNumber"] == {"value": "X1234567", "confidence": 0.95}
    assert body["fields"]["address"]["confidence"] == 0.7
    assert body["confidence"] == 0.92
    assert "rawText" in body
    assert body["metadata"]["method"] == "structured"


def test_model_failure_still_returns_200(
    api_client: TestClient, fake_vision: FakeVisionClient, sample_image_data_url: str
) -> None:
    fake_vision.error = VisionServiceError("model unavailable")

    response = api_client.post("/api/ai-extract", data={"image": sample_image_data_url})

    assert response.status_code == 200
    body = response.json()
    assert body["confidence"] == 0.1
    assert body["note"] == IMAGE_FAILURE_NOTE
    assert body["fullName"] is None


def test_hybrid_mode(api_client: TestClient, sample_image_data_url: str) -> None:
    response = api_client.post(
        "/api/ai-extract", data={"image": sample_image_data_url, "mode": "hybrid"}
    )

    assert response.status_code == 200
    assert response.json()["metadata"]["method"] == "hybrid"


def test_pdf_upload_returns_placeholder(api_client: TestClient, sample_pdf_bytes: bytes) -> None:
    response = api_client.post(
        "/api/ai-extract",
        data={"fileName": "passport_scan.pdf", "fileSize": str(len(sample_pdf_bytes)), "fileType": "application/pdf"},
        files={"pdf": ("passport_scan.pdf", sample_pdf_bytes, "application/pdf")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["fullName"] == "passport_scan"
    assert body["idNumber"] is None
    assert body["dateOfBirth"] is None
    assert body["confidence"] == 0.2
    assert body["note"] == PDF_PLACEHOLDER_NOTE


def test_missing_document_is_bad_request(api_client: TestClient) -> None:
    response = api_client.post("/api/ai-extract", data={"mode": "structured"})

    assert response.status_code == 400
    assert response.json() == {"error": "No image or PDF provided"}


def test_oversized_image_is_rejected(api_client: TestClient, settings: Settings) -> None:
    settings.max_upload_size = 10

    response = api_client.post("/api/ai-extract", data={"image": "A" * 64})

    assert response.status_code == 413
    assert "error" in response.json()


def test_image_limit_applies_to_decoded_bytes(
    api_client: TestClient, settings: Settings, fake_vision: FakeVisionClient
) -> None:
    settings.max_upload_size = 100
    image = "data:image/png;base64," + "QUFB" * 30  # 120 characters, 90 bytes decoded

    response = api_client.post("/api/ai-extract", data={"image": image})

    assert response.status_code == 200
    assert len(fake_vision.calls) == 1


@patch.object(UploadFile, "read", new_callable=AsyncMock)
def test_oversized_pdf_is_rejected_before_reading(
    mock_read: AsyncMock, api_client: TestClient, settings: Settings, sample_pdf_bytes: bytes
) -> None:
    settings.max_upload_size = 10

    response = api_client.post(
        "/api/ai-extract",
        files={"pdf": ("passport_scan.pdf", sample_pdf_bytes, "application/pdf")},
    )

    assert response.status_code == 413
    mock_read.assert_not_called()


def test_missing_api_key_is_configuration_error(sample_image_data_url: str) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(gemini_api_key="")
    app.dependency_overrides[get_vision_client] = lambda: FakeVisionClient()
    try:
        response = TestClient(app).post("/api/ai-extract", data={"image": sample_image_data_url})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": "Gemini API key not configured"}


def test_capability_descriptor(api_client: TestClient) -> None:
    response = api_client.get("/api/ai-extract")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "service": "Gemini AI Document Extraction",
        "supportedFeatures": ["image_analysis"],
        "model": "gemini-1.5-flash",
    }


def test_health_check(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
