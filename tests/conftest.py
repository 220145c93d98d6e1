"""Shared fixtures for the extraction service tests."""

from __future__ import annotations

import base64
from io import BytesIO
from typing import Iterator, Optional

import fitz
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from idscan.config import Settings, get_settings
from idscan.main import app, get_vision_client

VALID_MODEL_RESPONSE = """```json
{
  "fullName": "Jane Doe",
  "idNumber": "X1234567",
  "dateOfBirth": "2004-06-15",
  "gender": "Female",
  "address": "42 Elm Street, Portland, OR 97201",
  "confidence": 0.92
}
```"""


class FakeVisionClient:
    """Stand-in for the Gemini client that replays a canned answer."""

    model_name = "fake-vision"

    def __init__(self, response: str = VALID_MODEL_RESPONSE, error: Optional[Exception] = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, bytes, str]] = []

    async def generate(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        self.calls.append((prompt, image_bytes, mime_type))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture()
def sample_image_bytes() -> bytes:
    """Return an in-memory PNG image standing in for a scanned ID card."""

    image = Image.new("RGB", (320, 200), color=(240, 240, 240))
    with BytesIO() as buffer:
        image.save(buffer, format="PNG")
        return buffer.getvalue()


@pytest.fixture()
def sample_image_data_url(sample_image_bytes: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(sample_image_bytes).decode("ascii")


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Return a one-page PDF with some identity text on it."""

    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Jane Doe  ID: X1234567")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture()
def settings() -> Settings:
    return Settings(gemini_api_key="test-key", gemini_model="gemini-1.5-flash")


@pytest.fixture()
def fake_vision() -> FakeVisionClient:
    return FakeVisionClient()


@pytest.fixture()
def api_client(settings: Settings, fake_vision: FakeVisionClient) -> Iterator[TestClient]:
    """Test client wired to the fake vision model and test settings."""

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_vision_client] = lambda: fake_vision
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
