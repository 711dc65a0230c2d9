"""Shared fixtures for all tests."""

import pytest
from fastapi.testclient import TestClient

from zaytoon.core.config import Settings
from zaytoon.main import create_app

MB = 1024 * 1024


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def settings(upload_dir) -> Settings:
    return Settings(api_key="test-gemini-key", upload_dir=upload_dir)


@pytest.fixture
def fake_relay(mocker):
    """Stand-in for GeminiRelay; the model is never called for real."""
    relay = mocker.MagicMock()
    relay.model_name = "test-model"
    relay.chat = mocker.AsyncMock(return_value="Use neem oil.")
    relay.generate_with_image = mocker.AsyncMock(return_value="Likely leaf blight.")
    return relay


@pytest.fixture
def client(settings, fake_relay):
    with TestClient(create_app(settings=settings, relay=fake_relay)) as c:
        yield c


@pytest.fixture
def jpeg_bytes():
    """Build a fake JPEG payload of ``size`` bytes (content is never decoded)."""
    def _make(size: int = 1 * MB) -> bytes:
        header = b"\xff\xd8\xff\xe0"
        return header + b"\x00" * (size - len(header))
    return _make
