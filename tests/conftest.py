"""Shared pytest fixtures for imagegate tests."""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from imagegate.api.main import create_app
from imagegate.core.config import DEFAULT_MODEL, ImageGateConfig

API_KEY = "test-secret-token"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"fake-image-data"


class FakeBackend:
    """In-memory backend that records every call.

    Attributes:
        calls: One ``dict`` per ``generate()`` call with the model id,
            prompt and dimensions it received.
        result: Bytes returned by ``generate()``.
        error: If set, raised by ``generate()`` instead of returning.
        closed: Whether ``aclose()`` was awaited.
    """

    def __init__(self, result: bytes = PNG_BYTES, error: Exception | None = None) -> None:
        self.calls: list[dict] = []
        self.result = result
        self.error = error
        self.closed = False

    async def generate(self, model_id: str, *, prompt: str, width: int, height: int) -> bytes:
        self.calls.append({"model": model_id, "prompt": prompt, "width": width, "height": height})
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def test_config() -> ImageGateConfig:
    """Create a test configuration that ignores any local ``.env`` file.

    Returns:
        ImageGateConfig with a known API key and the default policy
    """
    return ImageGateConfig(
        _env_file=None,
        api_key=API_KEY,
        cors_allow_origin="*",
        alignment=8,
        generation_timeout=5.0,
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Create a fake backend returning PNG bytes."""
    return FakeBackend()


@pytest.fixture
def test_client(test_config: ImageGateConfig, fake_backend: FakeBackend) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the fake backend.

    Yields:
        TestClient with the application lifespan running
    """
    app = create_app(test_config, backend=fake_backend)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Headers for an authenticated JSON request."""
    return {
        "Authorization": f"Bearer {API_KEY}",
        "Content-Type": "application/json",
    }


@pytest.fixture
def default_model() -> str:
    return DEFAULT_MODEL


@pytest.fixture
def backend_factory() -> type[FakeBackend]:
    """The FakeBackend class, for tests that need a failing or slow backend."""
    return FakeBackend


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES
