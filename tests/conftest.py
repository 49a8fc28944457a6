"""Shared fixtures: a fake gateway, a fresh session, a tiny image and an HTTP client."""

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

import carb_vision
from carb_vision import FoodEntry, PendingImage, SessionController, encode_image


class FakeGateway:
    """Stands in for AnalysisGateway; records calls, returns canned entries or raises."""

    def __init__(self, result=None, error=None):
        self.result = list(result or [])
        self.error = error
        self.calls = []

    async def analyze(self, image_b64, mime_type="image/jpeg"):
        self.calls.append((image_b64, mime_type))
        if self.error is not None:
            raise self.error
        return list(self.result)


@pytest.fixture
def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 120, 40)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def pending_image(png_bytes) -> PendingImage:
    return PendingImage(data=encode_image(png_bytes), mime_type="image/png", filename="meal.png")


@pytest.fixture
def two_entries():
    return [
        FoodEntry("Rice", "1 cup", carbohydrates=25, protein=4, fat=0.5, calories=205),
        FoodEntry("Apple", "1 medium apple", carbohydrates=10, protein=0.3, fat=0.2, calories=52),
    ]


@pytest.fixture
def controller() -> SessionController:
    return SessionController()


@pytest.fixture
def fake_gateway(two_entries) -> FakeGateway:
    return FakeGateway(result=two_entries)


@pytest.fixture
def mock_genai_client() -> MagicMock:
    """genai.Client double exposing client.aio.models.generate_content."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text="[]"))
    return client


@pytest.fixture
def app_client(monkeypatch, fake_gateway) -> TestClient:
    monkeypatch.setattr(carb_vision, "CONTROLLER", SessionController())
    monkeypatch.setattr(carb_vision, "GATEWAY", fake_gateway)
    monkeypatch.setattr(carb_vision, "CONFIG_ERROR", None)
    return TestClient(carb_vision.app)


@pytest.fixture
def gateway_factory():
    """Build FakeGateway instances with a custom result or error."""
    return FakeGateway


class BlockingGateway(FakeGateway):
    """Holds analyze() open until release() so a Loading session can be observed."""

    def __init__(self, result=None, error=None):
        super().__init__(result=result, error=error)
        self._released = asyncio.Event()

    def release(self) -> None:
        self._released.set()

    async def analyze(self, image_b64, mime_type="image/jpeg"):
        self.calls.append((image_b64, mime_type))
        await self._released.wait()
        if self.error is not None:
            raise self.error
        return list(self.result)


@pytest.fixture
def blocking_gateway_factory():
    return BlockingGateway
