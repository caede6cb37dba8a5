from __future__ import annotations

import os
import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("GEMINI_RELAY_API_KEY", "test-key")
os.environ.setdefault("OTEL_SDK_DISABLED", "true")

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gemini_relay import main
from gemini_relay.clients import GeminiClient, GenerationResult
from gemini_relay.config import Settings
from gemini_relay.models import GenerationRequest


class DummyGeminiClient:
    """Records every call and answers with a canned result or error."""

    def __init__(self, text: str = '{"ok":true}', error: Optional[Exception] = None) -> None:
        self.text = text
        self.error = error
        self.requests: List[GenerationRequest] = []

    async def generate_content(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.text, model="dummy-model", finish_reason="STOP")


def _gemini_response(text: str) -> Dict[str, Any]:
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": text}]},
                "finishReason": "STOP",
            }
        ],
        "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 3, "totalTokenCount": 7},
        "modelVersion": "gemini-2.0-flash",
    }


@pytest.fixture()
def gemini_response() -> Callable[[str], Dict[str, Any]]:
    """Factory for a successful generateContent body carrying the given text."""

    return _gemini_response


@pytest.fixture()
def settings() -> Settings:
    return Settings(gemini_api_key="test-key", gemini_model="gemini-2.0-flash")


@pytest.fixture()
def dummy_gemini_client() -> DummyGeminiClient:
    return DummyGeminiClient()


@pytest.fixture()
def make_client(settings: Settings) -> Generator[Callable[..., TestClient], None, None]:
    """Build a TestClient wired to the given Gemini client and settings."""

    clients: List[TestClient] = []

    def _build(gemini_client: Any, relay_settings: Optional[Settings] = None) -> TestClient:
        main.app.dependency_overrides[main.get_settings] = lambda: relay_settings or settings
        main.app.dependency_overrides[main.get_gemini_client] = lambda: gemini_client
        http_client = TestClient(main.app)
        clients.append(http_client)
        return http_client

    yield _build
    for http_client in clients:
        http_client.close()
    main.app.dependency_overrides.clear()


@pytest.fixture()
def client(
    make_client: Callable[..., TestClient],
    dummy_gemini_client: DummyGeminiClient,
) -> TestClient:
    return make_client(dummy_gemini_client)


@pytest.fixture()
def mock_gemini() -> Callable[[Callable[[httpx.Request], httpx.Response]], GeminiClient]:
    """Real GeminiClient whose HTTP traffic is served by an in-process handler."""

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> GeminiClient:
        return GeminiClient(
            api_key="test-key",
            model="gemini-2.0-flash",
            base_url="https://gemini.test",
            transport=httpx.MockTransport(handler),
        )

    return _build
