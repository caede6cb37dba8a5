from __future__ import annotations

import json
from typing import Any, Dict

import httpx
import pytest

from gemini_relay.clients import (
    GeminiAPIError,
    GeminiNoResultError,
    GeminiTransportError,
)
from gemini_relay.normalizer import normalize
from gemini_relay.telemetry import reset_correlation_id, set_correlation_id

REQUEST = normalize(
    [{"role": "user", "parts": [{"text": "hi"}]}],
    {"responseMimeType": "application/json", "responseSchema": {"type": "OBJECT"}},
)


@pytest.mark.asyncio
async def test_generate_content_posts_normalised_body(mock_gemini, gemini_response) -> None:
    captured: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = dict(request.headers)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=gemini_response('{"ok":true}'))

    client = mock_gemini(handler)
    token = set_correlation_id("trace-gemini")
    try:
        result = await client.generate_content(REQUEST)
    finally:
        reset_correlation_id(token)

    assert result.text == '{"ok":true}'
    assert result.finish_reason == "STOP"
    assert result.usage == {"promptTokenCount": 4, "candidatesTokenCount": 3, "totalTokenCount": 7}
    assert captured["url"] == "https://gemini.test/v1beta/models/gemini-2.0-flash:generateContent"
    assert captured["headers"]["x-goog-api-key"] == "test-key"
    assert captured["headers"]["x-correlation-id"] == "trace-gemini"
    assert captured["body"] == {
        "contents": [{"role": "user", "parts": [{"text": "hi"}]}],
        "generationConfig": {"responseMimeType": "application/json", "responseSchema": {"type": "OBJECT"}},
    }


@pytest.mark.asyncio
async def test_error_status_is_captured(mock_gemini) -> None:
    body = {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}
    client = mock_gemini(lambda request: httpx.Response(429, json=body))

    with pytest.raises(GeminiAPIError) as excinfo:
        await client.generate_content(REQUEST)

    assert excinfo.value.status_code == 429
    assert excinfo.value.status_text == "Too Many Requests"
    assert "Quota exceeded" in excinfo.value.body


@pytest.mark.asyncio
async def test_zero_candidates_reports_block_reason(mock_gemini) -> None:
    client = mock_gemini(
        lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})
    )

    with pytest.raises(GeminiNoResultError, match="blockReason: SAFETY"):
        await client.generate_content(REQUEST)


@pytest.mark.asyncio
async def test_candidate_without_parts_is_no_result(mock_gemini) -> None:
    payload = {"candidates": [{"content": {"role": "model"}, "finishReason": "MAX_TOKENS"}]}
    client = mock_gemini(lambda request: httpx.Response(200, json=payload))

    with pytest.raises(GeminiNoResultError, match="MAX_TOKENS"):
        await client.generate_content(REQUEST)


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped(mock_gemini) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = mock_gemini(handler)

    with pytest.raises(GeminiTransportError, match="connection refused"):
        await client.generate_content(REQUEST)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"candidates": {"a": 1}},
        {"candidates": ["not-a-candidate"]},
        {"candidates": [{"content": ["x"]}]},
        {"candidates": [{"content": {"parts": {"text": "x"}}}]},
        {"candidates": [{"content": {"parts": ["x"]}}]},
        {"candidates": [{"content": {"parts": [{"text": 5}]}}]},
        {"candidates": [], "promptFeedback": "blocked"},
    ],
)
async def test_ill_shaped_success_bodies_are_no_result(mock_gemini, body) -> None:
    client = mock_gemini(lambda request: httpx.Response(200, json=body))

    with pytest.raises(GeminiNoResultError):
        await client.generate_content(REQUEST)
