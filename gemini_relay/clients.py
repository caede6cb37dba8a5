"""Async wrapper around the Gemini generateContent REST endpoint."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from .config import DEFAULT_BASE_URL
from .models import GenerationRequest
from .telemetry import get_correlation_id

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_GENERATE_PATH = "/v1beta/models/{model}:generateContent"


class GeminiClientError(RuntimeError):
    """Raised when the Gemini client fails to fulfil a request."""


class GeminiAPIError(GeminiClientError):
    """Gemini answered with a non-success HTTP status."""

    def __init__(self, status_code: int, status_text: str, body: str) -> None:
        super().__init__(f"Gemini API error {status_code}: {status_text}")
        self.status_code = status_code
        self.status_text = status_text
        self.body = body


class GeminiTransportError(GeminiClientError):
    """The request never produced an HTTP answer (DNS, connect, timeout, ...)."""


class GeminiNoResultError(GeminiClientError):
    """Gemini answered successfully but returned no usable text."""


@dataclass
class GenerationResult:
    """Container for generateContent responses."""

    text: str
    model: str
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


class GeminiClient:
    """Single-shot client for one fixed Gemini model."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def generate_content(self, request: GenerationRequest) -> GenerationResult:
        """POST one generateContent call and extract the first candidate's text."""

        span_attributes = {
            "llm.system": "gemini",
            "llm.operation": "generateContent",
            "llm.model": self._model,
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            span_attributes["correlation.id"] = correlation_id

        with tracer.start_as_current_span("Gemini.generateContent") as span:
            for key, value in span_attributes.items():
                span.set_attribute(key, value)
            try:
                data = await self._post(request.to_payload())
                result = self._extract_result(data)
            except GeminiClientError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise
            span.set_status(Status(StatusCode.OK))
            if result.finish_reason:
                span.set_attribute("llm.finish_reason", result.finish_reason)
            if result.usage:
                for usage_key, usage_value in result.usage.items():
                    if isinstance(usage_value, (int, float)):
                        span.set_attribute(f"llm.usage.{usage_key}", usage_value)
            return result

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}{_GENERATE_PATH.format(model=self._model)}"
        headers = {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.exception("Gemini request failed for model %s", self._model)
            raise GeminiTransportError(str(exc) or exc.__class__.__name__) from exc

        if response.status_code >= 400:
            logger.error(
                "Gemini returned error %s for model %s: %s",
                response.status_code,
                self._model,
                response.text,
            )
            raise GeminiAPIError(
                status_code=response.status_code,
                status_text=response.reason_phrase or _error_status(response),
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise GeminiTransportError("Gemini returned a non-JSON response body") from exc
        if not isinstance(data, dict):
            raise GeminiNoResultError("Gemini returned an unexpected response shape")
        return data

    def _extract_result(self, data: Dict[str, Any]) -> GenerationResult:
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates:
            feedback = data.get("promptFeedback")
            reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            suffix = f" (blockReason: {reason})" if reason else ""
            raise GeminiNoResultError(f"Gemini returned no candidates{suffix}")

        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        finish_reason = candidate.get("finishReason")
        if not isinstance(finish_reason, str):
            finish_reason = None
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []
        text = parts[0].get("text") if parts and isinstance(parts[0], dict) else None
        if not isinstance(text, str):
            suffix = f" (finishReason: {finish_reason})" if finish_reason else ""
            raise GeminiNoResultError(f"Gemini candidate did not include text content{suffix}")

        usage = data.get("usageMetadata")
        return GenerationResult(
            text=text,
            model=str(data.get("modelVersion") or self._model),
            finish_reason=finish_reason,
            usage=usage if isinstance(usage, dict) else None,
        )


def _error_status(response: httpx.Response) -> str:
    """Fall back to Gemini's own ``error.status`` when the reason phrase is empty."""

    try:
        status = response.json().get("error", {}).get("status")
    except (ValueError, AttributeError):
        status = None
    return status or "Unknown Error"
