"""Structured generation relay: normalise, invoke Gemini once, map the outcome."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from .clients import (
    GeminiAPIError,
    GeminiNoResultError,
    GenerationResult,
)
from .models import ErrorResponse, GenerationRequest, RelayRequest
from .normalizer import InvalidContentsError, normalize

logger = logging.getLogger(__name__)

PROVIDER_LABEL = "Gemini API error"
MISSING_KEY_MESSAGE = "Server configuration error: GEMINI_API_KEY is not set."
NO_RESULT_MESSAGE = "No content returned by Gemini API"
RELAY_FAILURE_MESSAGE = "relay failure"


class GenerationClient(Protocol):
    async def generate_content(self, request: GenerationRequest) -> GenerationResult:
        ...


class RelayError(Exception):
    """Caller-facing failure carrying the HTTP status and error body to return."""

    def __init__(self, status_code: int, error: str, details: Optional[str] = None) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_body(self) -> dict:
        response = ErrorResponse(error=self.error, details=self.details or None)
        return response.model_dump(exclude_none=True)


class StructuredGenerationRelay:
    """Relay one caller payload to Gemini with a server-held credential.

    The credential and client are injected so the relay never reads ambient
    environment state. Every call is independent; nothing is cached between calls.
    """

    def __init__(
        self,
        api_key: Optional[str],
        client: GenerationClient,
        *,
        strict_contents: bool = False,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self._strict_contents = strict_contents

    async def generate(self, payload: RelayRequest) -> str:
        try:
            request = normalize(
                payload.contents,
                payload.generation_config,
                strict=self._strict_contents,
            )
        except InvalidContentsError as exc:
            raise RelayError(400, "Invalid contents", str(exc)) from exc

        if not self._api_key:
            logger.error("Gemini API key is not configured")
            raise RelayError(500, MISSING_KEY_MESSAGE)

        try:
            result = await self._client.generate_content(request)
        except Exception as exc:
            raise self._map_failure(exc) from exc

        logger.info(
            "Structured generation succeeded",
            extra={"model": result.model, "finish_reason": result.finish_reason},
        )
        return result.text

    @staticmethod
    def _map_failure(exc: Exception) -> RelayError:
        if isinstance(exc, GeminiAPIError):
            logger.error(
                "Gemini rejected the request",
                extra={"status_code": exc.status_code, "body": exc.body},
            )
            return RelayError(
                exc.status_code,
                f"{PROVIDER_LABEL}: {exc.status_text}",
                exc.body or str(exc),
            )
        if isinstance(exc, GeminiNoResultError):
            logger.error("Gemini returned no usable result: %s", exc)
            return RelayError(500, NO_RESULT_MESSAGE, str(exc))

        logger.error("Gemini relay failure", exc_info=exc)
        return RelayError(500, RELAY_FAILURE_MESSAGE, str(exc) or exc.__class__.__name__)
