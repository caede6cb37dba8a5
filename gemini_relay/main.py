#!/usr/bin/env python3
"""Gemini relay application exposing structured generation over HTTP."""
from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

import json
import logging
import os
import time
import uuid
from typing import Any, Dict

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, unbind_contextvars
from structlog.stdlib import ProcessorFormatter

from .clients import GeminiClient
from .config import Settings, get_settings
from .models import ErrorResponse, RelayRequest
from .relay import RelayError, StructuredGenerationRelay
from .telemetry import (
    configure_tracing,
    correlation_id_var,
    reset_correlation_id,
    set_correlation_id,
)

SERVICE_NAME = "gemini-relay"
GENERATE_ROUTES = {
    "/api/generate": "generate",
    "/.netlify/functions/gemini-proxy": "generate_netlify_function",
}
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Malformed JSON body or invalid contents"},
    405: {"model": ErrorResponse, "description": "Only POST is accepted"},
    500: {"model": ErrorResponse, "description": "Missing credential, empty result or relay failure"},
}

logger = logging.getLogger("gemini_relay")


class CorrelationIdFilter(logging.Filter):
    """Inject the correlation identifier into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging helper
        record.correlation_id = correlation_id_var.get() or "unknown"
        return True


def _add_correlation_id(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - logging helper
    event_dict.setdefault("correlation_id", correlation_id_var.get() or "unknown")
    return event_dict


def _configure_otlp_logging(service_name: str) -> None:
    if not (
        os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT")
    ):
        return

    root_logger = logging.getLogger()
    try:
        resource = Resource.create(
            {"service.name": os.getenv("OTEL_SERVICE_NAME", service_name)}
        )
        logger_provider = LoggerProvider(resource=resource)
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter()))
        set_logger_provider(logger_provider)
        root_logger.addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider))
        root_logger.debug(
            "OTLP log exporter configured",
            extra={"service_name": resource.attributes.get("service.name")},
        )
    except Exception:  # pragma: no cover - exporter misconfiguration must not stop the relay
        root_logger.exception("Failed to configure OTLP log exporter")


def configure_logging(service_name: str = SERVICE_NAME) -> None:
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        timestamper,
        structlog.processors.format_exc_info,
    ]

    formatter = ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(os.getenv("GEMINI_RELAY_LOG_LEVEL", "INFO").upper())

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _configure_otlp_logging(service_name)


configure_logging()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach correlation identifiers and latency to responses."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        token = set_correlation_id(correlation_id)
        bind_contextvars(correlation_id=correlation_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled exception during request", extra={"path": request.url.path})
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            reset_correlation_id(token)
            unbind_contextvars("correlation_id")
            logger.info(
                "Request completed",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time-ms"] = f"{duration_ms:.2f}"
        return response


app = FastAPI(title="Gemini Structured Generation Relay", version="0.1.0")
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)
configure_tracing(app, SERVICE_NAME)


# Error rendering ----------------------------------------------------------

@app.exception_handler(RelayError)
async def relay_error_handler(_: Request, exc: RelayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


# Dependency factories -----------------------------------------------------

def get_gemini_client(settings: Settings = Depends(get_settings)) -> GeminiClient:
    return GeminiClient(
        api_key=settings.gemini_api_key or "",
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout=settings.request_timeout_s,
    )


def get_relay(
    settings: Settings = Depends(get_settings),
    gemini_client: GeminiClient = Depends(get_gemini_client),
) -> StructuredGenerationRelay:
    return StructuredGenerationRelay(
        api_key=settings.gemini_api_key,
        client=gemini_client,
        strict_contents=settings.strict_contents,
    )


async def parse_relay_request(request: Request) -> RelayRequest:
    """Read the raw body and extract ``contents`` and ``generationConfig``."""

    raw_body = await request.body()
    try:
        document = json.loads(raw_body)
    except ValueError as exc:
        logger.warning("Rejected request with unparsable JSON body")
        raise RelayError(400, "Invalid JSON body received by relay", str(exc)) from exc

    if not isinstance(document, dict):
        raise RelayError(400, "Invalid JSON body: expected an object")

    try:
        return RelayRequest.model_validate(document)
    except ValidationError as exc:  # pragma: no cover - every field accepts any JSON value
        raise RelayError(400, "Invalid JSON body received by relay", str(exc)) from exc


# Routes -------------------------------------------------------------------


@app.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Gemini relay operational"}


@app.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    """Simple readiness probe for container orchestrators."""

    return {"status": "ok", "gemini": "configured" if settings.gemini_api_key else "missing"}


async def generate(
    request: Request,
    relay: StructuredGenerationRelay = Depends(get_relay),
) -> Response:
    """Relay a structured generation request and return Gemini's text verbatim."""

    payload = await parse_relay_request(request)
    text = await relay.generate(payload)
    return Response(content=text, media_type="application/json")


for _path, _operation_id in GENERATE_ROUTES.items():
    app.add_api_route(
        _path,
        generate,
        methods=["POST"],
        operation_id=_operation_id,
        responses=ERROR_RESPONSES,
    )
