"""Pydantic schemas exposed by the Gemini relay."""
from .generation import (
    ConversationTurn,
    ErrorResponse,
    GenerationConfig,
    GenerationRequest,
    RelayRequest,
    TextPart,
)

__all__ = [
    "TextPart",
    "ConversationTurn",
    "GenerationConfig",
    "GenerationRequest",
    "RelayRequest",
    "ErrorResponse",
]
