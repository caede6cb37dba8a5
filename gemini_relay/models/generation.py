"""Pydantic models for structured generation requests."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TextPart(BaseModel):
    """Single text fragment of a conversation turn."""

    model_config = ConfigDict(extra="ignore")

    text: Optional[str] = None


class ConversationTurn(BaseModel):
    """Role-tagged unit of dialogue context sent to Gemini."""

    model_config = ConfigDict(extra="ignore")

    role: str = Field(..., min_length=1, description="Author of the turn (user, model)")
    parts: List[TextPart] = Field(default_factory=list)


class GenerationConfig(BaseModel):
    """Allow-listed generation settings forwarded to Gemini.

    Unknown keys are dropped on validation. Serialisation omits absent values and
    empty strings or containers, but keeps numeric zero so ``temperature=0`` survives.
    """

    model_config = ConfigDict(extra="ignore")

    responseMimeType: Optional[str] = None
    responseSchema: Optional[Dict[str, Any]] = None
    temperature: Optional[float] = None
    topP: Optional[float] = None
    topK: Optional[int] = None
    maxOutputTokens: Optional[int] = None
    candidateCount: Optional[int] = None
    stopSequences: Optional[List[str]] = None
    presencePenalty: Optional[float] = None
    frequencyPenalty: Optional[float] = None
    seed: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key, value in self.model_dump(exclude_none=True).items():
            if isinstance(value, (str, list, dict)) and not value:
                continue
            payload[key] = value
        return payload


class GenerationRequest(BaseModel):
    """Canonical request body for ``models/{model}:generateContent``."""

    # Validated turns, or malformed items passed through untouched.
    contents: List[Any] = Field(default_factory=list)
    generation_config: GenerationConfig = Field(default_factory=GenerationConfig)

    def to_payload(self) -> Dict[str, Any]:
        contents = [
            item.model_dump(exclude_none=True) if isinstance(item, ConversationTurn) else item
            for item in self.contents
        ]
        return {"contents": contents, "generationConfig": self.generation_config.to_payload()}


class RelayRequest(BaseModel):
    """Body accepted by the relay endpoint; anything beyond these two keys is ignored."""

    model_config = ConfigDict(extra="ignore")

    contents: Any = None
    generation_config: Any = Field(default=None, alias="generationConfig")


class ErrorResponse(BaseModel):
    """Error body returned to callers."""

    error: str
    details: Optional[str] = None
