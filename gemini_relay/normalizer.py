"""Reshape caller payloads into the exact body Gemini's generateContent expects."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .models import ConversationTurn, GenerationConfig, GenerationRequest, TextPart

logger = logging.getLogger(__name__)

RECOGNISED_CONFIG_KEYS = frozenset(GenerationConfig.model_fields)


class InvalidContentsError(ValueError):
    """Raised in strict mode when a ``contents`` item is not a well-formed turn."""

    def __init__(self, index: int, reason: str) -> None:
        super().__init__(f"contents[{index}] is not a valid conversation turn: {reason}")
        self.index = index


def normalize_contents(raw_contents: Any, *, strict: bool = False) -> List[Any]:
    if not isinstance(raw_contents, list):
        return []

    contents: List[Any] = []
    for index, item in enumerate(raw_contents):
        reason = _turn_defect(item)
        if reason is None:
            contents.append(_rebuild_turn(item))
            continue
        if strict:
            raise InvalidContentsError(index, reason)
        logger.warning(
            "Passing malformed contents item through unchanged",
            extra={"index": index, "reason": reason},
        )
        contents.append(item)
    return contents


def _turn_defect(item: Any) -> Optional[str]:
    if not isinstance(item, dict):
        return "item is not an object"
    role = item.get("role")
    if not isinstance(role, str) or not role:
        return "role must be a non-empty string"
    if not isinstance(item.get("parts"), list):
        return "parts must be a list"
    return None


def _rebuild_turn(item: Dict[str, Any]) -> ConversationTurn:
    """Keep the role and only the text of each part; any other part becomes ``{}``."""

    parts = [
        TextPart(text=part["text"])
        if isinstance(part, dict) and isinstance(part.get("text"), str)
        else TextPart()
        for part in item["parts"]
    ]
    return ConversationTurn(role=item["role"], parts=parts)


def normalize_config(raw_config: Any) -> GenerationConfig:
    if not isinstance(raw_config, dict):
        return GenerationConfig()

    data: Dict[str, Any] = {
        key: value for key, value in raw_config.items() if key in RECOGNISED_CONFIG_KEYS
    }
    while True:
        try:
            return GenerationConfig.model_validate(data)
        except ValidationError as exc:
            invalid = {error["loc"][0] for error in exc.errors() if error["loc"]}
            if not invalid & data.keys():
                raise
            logger.warning(
                "Dropping generationConfig keys with unusable values",
                extra={"keys": sorted(str(key) for key in invalid)},
            )
            for key in invalid:
                data.pop(key, None)


def normalize(raw_contents: Any, raw_config: Any, *, strict: bool = False) -> GenerationRequest:
    """Build a fresh :class:`GenerationRequest` from untrusted caller input.

    Generation settings always travel with the per-call body; nothing is configured on
    a long-lived model handle. Missing or non-list ``contents`` become an empty list and
    a missing ``generationConfig`` becomes an empty object, leaving Gemini to reject the
    call if it must.
    """

    return GenerationRequest(
        contents=normalize_contents(raw_contents, strict=strict),
        generation_config=normalize_config(raw_config),
    )

