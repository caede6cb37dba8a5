"""Configuration utilities for the Gemini relay service."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    gemini_base_url: str = DEFAULT_BASE_URL
    request_timeout_s: float = Field(default=60.0, gt=0)
    strict_contents: bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("gemini_api_key", mode="before")
    @classmethod
    def blank_key_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        data = {
            "gemini_api_key": os.getenv("GEMINI_RELAY_API_KEY")
            or os.getenv("GEMINI_API_KEY"),
            "gemini_model": os.getenv("GEMINI_RELAY_MODEL", DEFAULT_MODEL),
            "gemini_base_url": os.getenv("GEMINI_RELAY_BASE_URL", DEFAULT_BASE_URL),
            "request_timeout_s": os.getenv("GEMINI_RELAY_TIMEOUT_S", "60"),
            "strict_contents": os.getenv("GEMINI_RELAY_STRICT_CONTENTS", "false"),
            "allowed_origins": os.getenv("GEMINI_RELAY_ALLOWED_ORIGINS", "*"),
        }
        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings.

    A missing API key is not an error here: the relay reports it per request so the
    service can still start and answer health probes.
    """

    return Settings.from_env()
