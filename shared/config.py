"""
Runtime configuration for the resume-search service.

Values come from the environment; a local .env file is loaded first.
"""
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Process-wide settings, built once at startup."""

    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"

    reasoning_provider: str = "openai"
    openai_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    reasoning_timeout_seconds: float = Field(default=60.0, gt=0)

    # One hour for search results; analytics reports are refreshed every five minutes.
    search_cache_ttl_seconds: int = Field(default=3600, ge=1)
    analytics_cache_ttl_seconds: int = Field(default=300, ge=1)

    max_history_turns: int = Field(default=20, ge=0)
    candidate_text_limit: int = Field(default=400, ge=50)

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from environment variables."""
        if dotenv:
            load_dotenv()

        def _get(name: str) -> Optional[str]:
            value = os.getenv(name)
            if value is None or not value.strip():
                return None
            return value.strip()

        raw = {
            "database_url": _get("DATABASE_URL"),
            "redis_url": _get("REDIS_URL"),
            "jwt_secret": _get("JWT_SECRET") or "",
            "jwt_algorithm": _get("JWT_ALGORITHM"),
            "reasoning_provider": (_get("REASONING_PROVIDER") or "").lower() or None,
            "openai_api_key": _get("OPENAI_API_KEY"),
            "deepseek_api_key": _get("DEEPSEEK_API_KEY"),
            "reasoning_timeout_seconds": _get("REASONING_TIMEOUT_SECONDS"),
            "search_cache_ttl_seconds": _get("SEARCH_CACHE_TTL_SECONDS"),
            "analytics_cache_ttl_seconds": _get("ANALYTICS_CACHE_TTL_SECONDS"),
            "max_history_turns": _get("MAX_HISTORY_TURNS"),
            "candidate_text_limit": _get("CANDIDATE_TEXT_LIMIT"),
            "log_level": _get("LOG_LEVEL"),
        }
        origins = _get("CORS_ORIGINS")
        if origins:
            raw["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

        return cls.model_validate({k: v for k, v in raw.items() if v is not None})
