import os
from functools import lru_cache
from typing import List, Any, Union

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, Field


DEFAULT_COLLEGE_DOMAINS = ["rguktn.ac.in"]


class Settings(BaseSettings):
    """Application settings."""
    # General settings
    debug: bool = False
    app_name: str = "Campus Anon Chat"

    # Bot specific settings
    CHAT_BOT_TOKEN: str = "dummy_token"  # Default prevents validation error
    WEBAPP_HOST: str = Field(default="0.0.0.0", alias='WEBAPP_HOST')
    WEBAPP_PORT: int = Field(default=int(os.environ.get('PORT', 8080)), alias='WEBAPP_PORT')

    # Database settings
    db_url: str = Field(default="sqlite+aiosqlite:///./campus_chat.db", alias='DATABASE_URL')

    # Onboarding
    # Union keeps a plain comma-separated env value from being JSON-decoded
    college_email_domains: Union[List[str], str] = Field(default=DEFAULT_COLLEGE_DOMAINS, alias='COLLEGE_EMAIL_DOMAINS')

    # Matchmaking
    match_candidate_limit: int = 10
    recent_pair_window_hours: int = 24
    recent_session_scan_limit: int = 50
    search_delay_min_seconds: float = 1.5
    search_delay_max_seconds: float = 3.0

    # Chat pacing
    warmup_delay_seconds: float = 0.8
    auto_reply_delay_seconds: float = 2.0
    auto_reply_enabled: bool = True

    # Presence
    presence_refresh_seconds: float = 30.0

    # Ratings
    rating_min: int = 1
    rating_max: int = 4

    @field_validator('college_email_domains', mode='before')
    @classmethod
    def _parse_domains(cls, v: Any) -> List[str]:
        """Parse college email domains from a list, a comma-separated string or a JSON array."""
        if isinstance(v, list):
            return [str(d).strip().lower().lstrip('@') for d in v if str(d).strip()]

        if not v:
            logger.warning("Empty COLLEGE_EMAIL_DOMAINS, using default")
            return list(DEFAULT_COLLEGE_DOMAINS)

        if isinstance(v, str):
            raw = v.strip()
            if raw.startswith('[') and raw.endswith(']'):
                import json
                try:
                    parsed = json.loads(raw)
                    if isinstance(parsed, list):
                        return [str(d).strip().lower().lstrip('@') for d in parsed if str(d).strip()]
                except ValueError as e:
                    logger.error(f"Failed to parse COLLEGE_EMAIL_DOMAINS as JSON: {e}")
            return [d.strip().lower().lstrip('@') for d in raw.split(',') if d.strip()]

        logger.warning(f"Could not parse COLLEGE_EMAIL_DOMAINS, using default. Value was: {v!r}")
        return list(DEFAULT_COLLEGE_DOMAINS)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


@lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    # Clear cache if needed for testing: get_settings.cache_clear()
    return Settings()
