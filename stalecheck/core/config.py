from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

#: Requests per minute above which the archive starts handing out penalties.
ARCHIVE_RATE_CEILING = 15


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Archive
    archive_base_url: str = "https://web.archive.org"

    # Rate governor / retrying transport
    max_requests_per_minute: int = Field(default=10, ge=1)
    retry_attempts: int = Field(default=6, ge=1)
    retry_delay_ms: int = Field(default=5000, ge=0)

    # Analysis defaults
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    default_year_range: int = Field(default=7, ge=0)
    default_max_yearly_captures: int = Field(default=1, ge=1)

    # HTTP client
    http_timeout: float = 30.0
    http_verify_ssl: bool = True

    # Logging
    log_level: str = "INFO"

    @field_validator("max_requests_per_minute")
    @classmethod
    def _warn_above_ceiling(cls, value: int) -> int:
        if value > ARCHIVE_RATE_CEILING:
            logger.warning(
                "max_requests_per_minute=%d exceeds the archive ceiling of %d; "
                "expect rate-limit penalties.",
                value,
                ARCHIVE_RATE_CEILING,
            )
        return value


settings = Settings()
