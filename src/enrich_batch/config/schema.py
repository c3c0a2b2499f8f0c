"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces configuration
values from the environment, the project file and programmatic overrides into
the correct types with proper defaults.
"""

from typing import Any, Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrich_batch import constants as c


class EnrichSettings(BaseSettings):
    """Pydantic settings schema for the enrichment engine.

    Integrates with environment variables using the ENRICH_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENRICH_",
        env_file=None,
        case_sensitive=False,
        extra="ignore",
    )

    # --- Scheduling ---

    batch_size: int = Field(default=c.DEFAULT_BATCH_SIZE, ge=1)
    concurrency: int = Field(default=c.DEFAULT_CONCURRENCY, ge=1)
    inter_wave_pace_seconds: float = Field(
        default=c.DEFAULT_INTER_WAVE_PACE_SECONDS,
        ge=0.0,
        le=c.MAX_INTER_WAVE_PACE_SECONDS,
        description="Fixed pause applied between waves, never within one",
    )

    # --- Retry and escalation ---

    max_retry_attempts: int = Field(default=c.DEFAULT_MAX_RETRY_ATTEMPTS, ge=1)
    rate_limit_attempts: int = Field(default=c.DEFAULT_RATE_LIMIT_ATTEMPTS, ge=1)
    salvage_attempts: int = Field(default=c.DEFAULT_SALVAGE_ATTEMPTS, ge=1)
    single_item_salvage: bool = True
    enhancement_pass: bool = Field(
        default=False,
        description="Resubmit items whose explanations failed the quality gate",
    )
    retry_base_delay: float = Field(default=c.DEFAULT_RETRY_BASE_DELAY, ge=0.0)
    rate_limit_base_delay: float = Field(
        default=c.DEFAULT_RATE_LIMIT_BASE_DELAY, ge=0.0
    )
    retry_max_delay: float = Field(default=c.DEFAULT_RETRY_MAX_DELAY, ge=0.0)
    request_timeout: float = Field(default=c.DEFAULT_REQUEST_TIMEOUT, gt=0.0)

    # --- Completion service ---

    token_budget_hint: int = Field(default=c.DEFAULT_TOKEN_BUDGET_HINT, ge=1)
    model: str = Field(default=c.DEFAULT_MODEL, min_length=1)
    api_key: SecretStr | None = None
    instructions: str | None = None

    # --- Fallback text ---

    locale: Literal["fr", "en"] = "fr"

    @field_validator("locale", mode="before")
    @classmethod
    def parse_locale(cls, v: Any) -> str:
        """Accept region-qualified locales such as ``fr_FR`` or ``en-US``."""
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_").split("_")[0]
        return v

    @field_validator("instructions", mode="before")
    @classmethod
    def blank_instructions(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_delays(self) -> "EnrichSettings":
        if self.retry_base_delay > self.retry_max_delay:
            raise ValueError(
                "retry_base_delay must not exceed retry_max_delay "
                f"({self.retry_base_delay} > {self.retry_max_delay})"
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        """Plain dictionary of resolved values (api_key unwrapped)."""
        data = self.model_dump()
        data["api_key"] = self.api_key.get_secret_value() if self.api_key else None
        return data
