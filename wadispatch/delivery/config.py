from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ..queue.config import RateLimitConfig


class DeliveryConfig(BaseModel):
    """360Dialog WhatsApp Business API connection settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = Field(default="https://waba-v2.360dialog.io", description="API base, no trailing path")
    api_key: SecretStr | None = Field(default=None, description="Sent as the D360-API-KEY header")
    phone_number_id: str | None = Field(default=None)
    business_account_id: str | None = Field(default=None)

    timeout_seconds: float = Field(default=30.0, gt=0)
    upload_timeout_seconds: float = Field(default=60.0, gt=0)

    default_country_code: str = Field(default="57", pattern=r"^\d{1,4}$")
    local_prefixes: tuple[str, ...] = Field(
        default=("3",),
        description="10-digit numbers starting with one of these get the country code prepended",
    )
    default_language: str = Field(default="es_CO", description="Template language when none is given")
    max_text_length: int = Field(default=4096, ge=1)

    retry_max_attempts: int = Field(default=4, ge=1, description="HTTP attempts per send, first call included")
    retry_multiplier: float = Field(default=1.0, ge=0)
    retry_wait_max: float = Field(default=10.0, ge=0, description="Upper bound on one backoff sleep, seconds")

    recipient_rate_limit: RateLimitConfig | None = Field(
        default=None,
        description="Per-recipient token bucket; None sends without local throttling",
    )

    @property
    def configured(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value())
