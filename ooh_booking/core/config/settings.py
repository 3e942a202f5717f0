"""Application settings with Pydantic validation."""

from typing import Any, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ...constants.timing import HoldWindow, Timeouts


class BookingSettings(BaseSettings):
    """Booking flow settings with validation and environment variable support."""

    # Environment
    env: str = Field(
        default="production", description="Environment (production, development, testing)"
    )

    @model_validator(mode="before")
    @classmethod
    def default_env_for_pytest(cls, data: Any) -> Any:
        """Auto-detect testing environment when running under pytest."""
        import sys

        if not isinstance(data, dict):
            return data

        if ("env" not in data or not data.get("env")) and "pytest" in sys.modules:
            data["env"] = "testing"

        return data

    # Workflow gateway
    gateway_base_url: str = Field(
        default="http://localhost:5678", description="Base URL of the workflow automation service"
    )
    gateway_webhook_path: str = Field(
        default="/webhook/booking", description="Webhook path every workflow request is posted to"
    )
    gateway_auth_token: SecretStr = Field(
        default=SecretStr(""), description="Value sent in the Authorization header"
    )
    request_timeout_seconds: float = Field(
        default=float(Timeouts.GATEWAY_REQUEST_SECONDS),
        gt=0,
        description="Per-request timeout for workflow gateway calls",
    )
    request_source: str = Field(
        default="Spectrum IRE Booking System",
        description="Value of the 'source' field added to every request envelope",
    )

    # Hold window
    hold_seconds: int = Field(
        default=HoldWindow.DURATION_SECONDS, ge=1, description="Length of the slot hold"
    )
    hold_tick_seconds: float = Field(
        default=HoldWindow.TICK_SECONDS, gt=0, description="Countdown tick interval"
    )

    # Payment
    currency: str = Field(default="EUR", description="Payment currency (ISO 4217)")
    default_consultation_fee: float = Field(
        default=35.0, ge=0, description="Fee used when a clinic publishes no advance payment"
    )
    default_payment_email: str = Field(
        default="teststripe@gpooh.ie",
        description="Receipt e-mail used when the patient gave none",
    )

    # Video consult links
    public_base_url: str = Field(
        default="http://localhost:3000", description="Origin used to build video room links"
    )

    # Logging
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(default=False, description="Write JSON lines to the log file")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value."""
        allowed = ["production", "development", "testing", "staging"]
        if v.lower() not in allowed:
            raise ValueError(f'ENV must be one of: {", ".join(allowed)}')
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(allowed)}')
        return v_upper

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Currencies are three-letter codes."""
        if len(v) != 3 or not v.isalpha():
            raise ValueError("CURRENCY must be a three-letter ISO 4217 code")
        return v.upper()

    @field_validator("gateway_base_url", "public_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that URLs use http(s) and drop the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def require_token_in_production(self) -> "BookingSettings":
        """
        Ensure the gateway token is configured outside test/dev.

        Raises:
            ValueError: If GATEWAY_AUTH_TOKEN is empty in production/staging
        """
        if self.env in ("production", "staging") and not self.gateway_auth_token.get_secret_value():
            raise ValueError("GATEWAY_AUTH_TOKEN is required in production/staging")
        return self

    @property
    def webhook_url(self) -> str:
        """Full URL every workflow request is posted to."""
        path = self.gateway_webhook_path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.gateway_base_url}{path}"

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env == "production"


_settings: Optional[BookingSettings] = None


def get_settings() -> BookingSettings:
    """
    Get application settings singleton.

    Returns:
        BookingSettings instance
    """
    global _settings
    if _settings is None:
        _settings = BookingSettings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
