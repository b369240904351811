"""Configuration and settings management using pydantic-settings."""
import json
from typing import Any

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWMESH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Core service settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")

    # Runtime limits
    http_timeout_s: float = Field(
        default=30,
        description="Default timeout for outbound HTTP calls in seconds",
    )
    workflow_deadline_s: float | None = Field(
        default=None,
        description="Overall deadline for one workflow run (None = unbounded)",
    )

    # Credential handling
    credential_cache_ttl_s: int = Field(
        default=300,
        description="How long resolved credentials stay cached",
    )
    oauth_refresh_buffer_s: int = Field(
        default=300,
        description="Refresh OAuth tokens this many seconds before expiry",
    )

    # OpenAI settings
    openai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("FLOWMESH_OPENAI_API_KEY", "OPENAI_API_KEY"),
        description="Fallback OpenAI API key when no stored credential exists",
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI API base URL",
    )

    # Transactional email (Resend) settings
    resend_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("FLOWMESH_RESEND_TOKEN", "RESEND_TOKEN"),
        description="Fallback Resend API token",
    )
    resend_base_url: str = Field(
        default="https://api.resend.com",
        description="Resend API base URL",
    )
    email_default_from: str | None = Field(
        default=None,
        description="Sender used when an email node does not set one",
    )

    # Google settings
    google_sheets_credentials: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FLOWMESH_GOOGLE_SHEETS_CREDENTIALS", "GOOGLE_SHEETS_CREDENTIALS"
        ),
        description="Service-account JSON blob used as Google fallback credential",
    )
    google_client_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FLOWMESH_GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_ID"),
        description="OAuth client id for token refresh",
    )
    google_client_secret: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FLOWMESH_GOOGLE_CLIENT_SECRET", "GOOGLE_CLIENT_SECRET"
        ),
        description="OAuth client secret for token refresh",
    )
    google_token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Google OAuth2 token endpoint",
    )

    @field_validator("http_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate that the HTTP timeout is positive."""
        if v <= 0:
            raise ValueError("http_timeout_s must be positive")
        return v

    @field_validator("workflow_deadline_s")
    @classmethod
    def validate_deadline(cls, v: float | None) -> float | None:
        """Validate that a configured deadline is positive."""
        if v is not None and v <= 0:
            raise ValueError("workflow_deadline_s must be positive")
        return v

    def get_google_service_account(self) -> dict[str, Any] | None:
        """
        Parse the Google service-account JSON blob.

        Returns:
            Dict with client_email, private_key and project_id, or None when
            unset or not valid JSON.
        """
        if self.google_sheets_credentials is None:
            return None

        try:
            parsed = json.loads(self.google_sheets_credentials.get_secret_value())
        except json.JSONDecodeError:
            return None

        if not isinstance(parsed, dict):
            return None
        return parsed


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
