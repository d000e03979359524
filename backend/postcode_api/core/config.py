"""
Application configuration management with environment variables.

This module provides centralized configuration management using Pydantic
BaseSettings for type-safe environment variable handling with validation
and default values. Settings are frozen after construction and passed by
reference into every component that needs them.
"""

from enum import Enum
from functools import lru_cache
from ipaddress import IPv4Network, IPv6Network, ip_network
from typing import Literal, Optional, Union

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TrustedNetwork = Union[IPv4Network, IPv6Network]


class TransportMode(str, Enum):
    """Deployment mode deciding whether forwarded headers can be trusted."""

    DIRECT = "direct"
    PROXIED = "proxied"


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables with the
    APP_ prefix (e.g., APP_AUTHENTICATION_AUTHORITY, APP_CORS_ORIGINS).
    List-like settings are comma-separated strings.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Environment Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="production",
        description="Application environment",
    )

    # Application Configuration
    app_name: str = Field(
        default="Postcode API",
        description="Application name",
    )

    app_version: str = Field(
        default="1.0.0",
        description="Application version",
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application logging level",
    )

    # Authentication Configuration
    authentication_authority: str = Field(
        default="https://identity.example.com/",
        description="Identity authority issuing bearer tokens",
    )

    authentication_api_name: str = Field(
        default="postcode-api",
        description="Expected token audience",
    )

    authentication_swagger_client_id: str = Field(
        default="",
        description="Public OAuth client id used by the documentation explorer",
    )

    authentication_authorization_url: Optional[str] = Field(
        default=None,
        description="Authorize endpoint; defaults to {authority}/authorize",
    )

    authentication_token_url: Optional[str] = Field(
        default=None,
        description="Token endpoint; defaults to {authority}/oauth/token",
    )

    authentication_required_scopes: str = Field(
        default="",
        description="Comma-separated scopes every versioned route requires",
    )

    authentication_algorithms: str = Field(
        default="RS256",
        description="Comma-separated token signing algorithms accepted",
    )

    authentication_jwks_cache_seconds: int = Field(
        default=3600,
        ge=0,
        description="How long fetched signing keys are reused",
    )

    authentication_jwks_refresh_seconds: int = Field(
        default=30,
        ge=0,
        description="Minimum interval between key refetches forced by an unknown key id",
    )

    authentication_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for calls to the identity authority",
    )

    # Transport Configuration
    cors_origins: str = Field(
        default="",
        description="Comma-separated allowed CORS origins; empty disables CORS",
    )

    running_in_container: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "APP_RUNNING_IN_CONTAINER", "RUNNING_IN_CONTAINER", "running_in_container"
        ),
        description="Container deployment behind a reverse proxy",
    )

    forwarded_trusted_networks: str = Field(
        default="",
        description="Comma-separated proxy networks whose forwarded headers are honored",
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port")

    @field_validator("authentication_authority")
    @classmethod
    def validate_authority(cls, v: str, info) -> str:
        """
        Validate the identity authority URL.

        Args:
            v: Authority URL value
            info: Validation info context

        Returns:
            Validated authority URL

        Raises:
            ValueError: If the URL is not http(s), or plain http outside development
        """
        if not v.startswith(("http://", "https://")):
            raise ValueError("Authority must start with 'http://' or 'https://'")
        environment = info.data.get("environment", "production")
        if environment != "development" and not v.startswith("https://"):
            raise ValueError(
                "Authority must use https outside the development environment. "
                "Set APP_AUTHENTICATION_AUTHORITY."
            )
        return v

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: str) -> str:
        """
        Reject wildcard origins; only exact-match origins are allowed.

        Args:
            v: CORS origins value

        Returns:
            Validated comma-separated origins

        Raises:
            ValueError: If a wildcard origin is configured
        """
        if any("*" in origin for origin in _split_csv(v)):
            raise ValueError("Wildcard CORS origins are not permitted")
        return v

    @field_validator("forwarded_trusted_networks")
    @classmethod
    def validate_trusted_networks(cls, v: str) -> str:
        """
        Validate that every trusted proxy entry parses as a network.

        Args:
            v: Trusted networks value

        Returns:
            Validated comma-separated networks

        Raises:
            ValueError: If an entry is not an address or CIDR network
        """
        for entry in _split_csv(v):
            try:
                ip_network(entry, strict=False)
            except ValueError as e:
                raise ValueError(f"Invalid trusted network '{entry}'") from e
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def documentation_enabled(self) -> bool:
        """API documentation is only published in development."""
        return self.is_development

    @property
    def transport_mode(self) -> TransportMode:
        """Proxied when running in a container, direct otherwise."""
        if self.running_in_container:
            return TransportMode.PROXIED
        return TransportMode.DIRECT

    @property
    def allowed_origins(self) -> tuple[str, ...]:
        return _split_csv(self.cors_origins)

    @property
    def trusted_networks(self) -> tuple[TrustedNetwork, ...]:
        return tuple(
            ip_network(entry, strict=False)
            for entry in _split_csv(self.forwarded_trusted_networks)
        )

    @property
    def required_scopes(self) -> tuple[str, ...]:
        return _split_csv(self.authentication_required_scopes)

    @property
    def algorithms(self) -> tuple[str, ...]:
        return _split_csv(self.authentication_algorithms)

    @property
    def authority_base(self) -> str:
        return self.authentication_authority.rstrip("/")

    @property
    def authorization_url(self) -> str:
        return self.authentication_authorization_url or f"{self.authority_base}/authorize"

    @property
    def token_url(self) -> str:
        return self.authentication_token_url or f"{self.authority_base}/oauth/token"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    This function uses lru_cache to ensure settings are loaded only once
    and reused across the application lifecycle.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
