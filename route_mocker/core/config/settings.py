"""Pydantic settings models for configuration validation.

This module defines the configuration schema of the interception layer
using Pydantic models for type safety, validation, and documentation.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models.http import AbortReason


class InterceptionConfig(BaseModel):
    """Handler matching and dispatch settings."""

    base_url: Optional[str] = Field(
        default=None,
        description="Base URL relative glob patterns are resolved against"
    )
    scope_precedence: Literal["page", "context"] = Field(
        default="page",
        description="Scope consulted first when page and context handlers both match"
    )
    default_abort_reason: str = Field(
        default="failed",
        description="Reason used by abort() when the handler gives none"
    )

    @field_validator('default_abort_reason')
    @classmethod
    def validate_abort_reason(cls, v):
        """Normalize to a dashed abort reason name."""
        return AbortReason.parse(v).value

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        """Require an absolute http(s) base URL."""
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v


class FetchConfig(BaseModel):
    """Real network settings used by continue and fetch()."""

    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    follow_redirects: bool = True
    max_redirects: int = Field(default=20, ge=0, le=100)
    ignore_https_errors: bool = False
    user_agent: Optional[str] = Field(
        default=None,
        description="User-Agent sent when the captured request has none"
    )


class EventsConfig(BaseModel):
    """Network event bus settings."""

    history_size: int = Field(default=1000, ge=1, description="Delivered events kept in history")
    wait_timeout: float = Field(default=30.0, gt=0, description="Default wait_for_response timeout")


class RecordingConfig(BaseModel):
    """Traffic recording settings."""

    enabled: bool = False
    har_path: Optional[str] = Field(
        default=None,
        description="HAR file written when the session closes"
    )
    max_body_size: int = Field(default=1024 * 1024, ge=0, description="Largest recorded body in bytes")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["structured", "simple"] = "structured"
    file: Optional[str] = None
    max_size: str = "10MB"
    backup_count: int = 5
    redact_sensitive_data: bool = True

    @field_validator('level', mode='before')
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class MockingConfig(BaseSettings):
    """Main configuration model for the interception layer."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEMOCK_",
        env_nested_delimiter="__",
        case_sensitive=False,
        validate_assignment=True,
        extra="forbid",
    )

    interception: InterceptionConfig = Field(default_factory=InterceptionConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
