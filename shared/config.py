"""
Shared configuration management for the Event Context layer.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="EVENT_CONTEXT_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Durable storage
    storage_backend: str = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    storage_prefix: str = Field(default="event-context:")

    # Cross-context broadcast
    broadcast_channel: str = Field(default="event-context:storage")

    # Role lookup service
    user_service_url: str = Field(default="http://localhost:8080")
    request_timeout_seconds: float = Field(default=10.0)
    circuit_failure_threshold: int = Field(default=5)
    circuit_recovery_timeout: float = Field(default=30.0)


class EventContextConfig(BaseConfig):
    """Configuration for one execution context's role cache."""

    role_cache_ttl_seconds: int = Field(default=3600)
    selection_caches: List[str] = Field(default_factory=lambda: ["selectedEvent", "selectedDepartment"])

    @property
    def role_cache_ttl_ms(self) -> int:
        return self.role_cache_ttl_seconds * 1000


def get_config(**overrides) -> EventContextConfig:
    """Get configuration, with keyword overrides taking precedence over the environment."""
    return EventContextConfig(**overrides)
