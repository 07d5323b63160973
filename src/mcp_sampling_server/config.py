"""
Configuration management for mcp-sampling-server

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SAMPLING_SYSTEM_PROMPT = (
    "You are a helpful assistant with access to tools. "
    "Use them when needed to answer questions accurately."
)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "MCP-Sampling-Server"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    public_base_url: str = Field(default="", description="Base URL advertised in discovery documents")
    allowed_origins: str = Field(default="*", description="Comma-separated CORS origins, or *")

    # Identity reported at initialize and in discovery
    server_name: str = "mcp-sampling-server"
    server_title: str = "MCP Sampling Server"
    server_version: str = "1.0.0"
    server_description: str = (
        "MCP server exposing tools over SSE and streamable HTTP, "
        "with a server-side sampling agent loop"
    )

    # Sessions
    event_log_max_events: int = Field(default=1000, ge=1, description="Retained events per resumable session")
    session_idle_timeout_minutes: int = Field(default=30, ge=1, description="Idle time before a disconnected session is reaped")
    session_sweep_interval_seconds: int = Field(default=60, ge=1, description="How often idle sessions are swept")

    # Sampling
    sampling_iteration_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Deadline for one sampling round of the agent loop"
    )
    sampling_default_system_prompt: str = DEFAULT_SAMPLING_SYSTEM_PROMPT

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v: str) -> str:
        return v.strip() if v else "*"

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if self.allowed_origins == "*":
            return ["*"]
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def base_url(self) -> str:
        """Base URL used when no request host is available."""
        return self.public_base_url.rstrip("/") or f"http://localhost:{self.port}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
