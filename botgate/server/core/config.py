"""
Configuration Settings.

This module defines the application configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.
"""

from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from botgate.agent_core.policy.resolver import HostEnvironment
from botgate.agent_core.runtime.models import RunBudget

# =====================================================================
# Grouped Configuration Models
# =====================================================================


class CORSConfig(BaseModel):
    """CORS configuration."""

    origins: List[str] = Field(default=["*"], description="Allowed CORS origins (use * for all)")
    allow_credentials: bool = Field(default=True, description="Allow credentials in CORS requests")

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Application settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    # =====================================================================
    # Pydantic Configuration
    # =====================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Server Configuration
    # =====================================================================
    server_host: str = Field(
        default="127.0.0.1",
        description="botgate server host address to bind to",
        alias="BOTGATE_SERVER_HOST",
    )
    server_port: int = Field(
        default=8000,
        description="botgate server port number",
        alias="BOTGATE_SERVER_PORT",
    )
    log_level: str = Field(
        default="INFO",
        description="botgate logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="BOTGATE_LOG_LEVEL",
    )
    cors_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
        alias="BOTGATE_CORS_ORIGINS",
    )

    # =====================================================================
    # Database Configuration
    # =====================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./botgate.db",
        description="Async SQLAlchemy URL; postgres URLs are rewritten to asyncpg",
        alias="DATABASE_URL",
    )

    # =====================================================================
    # Host Environment
    # =====================================================================
    trusted_host: bool = Field(
        default=False,
        description="Whether the host is locally trusted; only trusted hosts honour autonomy L3",
        alias="BOTGATE_TRUSTED_HOST",
    )

    # =====================================================================
    # Agent Run Budget
    # =====================================================================
    agent_max_steps: int = Field(default=5, ge=1, alias="BOTGATE_AGENT_MAX_STEPS")
    agent_max_runtime_seconds: float = Field(default=30.0, gt=0, alias="BOTGATE_AGENT_MAX_RUNTIME_SECONDS")
    agent_max_reasoning_calls: int = Field(default=3, ge=0, alias="BOTGATE_AGENT_MAX_REASONING_CALLS")
    agent_max_tool_calls: int = Field(default=5, ge=0, alias="BOTGATE_AGENT_MAX_TOOL_CALLS")
    agent_cooldown_seconds: float = Field(default=60.0, ge=0, alias="BOTGATE_AGENT_COOLDOWN_SECONDS")
    agent_approval_wait_seconds: float = Field(default=120.0, ge=0, alias="BOTGATE_AGENT_APPROVAL_WAIT_SECONDS")
    agent_summary_max_chars: int = Field(default=280, ge=16, alias="BOTGATE_AGENT_SUMMARY_MAX_CHARS")

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def cors(self) -> CORSConfig:
        """Get CORS configuration."""
        return CORSConfig(origins=self.cors_origins, allow_credentials="*" not in self.cors_origins)

    @property
    def budget(self) -> RunBudget:
        """Get the agent run budget."""
        return RunBudget(
            max_steps=self.agent_max_steps,
            max_runtime_seconds=self.agent_max_runtime_seconds,
            max_reasoning_calls=self.agent_max_reasoning_calls,
            max_tool_calls=self.agent_max_tool_calls,
            cooldown_seconds=self.agent_cooldown_seconds,
            approval_wait_seconds=self.agent_approval_wait_seconds,
            summary_max_chars=self.agent_summary_max_chars,
        )

    @property
    def host(self) -> HostEnvironment:
        """Get the host environment trust signal."""
        return HostEnvironment(trusted=self.trusted_host)


settings = Settings()
