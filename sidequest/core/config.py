"""Configuration management for Sidequest."""

from typing import Optional, Literal, List
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field, SecretStr


class LLMConfig(BaseSettings):
    """Advisory oracle (LLM) configuration."""

    model_config = SettingsConfigDict(env_prefix="LLM_", extra="ignore")

    provider: Literal["openai", "anthropic"] = Field(
        default="openai",
        description="LLM provider to use",
    )
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "LLM_OPENAI_API_KEY"),
        description="OpenAI API key",
    )
    anthropic_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("ANTHROPIC_API_KEY", "LLM_ANTHROPIC_API_KEY"),
        description="Anthropic API key",
    )
    model: str = Field(
        default="gpt-4o",
        description="Model used for sprint organization",
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Temperature for LLM responses",
    )
    max_tokens: int = Field(
        default=2000,
        ge=1,
        description="Maximum tokens for LLM responses",
    )

    def get_api_key(self) -> Optional[str]:
        """Return the API key for the configured provider, if any."""
        secret = self.openai_api_key if self.provider == "openai" else self.anthropic_api_key
        return secret.get_secret_value() if secret else None


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(env_prefix="SIDEQUEST_", extra="ignore")

    database_path: Path = Field(
        default=Path("data/sidequest.db"),
        description="Path to SQLite database or a SQLAlchemy URL",
    )


class PlannerConfig(BaseSettings):
    """Sprint planner configuration."""

    model_config = SettingsConfigDict(env_prefix="PLANNER_", extra="ignore")

    default_strategy: Literal["balanced", "priority_first", "dependency_aware"] = Field(
        default="balanced",
        description="Strategy used when a request does not name one",
    )
    default_max_points_per_sprint: int = Field(
        default=20,
        ge=5,
        le=100,
        description="Default point budget per sprint",
    )
    default_max_tickets_per_sprint: int = Field(
        default=10,
        ge=3,
        le=50,
        description="Default ticket budget per sprint",
    )
    oracle_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on a single advisory oracle call",
    )
    use_oracle: bool = Field(
        default=True,
        description="Consult the advisory oracle when one is configured",
    )


class ApiConfig(BaseSettings):
    """HTTP API configuration."""

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    host: str = Field(
        default="0.0.0.0",
        description="Host to bind the API server",
    )
    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port for the API server",
    )
    enable_cors: bool = Field(
        default=True,
        description="Enable CORS for the API server",
    )
    cors_origins: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins",
    )


class Settings(BaseSettings):
    """Main settings combining all configurations."""

    # Sub-configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    # General settings
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment and files."""
        from dotenv import load_dotenv
        load_dotenv()
        return cls()


# Global settings instance
settings = None


def get_settings() -> Settings:
    """Get or create global settings instance."""
    global settings
    if settings is None:
        settings = Settings.load()
    return settings


def reload_settings():
    """Reload settings from environment."""
    global settings
    settings = Settings.load()
    return settings
