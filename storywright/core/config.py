"""Configuration management for Storywright."""

from typing import Optional, Literal
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field, SecretStr


class LLMConfig(BaseSettings):
    """Completion provider configuration."""

    provider: Literal["openai", "anthropic"] = Field(
        default="anthropic",
        description="Completion provider to use",
    )
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("LLM_OPENAI_API_KEY", "OPENAI_API_KEY"),
        description="OpenAI API key",
    )
    anthropic_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("LLM_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
        description="Anthropic API key",
    )
    model: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Model used for refinement, validation, prioritization and generation",
    )
    max_tokens: int = Field(
        default=4096,
        ge=256,
        description="Maximum tokens for completion responses",
    )
    generation_max_tokens: int = Field(
        default=8192,
        ge=256,
        description="Maximum tokens for bulk story generation",
    )
    request_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Seconds before a completion request is abandoned",
    )

    model_config = {
        "env_prefix": "LLM_",
        "extra": "ignore",
        "populate_by_name": True,
    }

    def get_api_key(self) -> Optional[str]:
        """Return the API key for the configured provider."""
        secret = self.anthropic_api_key if self.provider == "anthropic" else self.openai_api_key
        return secret.get_secret_value() if secret else None


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    database_path: Path = Field(
        default=Path("data/storywright.db"),
        validation_alias=AliasChoices("STORYWRIGHT_DB", "DATABASE_PATH"),
        description="Path to SQLite database",
    )

    model_config = {
        "env_prefix": "",
        "extra": "ignore",
        "populate_by_name": True,
    }


class WorkflowConfig(BaseSettings):
    """Story workflow thresholds and limits."""

    memory_confidence_floor: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for workspace memory entries used as context",
    )
    memory_entry_limit: int = Field(
        default=30,
        ge=1,
        description="Maximum workspace memory entries included in a prompt",
    )
    max_questions: int = Field(
        default=5,
        ge=1,
        description="Maximum clarifying questions returned by refinement",
    )
    min_acceptance_criteria: int = Field(
        default=3,
        ge=1,
        description="Minimum acceptance criteria for generated stories",
    )
    default_generate_count: int = Field(
        default=7,
        ge=1,
        le=30,
        description="Default number of stories requested from generation",
    )
    max_factors: int = Field(
        default=6,
        ge=1,
        description="Maximum factors kept on a recommendation or estimate",
    )

    model_config = {
        "env_prefix": "WORKFLOW_",
        "extra": "ignore",
    }


class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    host: str = Field(
        default="127.0.0.1",
        description="Host to bind the HTTP server",
    )
    port: int = Field(
        default=8400,
        ge=1,
        le=65535,
        description="Port for the HTTP server",
    )
    enable_cors: bool = Field(
        default=True,
        description="Enable CORS for the HTTP server",
    )

    model_config = {
        "env_prefix": "SERVER_",
        "extra": "ignore",
    }


class Settings(BaseSettings):
    """Main settings combining all configurations."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

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


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings.load()
    return settings
