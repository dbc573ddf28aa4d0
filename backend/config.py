"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the pipeline
backend. All settings can be overridden via environment variables or a .env file.
"""

import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        anthropic_api_key: API key for Anthropic models.
        openai_api_key: API key for OpenAI models.
        default_model: Model used when a document does not name one.
        use_mock_llm: If True, use the mock generation client.
        generation_timeout_seconds: Timeout for a single generation call.
        max_concurrent_agents: Upper bound on agents generating at once.
        database_path: SQLite file holding configurations and run snapshots.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Generation Configuration
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    # Model names must include provider prefix for LiteLLM (e.g., anthropic/, openai/)
    default_model: str = "anthropic/claude-3-5-sonnet-20240620"
    use_mock_llm: bool = False
    generation_timeout_seconds: int = 120

    # Orchestration Limits
    max_concurrent_agents: int = 4

    # Database Configuration
    database_path: str = "./data/pipeline.db"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("max_concurrent_agents")
    @classmethod
    def ensure_positive_concurrency(cls, v: int) -> int:
        """Clamp the concurrency bound to at least one in-flight agent."""
        return max(1, v)

    model_config = SettingsConfigDict(
        # Support running from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalize the log format so unknown values fall back to JSON."""
        if self.log_format not in ("json", "text"):
            self.log_format = "json"


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
