"""
Configuration Management Module

Configures relay parameters via environment variables or .env file.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Relay Configuration Class

    All configuration items can be overridden by environment variables, with names matching fields (uppercase).
    """

    # Application Config
    APP_NAME: str = "LLM Relay"
    DEBUG: bool = False

    # HTTP Client Config
    # Upstream request timeout (seconds)
    HTTP_TIMEOUT: int = 1800

    # CORS Config
    # Comma-separated list of allowed origins, "*" allows any origin
    ALLOWED_ORIGINS: str = "*"

    # Transformer Config
    # Which upstream variant requests are relayed to
    TRANSFORMER: Literal["codex", "kilo", "copilot"] = "codex"
    # Remove client Authorization headers unless a header override file supplies one
    STRIP_AUTHORIZATION: bool = True
    # Used when the request carries no system message / instructions
    DEFAULT_INSTRUCTIONS: str = "You are a helpful assistant."

    # Reasoning Config
    # Values outside the allowed sets are replaced by defaults with a warning,
    # so these are plain strings rather than Literal types.
    REASONING_ENABLE: bool = False
    REASONING_EFFORT: str = "minimal"
    REASONING_SUMMARY: str = "auto"

    # Codex (OpenAI Responses API) Config
    CODEX_UPSTREAM_URL: str = "https://chatgpt.com/backend-api/codex/responses"
    CODEX_DEFAULT_MODEL: str = "gpt-5.2-codex"
    # JSON file with headers applied over everything else (e.g. session auth)
    CODEX_HEADERS_FILE: str = ""

    # Kilo Code Config
    KILO_UPSTREAM_URL: str = "https://kilocode.ai/api/openrouter/chat/completions"
    KILO_API_KEY: Optional[str] = None
    KILO_DEFAULT_MODEL: str = "anthropic/claude-sonnet-4"
    KILO_VERSION: str = "5.1.0"
    KILO_ORGANIZATION_ID: Optional[str] = None
    KILO_PROJECT_ID: Optional[str] = None
    KILO_HEADERS_FILE: str = ""

    # GitHub Copilot Config
    COPILOT_UPSTREAM_URL: str = "https://api.githubcopilot.com/chat/completions"
    # Fallback key when no token file is available
    COPILOT_API_KEY: Optional[str] = None
    COPILOT_DEFAULT_MODEL: str = "gpt-4.1"
    # Defaults to ~/.copilot-tokens.json
    COPILOT_TOKEN_FILE: str = ""
    COPILOT_TOKEN_REFRESH_URL: str = "https://api.github.com/copilot_internal/v2/token"
    # Refresh credentials this many seconds before their stated expiry
    TOKEN_EXPIRY_BUFFER_SECONDS: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get relay configuration (Singleton)

    Returns:
        Settings: Relay configuration instance
    """
    return Settings()
